"""
Tests for high-level API (optimize_model, compute_log_likelihood and FitResult).
"""

import json

import numpy as np
import pytest

from nucml import (
    FitResult,
    InvalidModelSpec,
    OptimizationConfig,
    ParseError,
    compute_log_likelihood,
    optimize_model,
)
from nucml.io import Alignment, Tree


class TestOptimizeModel:
    """Test optimize_model() function."""

    def test_with_file_paths(self, four_taxon_files):
        result = optimize_model(four_taxon_files['tree'], four_taxon_files['alignment'], "GTR")

        assert isinstance(result, FitResult)
        assert result.model == "GTR"
        assert result.symmetries == "012345"
        assert result.status == "converged"
        assert result.lnL > result.initial_lnL
        assert sum(result.frequencies) == pytest.approx(1.0)
        assert len(result.subst_rates) == 6
        assert len(result.branch_lengths) == 5

    def test_with_objects(self, four_taxon_tree, four_taxon_alignment):
        result = optimize_model(four_taxon_tree, four_taxon_alignment, "010010")

        assert result.symmetries == "010010"
        # Tree is updated in place
        np.testing.assert_allclose(four_taxon_tree.branch_lengths, result.branch_lengths)

    def test_with_newick_string(self, four_taxon_files):
        result = optimize_model(
            "((A,B),C,D);",
            four_taxon_files['alignment'],
            "JC69",
            OptimizationConfig(frequencies=False, subst_rates=False, alpha=False),
        )

        # Only branch lengths were free
        assert result.frequencies == [0.25] * 4
        assert result.subst_rates == [1.0] * 6
        assert result.alpha == 0.1
        assert result.n_params == 5

    def test_missing_lengths_start_small(self, four_taxon_files):
        result = optimize_model(
            "((A,B),C,D);",
            four_taxon_files['alignment'],
            "GTR",
            OptimizationConfig.from_blocks([]),
        )
        assert result.branch_lengths == [1e-6] * 5

    def test_starting_values(self, four_taxon_tree, four_taxon_alignment):
        result = optimize_model(
            four_taxon_tree,
            four_taxon_alignment,
            "GTR",
            OptimizationConfig(alpha=False, pinv=True),
            alpha=0.8,
            p_inv=0.1,
        )

        assert result.alpha == 0.8
        assert 0.0 <= result.p_inv <= 0.99

    def test_max_rounds(self, four_taxon_tree, four_taxon_alignment):
        result = optimize_model(
            four_taxon_tree, four_taxon_alignment, "GTR", OptimizationConfig(max_rounds=1)
        )
        assert result.status == "stopped"
        assert result.n_rounds == 1

    def test_invalid_model(self, four_taxon_tree, four_taxon_alignment):
        with pytest.raises(InvalidModelSpec):
            optimize_model(four_taxon_tree, four_taxon_alignment, "01234X")
        with pytest.raises(InvalidModelSpec):
            optimize_model(four_taxon_tree, four_taxon_alignment, "M0")

    def test_taxon_mismatch(self, four_taxon_alignment):
        with pytest.raises(ParseError):
            optimize_model("((A,B),C,E);", four_taxon_alignment)

    def test_jc69_keeps_equal_frequencies(self, four_taxon_tree, four_taxon_alignment):
        result = optimize_model(four_taxon_tree, four_taxon_alignment, "JC69")

        assert result.frequencies == [0.25] * 4
        assert not result.config.frequencies
        # alpha + 5 branches
        assert result.n_params == 6

    def test_k80_differs_from_hky85(self, four_taxon_files):
        k80 = optimize_model(four_taxon_files['tree'], four_taxon_files['alignment'], "k80")
        hky = optimize_model(four_taxon_files['tree'], four_taxon_files['alignment'], "HKY85")

        assert k80.frequencies == [0.25] * 4
        assert k80.n_params == hky.n_params - 3
        assert hky.frequencies != [0.25] * 4

    def test_equal_frequency_model_rejects_other_frequencies(
        self, four_taxon_tree, four_taxon_alignment
    ):
        with pytest.raises(ValueError, match="0.25"):
            optimize_model(
                four_taxon_tree, four_taxon_alignment, "JC69", frequencies=[0.4, 0.2, 0.2, 0.2]
            )

    def test_untied_starting_rates(self, four_taxon_tree, four_taxon_alignment):
        with pytest.raises(ValueError, match="symmetry group"):
            optimize_model(
                four_taxon_tree, four_taxon_alignment, "F81", subst_rates=[1, 20, 1, 1, 20, 1]
            )

    def test_missing_tree_file(self, tmp_path, four_taxon_alignment):
        with pytest.raises(FileNotFoundError):
            optimize_model(tmp_path / "missing.nwk", four_taxon_alignment)

    def test_verbose(self, four_taxon_tree, four_taxon_alignment, capsys):
        optimize_model(four_taxon_tree, four_taxon_alignment, "GTR", verbose=True)

        out = capsys.readouterr().out
        assert "Model: 012345" in out
        assert "Starting tree: " in out
        assert "Final Log-L:" in out
        assert "Final tree: " in out


class TestFitResult:
    """Test FitResult output."""

    @pytest.fixture
    def result(self, four_taxon_tree, four_taxon_alignment):
        return optimize_model(four_taxon_tree, four_taxon_alignment, "HKY85")

    def test_n_params(self, result):
        # 3 frequencies + 1 rate ratio + alpha + 5 branches
        assert result.n_params == 10

    def test_summary(self, result):
        summary = result.summary()

        assert "MODEL: HKY85 (010010)" in summary
        assert "Log-likelihood:" in summary
        assert "alpha =" in summary
        assert "AG =" in summary
        assert result.newick in summary
        assert str(result) == summary

    def test_to_dict(self, result):
        d = result.to_dict()

        assert d['model'] == "HKY85"
        assert d['lnL'] == result.lnL
        assert d['n_rounds'] == len(d['trace'])
        assert d['optimized_blocks'] == ["frequencies", "branch_lengths", "subst_rates", "alpha"]
        assert Tree.from_newick(d['tree']).n_tips == 4

    def test_to_json(self, result, tmp_path):
        path = tmp_path / "result.json"
        text = result.to_json(str(path))

        assert json.loads(text)['symmetries'] == "010010"
        assert json.loads(path.read_text()) == json.loads(text)

    def test_repr(self, result):
        assert repr(result).startswith("FitResult(model='HKY85'")


class TestComputeLogLikelihood:
    """Test compute_log_likelihood() function."""

    def test_from_files(self, tree_file, fasta_file):
        lnL = compute_log_likelihood(tree_file, fasta_file)
        assert np.isfinite(lnL)
        assert lnL < 0

    def test_matches_optimizer_start(self, four_taxon_files):
        lnL = compute_log_likelihood(four_taxon_files['tree'], four_taxon_files['alignment'])
        result = optimize_model(four_taxon_files['tree'], four_taxon_files['alignment'])

        assert result.initial_lnL == pytest.approx(lnL)
        assert result.lnL > lnL

    def test_parameters_matter(self, tree, alignment):
        base = compute_log_likelihood(tree, alignment)
        other = compute_log_likelihood(
            tree, alignment, subst_rates=[1, 4, 1, 1, 4, 1], alpha=1.0, p_inv=0.2
        )
        assert other != pytest.approx(base)

    def test_phylip_and_fasta_agree(self, tree, fasta_file, phylip_file):
        assert compute_log_likelihood(tree, fasta_file) == pytest.approx(
            compute_log_likelihood(tree, Alignment.from_phylip(phylip_file))
        )
