"""
Unit tests for likelihood calculation.
"""

import numpy as np
import pytest

from nucml.core.likelihood import LikelihoodOracle, PartialLikelihoodEngine, plan_traversal
from nucml.core.matrix import matrix_exponential
from nucml.io.sequences import Alignment
from nucml.io.trees import Tree
from nucml.models.gtr import ModelState, build_gtr_Q, discretize_gamma


QUARTET = "((a:0.1,b:0.2):0.05,c:0.3,d:0.4);"


def make_alignment(rows: dict) -> Alignment:
    """Alignment from already encoded rows (0=A, 1=C, 2=G, 3=T, -1=missing)."""
    names = list(rows)
    sequences = np.array([rows[name] for name in names], dtype=np.int8)
    return Alignment(
        names=names,
        sequences=sequences,
        n_species=len(names),
        n_sites=sequences.shape[1],
    )


def brute_force_quartet(rows, Q, pi, rates=(1.0,), p_inv=0.0):
    """
    Log-likelihood of ((a:0.1,b:0.2):0.05,c:0.3,d:0.4) by summing over
    both inner-node states.
    """
    lengths = {'a': 0.1, 'b': 0.2, 'c': 0.3, 'd': 0.4, 'inner': 0.05}
    n_sites = len(rows['a'])
    total = 0.0
    for site in range(n_sites):
        states = {name: rows[name][site] for name in 'abcd'}

        lk_var = 0.0
        for rate in rates:
            P = {
                name: matrix_exponential(Q, t * rate / (1.0 - p_inv))
                for name, t in lengths.items()
            }

            def tip(name, x):
                s = states[name]
                return 1.0 if s < 0 else P[name][x, s]

            lk = 0.0
            for x in range(4):
                inner = sum(P['inner'][x, y] * tip('a', y) * tip('b', y) for y in range(4))
                lk += pi[x] * tip('c', x) * tip('d', x) * inner
            lk_var += lk / len(rates)

        lk_inv = sum(
            pi[x] for x in range(4)
            if all(s < 0 or s == x for s in states.values())
        )
        total += np.log((1.0 - p_inv) * lk_var + p_inv * lk_inv)
    return total


@pytest.fixture
def quartet_rows():
    return {
        'd': [0, 1, 2, 3, 0, 0, 2, -1, 3, 1],
        'c': [0, 1, 2, 3, 0, 2, 2, 1, 1, 1],
        'b': [0, 1, 0, 3, 1, 2, 2, 1, 3, -1],
        'a': [0, 1, 0, 3, 1, 2, 3, 1, 3, 1],
    }


def quartet_log_likelihood(rows, state, n_rate_cats=1, edge_id=None):
    tree = Tree.from_newick(QUARTET)
    engine = PartialLikelihoodEngine(make_alignment(rows), tree, n_rate_cats=n_rate_cats)
    oracle = LikelihoodOracle(engine)
    return oracle.log_likelihood(state, plan_traversal(tree, edge_id))


class TestPlanTraversal:
    """Test post-order traversal planning."""

    def test_default_central_edge(self, tree):
        context = plan_traversal(tree)

        assert context.edge_id == tree.tip_edge(0)
        assert context.central_edge.child_clv == 0
        assert context.central_edge.child_scaler is None
        assert not tree.is_tip(context.central_edge.parent_clv)

    def test_every_inner_node_updated_once(self, tree):
        for edge_id in range(tree.n_edges):
            context = plan_traversal(tree, edge_id)
            parents = [op.parent_clv for op in context.operations]
            assert sorted(parents) == list(range(tree.n_tips, tree.n_nodes))

    def test_postorder(self, tree):
        """Children are always computed before their parent."""
        context = plan_traversal(tree, 2)
        done = set(range(tree.n_tips))
        for op in context.operations:
            assert op.child1_clv in done
            assert op.child2_clv in done
            done.add(op.parent_clv)

    def test_all_matrices_requested(self, tree):
        assert plan_traversal(tree).matrix_indices == tuple(range(tree.n_edges))

    def test_scaler_indices(self, tree):
        for op in plan_traversal(tree).operations:
            assert op.parent_scaler == op.parent_clv - tree.n_tips


class TestPartialLikelihoodEngine:
    """Test the pruning algorithm against a brute-force sum."""

    def test_matches_brute_force(self, quartet_rows):
        pi = np.array([0.1, 0.2, 0.3, 0.4])
        rates = np.array([1.0, 4.0, 0.5, 1.5, 3.0, 1.0])
        state = ModelState.default(
            Tree.from_newick(QUARTET).branch_lengths, frequencies=pi, subst_rates=rates
        )

        expected = brute_force_quartet(quartet_rows, build_gtr_Q(rates, pi), pi)

        assert quartet_log_likelihood(quartet_rows, state) == pytest.approx(expected, abs=1e-8)

    def test_matches_brute_force_with_gamma(self, quartet_rows):
        pi = np.full(4, 0.25)
        rates = np.array([1.0, 2.0, 1.0, 1.0, 2.0, 1.0])
        state = ModelState.default(
            Tree.from_newick(QUARTET).branch_lengths, subst_rates=rates, alpha=0.5
        )

        expected = brute_force_quartet(
            quartet_rows, build_gtr_Q(rates, pi), pi, rates=discretize_gamma(0.5, 4)
        )

        assert quartet_log_likelihood(quartet_rows, state, n_rate_cats=4) == pytest.approx(
            expected, abs=1e-8
        )

    def test_matches_brute_force_with_invariant_sites(self, quartet_rows):
        pi = np.array([0.3, 0.2, 0.2, 0.3])
        state = ModelState.default(
            Tree.from_newick(QUARTET).branch_lengths, frequencies=pi, p_inv=0.3
        )

        expected = brute_force_quartet(
            quartet_rows, build_gtr_Q(np.ones(6), pi), pi, p_inv=0.3
        )

        assert quartet_log_likelihood(quartet_rows, state) == pytest.approx(expected, abs=1e-8)

    def test_independent_of_central_edge(self, tree, alignment):
        """Pulley principle: any central edge gives the same likelihood."""
        state = ModelState.default(
            tree.branch_lengths,
            frequencies=np.array([0.2, 0.3, 0.3, 0.2]),
            subst_rates=np.array([1.0, 3.0, 1.0, 1.0, 3.0, 1.0]),
            alpha=0.7,
            p_inv=0.2,
        )
        oracle = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))

        values = [
            oracle.log_likelihood(state, plan_traversal(tree, edge_id))
            for edge_id in range(tree.n_edges)
        ]

        assert np.isfinite(values).all()
        np.testing.assert_allclose(values, values[0], rtol=0, atol=1e-8)

    def test_finite_and_negative(self, tree, alignment):
        oracle = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))
        lnL = oracle.log_likelihood(ModelState.default(tree.branch_lengths), plan_traversal(tree))

        assert np.isfinite(lnL)
        assert lnL < 0

    def test_alignment_row_order_irrelevant(self, quartet_rows):
        state = ModelState.default(Tree.from_newick(QUARTET).branch_lengths, alpha=0.5)
        reversed_rows = dict(reversed(list(quartet_rows.items())))

        assert quartet_log_likelihood(quartet_rows, state, 4) == pytest.approx(
            quartet_log_likelihood(reversed_rows, state, 4), abs=1e-10
        )

    def test_identical_tips_short_branches(self):
        """One constant site on a tiny tree has likelihood close to its frequency."""
        tree = Tree.from_newick("(x:1e-6,y:1e-6,z:1e-6);")
        aln = make_alignment({'x': [0], 'y': [0], 'z': [0]})
        oracle = LikelihoodOracle(PartialLikelihoodEngine(aln, tree))

        lnL = oracle.log_likelihood(ModelState.default(tree.branch_lengths), plan_traversal(tree))

        assert lnL == pytest.approx(np.log(0.25), abs=1e-4)

    def test_missing_data_site(self):
        """A column of gaps contributes nothing to the likelihood."""
        tree = Tree.from_newick("(x:0.1,y:0.2,z:0.3);")
        aln = make_alignment({'x': [-1], 'y': [-1], 'z': [-1]})
        oracle = LikelihoodOracle(PartialLikelihoodEngine(aln, tree))

        lnL = oracle.log_likelihood(ModelState.default(tree.branch_lengths), plan_traversal(tree))

        assert lnL == pytest.approx(0.0, abs=1e-10)

    def test_pattern_weights(self, tree, alignment):
        """Duplicating every site doubles the log-likelihood."""
        doubled = Alignment(
            names=alignment.names,
            sequences=np.concatenate([alignment.sequences, alignment.sequences], axis=1),
            n_species=alignment.n_species,
            n_sites=2 * alignment.n_sites,
        )
        state = ModelState.default(tree.branch_lengths, alpha=0.5)
        context = plan_traversal(tree)

        single = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree)).log_likelihood(state, context)
        double = LikelihoodOracle(PartialLikelihoodEngine(doubled, tree)).log_likelihood(state, context)

        assert double == pytest.approx(2 * single, rel=1e-10)

    def test_zero_invariant_proportion(self, tree, alignment):
        state = ModelState.default(tree.branch_lengths, alpha=0.5)
        context = plan_traversal(tree)
        oracle = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))

        without = oracle.log_likelihood(state, context)
        state.p_inv = 1e-12
        tiny = oracle.log_likelihood(state, context)
        state.p_inv = 0.0

        assert tiny == pytest.approx(without, abs=1e-8)
        assert oracle.log_likelihood(state, context) == without

    def test_taxon_mismatch(self, alignment):
        tree = Tree.from_newick("((Human:0.1,Chimp:0.1):0.1,Gorilla:0.1,Orangutan:0.1);")
        with pytest.raises(ValueError, match="different taxa"):
            PartialLikelihoodEngine(alignment, tree)


class TestLikelihoodOracle:
    """Test the state-to-likelihood adapter."""

    def test_counts_evaluations(self, tree, alignment):
        oracle = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))
        state = ModelState.default(tree.branch_lengths)
        context = plan_traversal(tree)

        oracle.evaluate(state, context)
        oracle.evaluate(state, context)

        assert oracle.n_evaluations == 2

    def test_evaluate_is_negative_log_likelihood(self, tree, alignment):
        oracle = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))
        state = ModelState.default(tree.branch_lengths)
        context = plan_traversal(tree)

        assert oracle.evaluate(state, context) == pytest.approx(
            -oracle.log_likelihood(state, context)
        )

    def test_parameter_changes_are_picked_up(self, tree, alignment):
        oracle = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))
        state = ModelState.default(tree.branch_lengths)
        context = plan_traversal(tree)

        before = oracle.evaluate(state, context)
        state.subst_rates = np.array([1.0, 5.0, 1.0, 1.0, 5.0, 1.0])
        after = oracle.evaluate(state, context)

        assert after != before
        fresh = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))
        assert fresh.evaluate(state, context) == pytest.approx(after, abs=1e-10)

    def test_edge_objective(self, tree, alignment):
        """Changing only the central edge matches a full evaluation."""
        oracle = LikelihoodOracle(PartialLikelihoodEngine(alignment, tree))
        state = ModelState.default(tree.branch_lengths, alpha=0.5)
        edge_id = 2
        context = plan_traversal(tree, edge_id)

        oracle.prepare(state, context)
        partial = oracle.edge_objective(context, 0.37)

        state.branch_lengths[edge_id] = 0.37
        full = oracle.evaluate(state, plan_traversal(tree))

        assert partial == pytest.approx(full, abs=1e-8)
