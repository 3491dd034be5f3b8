"""
Pytest configuration and shared fixtures.
"""

import pytest
from pathlib import Path
from typer.testing import CliRunner

from nucml.io.sequences import Alignment
from nucml.io.trees import Tree


# Six primate/rodent-like sequences, 60 sites, with one gap and one N
SEQUENCES = {
    "Human":   "ATGGCTAAGCTGACCGTTCAGGAACTGCGTAAAGCCTTCGATGGCATCAACCTGAGCTAA",
    "Chimp":   "ATGGCTAAGCTGACCGTTCAGGAGCTGCGTAAAGCCTTCGATGGCATCAACCTGAGCTAA",
    "Gorilla": "ATGGCCAAGCTGACCGTTCAGGAACTGCGTAAAGCCTTCGATGGTATCAACCTGAGCNAA",
    "Mouse":   "ATGGCAAAGCTGACTGTTCAGGAACTACGTAAGGCCTTTGATGGCATTAACCTGAGCTGA",
    "Rat":     "ATGGCAAAACTGACTGTCCAGGAACTACGCAAGGCCTTTGACGGCATTAACCTGAGTTGA",
    "Hamster": "ATGGCGAAGCTGACTGTTCAAGAACTACGTAAGGCTTTTGATGGCATTAACCTG-GCTGA",
}

TREE_NEWICK = (
    "((Human:0.01,Chimp:0.01):0.02,Gorilla:0.03,"
    "(Mouse:0.1,(Rat:0.08,Hamster:0.09):0.05):0.2);"
)

# Toy four-taxon data set
FOUR_TAXON_SEQUENCES = {
    "A": "ACGTACGTTAGCCGATATCGGCTAAGCTTACGGATCCATGCAGTTACGA",
    "B": "ACGTACGTTAGCCGATTTCGGCTAAGCTTACGGATCCATGCAGTTACGA",
    "C": "ACGAACGTTGGCCGATATCGGCTCAGCTTACGAATCCATGCAGTAACGA",
    "D": "ACGAACGCTGGCCGAGATCGGCTCAGCATACGAATCCTTGCAGTAACCA",
}

FOUR_TAXON_NEWICK = "((A:0.05,B:0.05):0.1,C:0.1,D:0.2);"


def write_fasta(path: Path, sequences: dict) -> Path:
    path.write_text("".join(f">{name}\n{seq}\n" for name, seq in sequences.items()))
    return path


def write_phylip(path: Path, sequences: dict) -> Path:
    n_sites = len(next(iter(sequences.values())))
    lines = [f"{len(sequences)} {n_sites}"]
    lines += [f"{name}  {seq}" for name, seq in sequences.items()]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def tree_newick():
    """Unrooted six-taxon tree with branch lengths."""
    return TREE_NEWICK


@pytest.fixture
def tree_file(tmp_path):
    """Create a temporary tree file for the six-taxon data set."""
    tree_file = tmp_path / "test_tree.nwk"
    tree_file.write_text(TREE_NEWICK + "\n")
    return tree_file


@pytest.fixture
def fasta_file(tmp_path):
    """Six-taxon alignment in FASTA format."""
    return write_fasta(tmp_path / "alignment.fasta", SEQUENCES)


@pytest.fixture
def phylip_file(tmp_path):
    """Six-taxon alignment in sequential PHYLIP format."""
    return write_phylip(tmp_path / "alignment.phy", SEQUENCES)


@pytest.fixture
def tree():
    return Tree.from_newick(TREE_NEWICK)


@pytest.fixture
def alignment(fasta_file):
    return Alignment.from_fasta(fasta_file)


@pytest.fixture
def four_taxon_files(tmp_path):
    """Toy four-taxon tree and alignment files."""
    tree_file = tmp_path / "four.nwk"
    tree_file.write_text(FOUR_TAXON_NEWICK + "\n")
    return {
        "tree": tree_file,
        "alignment": write_fasta(tmp_path / "four.fasta", FOUR_TAXON_SEQUENCES),
    }


@pytest.fixture
def four_taxon_tree():
    return Tree.from_newick(FOUR_TAXON_NEWICK)


@pytest.fixture
def four_taxon_alignment(four_taxon_files):
    return Alignment.from_fasta(four_taxon_files["alignment"])


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()
