"""
Input/Output modules for nucleotide alignments and phylogenetic trees.

This module provides classes for reading and working with:

- **Sequence alignments**: FASTA and PHYLIP formats
- **Phylogenetic trees**: Newick format, stored as unrooted binary trees
"""

from nucml.io.sequences import Alignment
from nucml.io.trees import Edge, Tree

__all__ = ["Alignment", "Edge", "Tree"]
