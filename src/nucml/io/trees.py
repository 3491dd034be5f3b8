"""
Phylogenetic tree parsing and unrooted tree representation.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

from ..errors import ParseError

DEFAULT_BRANCH_LENGTH = 1e-6


@dataclass
class NewickNode:
    """
    Node of a parsed (rooted) Newick tree.

    Only used while reading a Newick string; the parsed structure is
    converted into an unrooted :class:`Tree` right away.

    Attributes
    ----------
    name : Optional[str]
        Node name (for leaves)
    children : list[NewickNode]
        Child nodes
    branch_length : Optional[float]
        Branch length to parent, None when absent from the input
    """

    name: Optional[str] = None
    children: list["NewickNode"] = field(default_factory=list)
    branch_length: Optional[float] = None

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0


@dataclass
class Edge:
    """
    Undirected tree edge.

    Attributes
    ----------
    id : int
        Edge index, also used as the probability matrix index
    nodes : tuple[int, int]
        Indices of the two end nodes
    length : Optional[float]
        Branch length, None when not given in the input
    """

    id: int
    nodes: tuple[int, int]
    length: Optional[float] = None

    def other(self, node: int) -> int:
        """Return the end of the edge opposite to ``node``."""
        a, b = self.nodes
        if node == a:
            return b
        if node == b:
            return a
        raise ValueError(f"Node {node} is not an end of edge {self.id}")


def parse_newick(newick_string: str) -> NewickNode:
    """
    Parse a Newick string into a rooted node structure.

    Parameters
    ----------
    newick_string : str
        Newick format tree

    Returns
    -------
    NewickNode
        Root of the parsed tree

    Raises
    ------
    ParseError
        If the string is not valid Newick
    """
    # Remove [...] comments, // comments and /* */ comments
    newick = re.sub(r'\[[^\]]*\]', '', newick_string)
    newick = re.sub(r'//.*', '', newick)
    newick = re.sub(r'/\s*\*.*?\*\s*/', '', newick, flags=re.DOTALL)
    newick = newick.strip()

    if ';' not in newick:
        raise ParseError("Invalid Newick format: missing semicolon")

    tree_line = newick[:newick.index(';')]
    tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
    if not tree_line.strip():
        raise ParseError("Invalid Newick format: no tree found")

    def skip_whitespace(s: str, pos: int) -> int:
        while pos < len(s) and s[pos] in ' \t\n\r':
            pos += 1
        return pos

    def parse_node(s: str, start: int) -> tuple[NewickNode, int]:
        """Parse a node from position start in string s."""
        node = NewickNode()
        pos = skip_whitespace(s, start)

        if pos < len(s) and s[pos] == '(':
            pos = skip_whitespace(s, pos + 1)
            while True:
                child, pos = parse_node(s, pos)
                node.children.append(child)
                pos = skip_whitespace(s, pos)

                if pos < len(s) and s[pos] == ',':
                    pos = skip_whitespace(s, pos + 1)
                    continue
                elif pos < len(s) and s[pos] == ')':
                    pos = skip_whitespace(s, pos + 1)
                    break
                else:
                    raise ParseError(f"Expected ',' or ')' at position {pos}")

        # Node name (quoted names keep their spaces)
        if pos < len(s) and s[pos] == "'":
            end = s.find("'", pos + 1)
            if end < 0:
                raise ParseError(f"Unterminated quoted name at position {pos}")
            node.name = s[pos + 1:end]
            pos = end + 1
        else:
            name_start = pos
            while pos < len(s) and s[pos] not in ',:(); \t\n\r':
                pos += 1
            if pos > name_start:
                node.name = s[name_start:pos]

        pos = skip_whitespace(s, pos)

        if pos < len(s) and s[pos] == ':':
            pos = skip_whitespace(s, pos + 1)
            length_start = pos
            while pos < len(s) and s[pos] not in ',(); \t\n\r':
                pos += 1
            try:
                node.branch_length = float(s[length_start:pos])
            except ValueError:
                raise ParseError(f"Invalid branch length: {s[length_start:pos]!r}")
            if node.branch_length < 0:
                raise ParseError(f"Negative branch length: {node.branch_length}")

        return node, pos

    root, pos = parse_node(tree_line, 0)
    pos = skip_whitespace(tree_line, pos)
    if pos != len(tree_line):
        raise ParseError(f"Unexpected character {tree_line[pos]!r} at position {pos}")

    return root


class Tree:
    """
    Unrooted binary phylogenetic tree.

    Nodes and edges live in flat arrays and refer to each other by index.
    Tips are nodes ``0..n_tips-1`` in order of appearance in the Newick
    string, inner nodes follow. Every inner node has exactly three incident
    edges, so a tree with ``n`` tips has ``n - 2`` inner nodes and
    ``2n - 3`` edges.

    Attributes
    ----------
    names : list[Optional[str]]
        Node names (inner nodes are usually unnamed)
    edges : list[Edge]
        Edge records, ``edges[i].id == i``
    adjacency : list[list[int]]
        Incident edge ids of every node
    n_tips : int
        Number of tips
    """

    def __init__(
        self,
        names: list[Optional[str]],
        edges: list[Edge],
        n_tips: int,
    ):
        self.names = names
        self.edges = edges
        self.n_tips = n_tips
        self.adjacency: list[list[int]] = [[] for _ in names]
        for edge in edges:
            for node in edge.nodes:
                self.adjacency[node].append(edge.id)

        if n_tips < 3:
            raise ParseError(f"Unrooted tree needs at least 3 tips, got {n_tips}")
        for node in range(n_tips, len(names)):
            if len(self.adjacency[node]) != 3:
                raise ParseError(
                    f"Tree is not binary: inner node {node} has "
                    f"{len(self.adjacency[node])} neighbours"
                )
        tip_names = self.tip_names
        if len(set(tip_names)) != len(tip_names):
            raise ParseError("Tree has duplicate tip names")

    @classmethod
    def from_newick(cls, newick_string: str) -> "Tree":
        """
        Parse a Newick string into an unrooted tree.

        A bifurcating root is removed by joining its two subtrees with a
        single edge whose length is the sum of the two root edges.

        Parameters
        ----------
        newick_string : str
            Newick format tree

        Returns
        -------
        Tree
            Parsed unrooted tree
        """
        root = parse_newick(newick_string)

        if len(root.children) == 2:
            left, right = root.children
            if left.branch_length is None and right.branch_length is None:
                joined = None
            else:
                joined = (left.branch_length or 0.0) + (right.branch_length or 0.0)
            if right.is_leaf and not left.is_leaf:
                left, right = right, left
            # Hang one subtree below the other so the root disappears
            if right.is_leaf:
                raise ParseError("Unrooted tree needs at least 3 tips")
            left.branch_length = joined
            right.children.append(left)
            right.branch_length = None
            root = right

        if root.is_leaf:
            raise ParseError("Unrooted tree needs at least 3 tips")
        if len(root.children) != 3:
            raise ParseError(
                f"Tree is not binary: root has {len(root.children)} children"
            )

        # Number tips first (order of appearance), then inner nodes
        preorder = []
        stack = [root]
        while stack:
            node = stack.pop()
            preorder.append(node)
            stack.extend(reversed(node.children))

        leaves = [node for node in preorder if node.is_leaf]
        inner = [node for node in preorder if not node.is_leaf]
        index = {}
        for i, node in enumerate(leaves + inner):
            index[id(node)] = i

        names = [None] * len(index)
        for node in leaves + inner:
            names[index[id(node)]] = node.name
        for i, leaf in enumerate(leaves):
            if not leaf.name:
                raise ParseError(f"Tip {i} has no name")

        edges = []
        for node in preorder:
            for child in node.children:
                edges.append(Edge(
                    id=len(edges),
                    nodes=(index[id(node)], index[id(child)]),
                    length=child.branch_length,
                ))

        return cls(names=names, edges=edges, n_tips=len(leaves))

    @classmethod
    def from_file(cls, filepath: Path | str) -> "Tree":
        """Read a Newick tree from a file."""
        filepath = Path(filepath)
        with open(filepath, 'r') as f:
            return cls.from_newick(f.read())

    @property
    def n_nodes(self) -> int:
        return len(self.names)

    @property
    def n_inner(self) -> int:
        return self.n_nodes - self.n_tips

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    @property
    def tip_names(self) -> list[str]:
        return list(self.names[:self.n_tips])

    def tip_index(self) -> dict[str, int]:
        """Map tip names to tip node indices."""
        return {name: i for i, name in enumerate(self.tip_names)}

    def is_tip(self, node: int) -> bool:
        return node < self.n_tips

    def neighbors(self, node: int) -> list[tuple[int, int]]:
        """Return ``(neighbour, edge_id)`` pairs around ``node``."""
        return [(self.edges[e].other(node), e) for e in self.adjacency[node]]

    def tip_edge(self, tip: int) -> int:
        """Return the id of the single edge attached to a tip."""
        return self.adjacency[tip][0]

    def fill_missing_branch_lengths(self, length: float = DEFAULT_BRANCH_LENGTH) -> int:
        """
        Give every edge without a (non-zero) length the default ``length``.

        Edges are visited in a traversal from the first inner node; every
        edge slot is processed once.

        Returns
        -------
        int
            Number of edges that were filled
        """
        visited = set()
        filled = 0
        stack = [self.n_tips]
        while stack:
            node = stack.pop()
            for neighbour, edge_id in self.neighbors(node):
                if edge_id in visited:
                    continue
                visited.add(edge_id)
                edge = self.edges[edge_id]
                if not edge.length:
                    edge.length = length
                    filled += 1
                stack.append(neighbour)
        return filled

    @property
    def branch_lengths(self) -> np.ndarray:
        """Branch lengths indexed by edge id (missing lengths are 0)."""
        return np.array(
            [edge.length if edge.length is not None else 0.0 for edge in self.edges],
            dtype=float,
        )

    def set_branch_lengths(self, lengths) -> None:
        """Write branch lengths (indexed by edge id) back into the edges."""
        lengths = np.asarray(lengths, dtype=float)
        if lengths.shape != (self.n_edges,):
            raise ValueError(
                f"Expected {self.n_edges} branch lengths, got shape {lengths.shape}"
            )
        for edge, length in zip(self.edges, lengths):
            edge.length = float(length)

    def total_length(self) -> float:
        return float(self.branch_lengths.sum())

    def to_newick(self, precision: int = 6) -> str:
        """
        Write the tree in Newick format.

        The tree is written as a basal trifurcation around the first inner
        node.

        Parameters
        ----------
        precision : int
            Number of decimals for branch lengths

        Returns
        -------
        str
            Newick string terminated by a semicolon
        """
        def fmt_length(edge_id: int) -> str:
            length = self.edges[edge_id].length
            if length is None:
                return ""
            return f":{length:.{precision}f}"

        def subtree(node: int, via_edge: int) -> str:
            if self.is_tip(node):
                return f"{self.names[node]}{fmt_length(via_edge)}"
            parts = [
                subtree(child, edge_id)
                for child, edge_id in self.neighbors(node)
                if edge_id != via_edge
            ]
            label = self.names[node] or ""
            return f"({','.join(parts)}){label}{fmt_length(via_edge)}"

        start = self.n_tips
        parts = [subtree(child, edge_id) for child, edge_id in self.neighbors(start)]
        return f"({','.join(parts)});"

    def __repr__(self) -> str:
        return f"Tree(n_tips={self.n_tips}, n_edges={self.n_edges})"
