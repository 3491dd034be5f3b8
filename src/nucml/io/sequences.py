"""
Nucleotide alignment parsing and site-pattern handling.
"""

import re
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ..errors import ParseError

# Nucleotide encoding; GTR rates are ordered AC, AG, AT, CG, CT, GT
NUCLEOTIDES = 'ACGT'
NUCLEOTIDE_TO_INDEX = {'A': 0, 'C': 1, 'G': 2, 'T': 3, 'U': 3}
INDEX_TO_NUCLEOTIDE = {0: 'A', 1: 'C', 2: 'G', 3: 'T'}

# Gaps, unknowns and IUPAC ambiguity codes are read as missing data
UNKNOWN_CODE = -1
AMBIGUOUS_CHARACTERS = set('-?.NRYSWKMBDHVX')


@dataclass
class Alignment:
    """
    Multiple nucleotide sequence alignment.

    Attributes
    ----------
    names : list[str]
        Sequence names/labels
    sequences : ndarray, shape (n_species, n_sites)
        Encoded sequences (0=A, 1=C, 2=G, 3=T, -1=missing)
    n_species : int
        Number of sequences
    n_sites : int
        Number of sites (alignment length)
    """

    names: list[str]
    sequences: np.ndarray
    n_species: int
    n_sites: int

    @classmethod
    def from_phylip(cls, filepath: Path | str) -> "Alignment":
        """
        Parse PHYLIP format alignment file.

        Both sequential layouts are accepted: name and sequence on one line
        (separated by whitespace), or the name on its own line followed by
        the sequence data.

        Parameters
        ----------
        filepath : Path or str
            Path to PHYLIP format file

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        with open(filepath, 'r') as f:
            lines = [line.rstrip() for line in f.readlines()]

        lines = [line for line in lines if line.strip()]
        if not lines:
            raise ParseError(f"Empty alignment file: {filepath}")

        header = lines[0].strip().split()
        try:
            n_species = int(header[0])
            n_chars = int(header[1])
        except (IndexError, ValueError):
            raise ParseError(f"Invalid PHYLIP header: {lines[0]!r}")

        names = []
        sequences_raw = []

        i = 1
        while i < len(lines) and len(names) < n_species:
            fields = lines[i].strip().split(None, 1)
            i += 1
            names.append(fields[0])
            seq_data = re.sub(r'\s', '', fields[1]).upper() if len(fields) > 1 else ""

            # Collect continuation lines until we have enough characters
            while len(seq_data) < n_chars and i < len(lines):
                seq_data += re.sub(r'\s', '', lines[i]).upper()
                i += 1

            sequences_raw.append(seq_data)

        if len(names) != n_species:
            raise ParseError(f"Expected {n_species} sequences, found {len(names)}")

        for name, seq in zip(names, sequences_raw):
            if len(seq) != n_chars:
                raise ParseError(
                    f"Sequence {name} has length {len(seq)}, expected {n_chars}"
                )

        return cls._build(names, sequences_raw)

    @classmethod
    def from_fasta(cls, filepath: Path | str) -> "Alignment":
        """
        Parse FASTA format alignment file.

        Parameters
        ----------
        filepath : Path or str
            Path to FASTA format file

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        names = []
        sequences_raw = []

        with open(filepath, 'r') as f:
            current_name = None
            current_seq = []

            for line in f:
                line = line.strip()

                if not line:
                    continue

                if line.startswith('>'):
                    if current_name is not None:
                        names.append(current_name)
                        sequences_raw.append(''.join(current_seq))

                    # Sequence name is the first word of the header
                    header = line[1:].strip().split()
                    if not header:
                        raise ParseError("FASTA header without a sequence name")
                    current_name = header[0]
                    current_seq = []
                elif current_name is None:
                    raise ParseError("FASTA data found before the first '>' header")
                else:
                    current_seq.append(re.sub(r'\s', '', line).upper())

            if current_name is not None:
                names.append(current_name)
                sequences_raw.append(''.join(current_seq))

        if not names:
            raise ParseError("No sequences found in FASTA file")

        seq_lengths = {len(seq) for seq in sequences_raw}
        if len(seq_lengths) > 1:
            raise ParseError(f"Sequences have different lengths: {sorted(seq_lengths)}")

        return cls._build(names, sequences_raw)

    @classmethod
    def from_file(cls, filepath: Path | str) -> "Alignment":
        """
        Read an alignment, detecting FASTA or PHYLIP format.

        The file extension decides which parser is tried first; the other
        format is tried when the first one fails.
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Alignment file not found: {path}")

        if path.suffix.lower() in ('.phy', '.phylip', '.txt'):
            readers = (cls.from_phylip, cls.from_fasta)
        else:
            readers = (cls.from_fasta, cls.from_phylip)

        try:
            return readers[0](path)
        except ParseError as first_error:
            try:
                return readers[1](path)
            except ParseError:
                raise first_error

    @classmethod
    def _build(cls, names: list[str], sequences_raw: list[str]) -> "Alignment":
        if len(set(names)) != len(names):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ParseError(f"Duplicate sequence names: {duplicates}")

        n_sites = len(sequences_raw[0])
        if n_sites == 0:
            raise ParseError("Alignment has no sites")

        return cls(
            names=list(names),
            sequences=cls._encode_nucleotides(names, sequences_raw),
            n_species=len(names),
            n_sites=n_sites,
        )

    @staticmethod
    def _encode_nucleotides(names: list[str], sequences: list[str]) -> np.ndarray:
        """Encode DNA sequences as integer arrays (0=A, 1=C, 2=G, 3=T, -1=missing)."""
        n_sequences = len(sequences)
        n_sites = len(sequences[0])

        encoded = np.zeros((n_sequences, n_sites), dtype=np.int8)

        for i, seq in enumerate(sequences):
            for j, nucleotide in enumerate(seq):
                if nucleotide in NUCLEOTIDE_TO_INDEX:
                    encoded[i, j] = NUCLEOTIDE_TO_INDEX[nucleotide]
                elif nucleotide in AMBIGUOUS_CHARACTERS:
                    encoded[i, j] = UNKNOWN_CODE
                else:
                    raise ParseError(
                        f"Invalid character {nucleotide!r} in sequence {names[i]} "
                        f"at position {j + 1}"
                    )

        return encoded

    def order_by(self, names: list[str]) -> "Alignment":
        """
        Return the alignment with rows ordered like ``names``.

        Parameters
        ----------
        names : list[str]
            Target order, usually the tip names of a tree

        Raises
        ------
        ParseError
            If the two name sets differ
        """
        index = {name: i for i, name in enumerate(self.names)}
        missing = [name for name in names if name not in index]
        extra = sorted(set(self.names) - set(names))
        if missing or extra:
            raise ParseError(
                "Alignment and tree have different taxa. "
                f"In tree but not alignment: {missing}. "
                f"In alignment but not tree: {extra}"
            )

        rows = [index[name] for name in names]
        return Alignment(
            names=list(names),
            sequences=self.sequences[rows],
            n_species=self.n_species,
            n_sites=self.n_sites,
        )

    def site_patterns(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Compress the alignment into unique site patterns.

        Returns
        -------
        patterns : ndarray, shape (n_species, n_patterns)
            Unique alignment columns
        weights : ndarray, shape (n_patterns,)
            Number of sites showing each pattern
        """
        patterns, counts = np.unique(self.sequences, axis=1, return_counts=True)
        return patterns, counts.astype(float)

    def to_fasta(self, filepath: Path | str) -> None:
        """
        Write alignment to FASTA format file.

        Missing data is written as 'N'.
        """
        filepath = Path(filepath)

        with open(filepath, 'w') as f:
            for name, encoded_seq in zip(self.names, self.sequences):
                f.write(f">{name}\n")
                seq = ''.join(INDEX_TO_NUCLEOTIDE.get(int(idx), 'N') for idx in encoded_seq)

                # Write in blocks of 60
                for i in range(0, len(seq), 60):
                    f.write(seq[i:i+60] + '\n')

    def __repr__(self) -> str:
        return f"Alignment(n_species={self.n_species}, n_sites={self.n_sites})"
