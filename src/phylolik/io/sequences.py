"""
Alphabets and integer-encoded sequence alignments.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import numpy as np

# Code used for gaps and characters outside the alphabet
UNKNOWN_CODE = -1


@dataclass(frozen=True)
class Alphabet:
    """
    Finite state alphabet.

    Attributes
    ----------
    name : str
        Alphabet name ('DNA', 'RNA', 'Protein', ...)
    letters : str
        One character per state, in state index order
    """

    name: str
    letters: str

    @property
    def size(self) -> int:
        return len(self.letters)

    def encode(self, sequence: str) -> np.ndarray:
        """Map characters to state indices, unknown characters to -1."""
        lookup = {c: i for i, c in enumerate(self.letters)}
        return np.array(
            [lookup.get(c, UNKNOWN_CODE) for c in sequence.upper()], dtype=np.int16
        )

    def decode(self, states) -> str:
        return ''.join(self.letters[s] if s >= 0 else '-' for s in states)


DNA = Alphabet("DNA", "ACGT")
RNA = Alphabet("RNA", "ACGU")
PROTEIN = Alphabet("Protein", "ARNDCQEGHILKMFPSTWYV")

ALPHABETS = {"dna": DNA, "rna": RNA, "protein": PROTEIN, "aa": PROTEIN}


@dataclass
class Alignment:
    """
    Multiple sequence alignment.

    Attributes
    ----------
    names : list[str]
        Sequence names
    sequences : ndarray, shape (n_species, n_sites)
        Encoded states, -1 for gaps and unknown characters
    alphabet : Alphabet
        State alphabet
    """

    names: list[str]
    sequences: np.ndarray
    alphabet: Alphabet

    def __post_init__(self):
        self.sequences = np.asarray(self.sequences, dtype=np.int16)
        if self.sequences.ndim != 2:
            raise ValueError("sequences must be a 2-D array")
        if len(self.names) != self.sequences.shape[0]:
            raise ValueError(
                f"{len(self.names)} names for {self.sequences.shape[0]} sequences"
            )
        if len(set(self.names)) != len(self.names):
            raise ValueError("Sequence names must be unique")
        if np.any(self.sequences >= self.alphabet.size) or np.any(self.sequences < UNKNOWN_CODE):
            raise ValueError(f"State codes outside alphabet {self.alphabet.name}")

    @property
    def n_species(self) -> int:
        return self.sequences.shape[0]

    @property
    def n_sites(self) -> int:
        return self.sequences.shape[1]

    @classmethod
    def from_sequences(cls, sequences: Mapping[str, str], alphabet: Alphabet = DNA) -> "Alignment":
        """
        Build an alignment from a name -> sequence mapping.

        Examples
        --------
        >>> aln = Alignment.from_sequences({"A": "ACGT", "B": "ACGA"})
        >>> aln.n_sites
        4
        """
        if not sequences:
            raise ValueError("No sequences given")
        names = list(sequences)
        raw = [re.sub(r'\s', '', sequences[name]) for name in names]
        lengths = {len(seq) for seq in raw}
        if len(lengths) > 1:
            raise ValueError(f"Sequences have different lengths: {lengths}")
        encoded = np.vstack([alphabet.encode(seq) for seq in raw])
        return cls(names=names, sequences=encoded, alphabet=alphabet)

    @classmethod
    def from_fasta(cls, filepath: Path | str, alphabet: Alphabet = DNA) -> "Alignment":
        """Read an aligned FASTA file."""
        filepath = Path(filepath)

        records: dict[str, list[str]] = {}
        current_name = None
        with open(filepath, 'r') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                if line.startswith('>'):
                    current_name = line[1:].strip()
                    records[current_name] = []
                elif current_name is None:
                    raise ValueError("FASTA data before first header")
                else:
                    records[current_name].append(line)

        if not records:
            raise ValueError("No sequences found in FASTA file")
        return cls.from_sequences(
            {name: ''.join(parts) for name, parts in records.items()}, alphabet
        )

    def get_sequence(self, name: str) -> np.ndarray:
        try:
            return self.sequences[self.names.index(name)]
        except ValueError:
            raise KeyError(f"Sequence '{name}' not found") from None

    def subset(self, names: list[str]) -> "Alignment":
        """Alignment restricted to (and ordered as) ``names``."""
        rows = [self.names.index(name) for name in names]
        return Alignment(list(names), self.sequences[rows].copy(), self.alphabet)

    def state_counts(self) -> np.ndarray:
        """Observed count of each state over all sequences, gaps excluded."""
        valid = self.sequences[self.sequences >= 0]
        return np.bincount(valid, minlength=self.alphabet.size).astype(float)

    def to_fasta(self, filepath: Path | str | None = None) -> str:
        """
        Format as FASTA, optionally writing to ``filepath``.

        Returns
        -------
        str
            FASTA text
        """
        lines = []
        for name, encoded_seq in zip(self.names, self.sequences):
            lines.append(f">{name}")
            lines.append(self.alphabet.decode(encoded_seq))
        text = '\n'.join(lines) + '\n'
        if filepath is not None:
            Path(filepath).write_text(text)
        return text
