"""
Compression of alignment columns into distinct site patterns.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..exceptions import IndexOutOfBoundsError
from ..io.sequences import Alignment


@dataclass
class SitePatterns:
    """
    Distinct alignment columns with their multiplicities.

    Attributes
    ----------
    names : list[str]
        Sequence names, in row order of ``patterns``
    patterns : ndarray, shape (n_sequences, n_patterns)
        Distinct columns
    weights : ndarray, shape (n_patterns,)
        Number of sites showing each pattern
    site_to_pattern : ndarray, shape (n_sites,)
        Pattern index of every original site
    """

    names: list[str]
    patterns: np.ndarray
    weights: np.ndarray
    site_to_pattern: np.ndarray

    @classmethod
    def from_alignment(cls, alignment: Alignment, names: Sequence[str]) -> "SitePatterns":
        """
        Compress ``alignment`` restricted to ``names`` (usually the tree leaves).

        Raises
        ------
        ValueError
            If a name has no sequence in the alignment.
        """
        missing = [name for name in names if name not in alignment.names]
        if missing:
            raise ValueError(f"No sequence for leaves: {missing}")
        rows = alignment.subset(list(names)).sequences
        if rows.shape[1] == 0:
            raise ValueError("Alignment has no site")
        columns, inverse, counts = np.unique(
            rows.T, axis=0, return_inverse=True, return_counts=True
        )
        return cls(
            names=list(names),
            patterns=columns.T.copy(),
            weights=counts.astype(float),
            site_to_pattern=np.asarray(inverse).reshape(-1),
        )

    @property
    def n_patterns(self) -> int:
        return self.patterns.shape[1]

    @property
    def n_sites(self) -> int:
        return len(self.site_to_pattern)

    def get_pattern_for_site(self, site: int) -> int:
        if not 0 <= site < self.n_sites:
            raise IndexOutOfBoundsError("Site", site, 0, self.n_sites - 1)
        return int(self.site_to_pattern[site])
