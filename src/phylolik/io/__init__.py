"""
Input/Output modules for sequence alignments and phylogenetic trees.

- **Sequence alignments**: FASTA files and in-memory sequences
- **Phylogenetic trees**: Newick format
"""

from phylolik.io.sequences import DNA, PROTEIN, RNA, Alignment, Alphabet
from phylolik.io.trees import Tree, TreeNode, robinson_foulds_distance

__all__ = [
    "Alignment",
    "Alphabet",
    "DNA",
    "RNA",
    "PROTEIN",
    "Tree",
    "TreeNode",
    "robinson_foulds_distance",
]
