"""
Pytest configuration and shared fixtures.
"""

import numpy as np
import pytest

from phylolik.io.sequences import DNA, Alignment
from phylolik.io.trees import Tree
from phylolik.models.nucleotide import HKY85, JCModel


FIVE_TAXA_NEWICK = "((A:0.10,B:0.12):0.05,(C:0.08,D:0.15):0.07,E:0.20);"


def simulate_alignment(tree: Tree, model, n_sites: int, seed: int = 1, rates=None) -> Alignment:
    """
    Simulate sequences down ``tree`` under ``model``.

    ``rates`` optionally gives one relative rate per site.
    """
    rng = np.random.default_rng(seed)
    n = model.get_number_of_states()
    if rates is None:
        rates = np.ones(n_sites)
    states = {tree.root.id: rng.choice(n, size=n_sites, p=model.get_frequencies())}
    for node in tree.preorder():
        if node.parent is None:
            continue
        parent_states = states[node.parent.id]
        child = np.empty(n_sites, dtype=int)
        for site in range(n_sites):
            P = model.get_Pij_t(node.branch_length * rates[site])
            row = np.clip(P[parent_states[site]], 0.0, None)
            child[site] = rng.choice(n, p=row / row.sum())
        states[node.id] = child
    leaves = tree.leaves()
    return Alignment(
        names=[leaf.name for leaf in leaves],
        sequences=np.vstack([states[leaf.id] for leaf in leaves]),
        alphabet=model.get_alphabet(),
    )


@pytest.fixture(scope="session")
def simulate():
    """Sequence simulator, see :func:`simulate_alignment`."""
    return simulate_alignment


@pytest.fixture
def three_taxa_tree():
    """Star tree with unit branch lengths."""
    return Tree.from_newick("(A:1.0,B:1.0,C:1.0);")


@pytest.fixture
def three_taxa_alignment():
    """Ten sites on the three taxa star."""
    return Alignment.from_sequences(
        {
            "A": "ACGTACGTAA",
            "B": "ACGTTCGAAC",
            "C": "AGGTACCTAG",
        }
    )


@pytest.fixture
def five_taxa_tree():
    """Unrooted five taxa tree (trifurcating root)."""
    return Tree.from_newick(FIVE_TAXA_NEWICK)


@pytest.fixture
def five_taxa_alignment():
    """300 sites simulated under HKY85 on the five taxa tree."""
    tree = Tree.from_newick(FIVE_TAXA_NEWICK)
    model = HKY85(kappa=3.0, freqs=[0.3, 0.2, 0.2, 0.3])
    return simulate_alignment(tree, model, 300, seed=7)


@pytest.fixture
def jc_model():
    return JCModel(DNA)


@pytest.fixture
def fasta_file(tmp_path):
    """Small aligned FASTA file with a gap and an ambiguous character."""
    content = ">A\nACGT-ACG\n>B\nACGTTACN\n>C\nAC\nGTTAGG\n"
    path = tmp_path / "small.fasta"
    path.write_text(content)
    return path
