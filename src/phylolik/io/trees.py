"""
Phylogenetic tree structure, Newick parsing and topology operations.
"""

import copy
import re
from dataclasses import dataclass, field
from typing import Iterator, Optional

from ..exceptions import NodeNotFoundError


@dataclass(eq=False)
class TreeNode:
    """
    Phylogenetic tree node.

    Attributes
    ----------
    id : int
        Stable node identifier
    name : Optional[str]
        Node name (leaves, optionally internal nodes)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes
    branch_length : float
        Length of the branch leading to the parent
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = field(default=None, repr=False)
    children: list["TreeNode"] = field(default_factory=list, repr=False)
    branch_length: float = 0.0

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def add_child(self, child: "TreeNode") -> None:
        child.parent = self
        self.children.append(child)


@dataclass
class Tree:
    """
    Rooted phylogenetic tree addressed by node ids.

    Unrooted trees are represented with a multifurcating root, as produced by
    Newick strings such as ``(A:0.1,B:0.2,C:0.3);``.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree
    """

    root: TreeNode
    _nodes: dict[int, TreeNode] = field(init=False, repr=False, default_factory=dict)

    def __post_init__(self):
        self.reindex()

    def reindex(self) -> None:
        """Rebuild the id lookup table after structural edits."""
        nodes = {}
        for node in self.preorder():
            if node.id in nodes:
                raise ValueError(f"Duplicate node id {node.id}")
            nodes[node.id] = node
        self._nodes = nodes

    @classmethod
    def from_newick(cls, newick_string: str) -> "Tree":
        """
        Parse a Newick string.

        Node ids are assigned in pre-order starting at 0 (the root).
        Comments in square brackets are ignored.

        Parameters
        ----------
        newick_string : str
            Newick format tree

        Returns
        -------
        Tree
            Parsed tree
        """
        newick = re.sub(r'\[.*?\]', '', newick_string).strip()

        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")

        tree_line = newick[:newick.index(';')]
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
        if not tree_line.strip():
            raise ValueError("Invalid Newick format: no tree found")

        node_id_counter = [0]

        def skip_whitespace(s: str, pos: int) -> int:
            while pos < len(s) and s[pos] in ' \t\n\r':
                pos += 1
            return pos

        def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
            """Parse a node from position start in string s."""
            node = TreeNode(id=node_id_counter[0])
            node_id_counter[0] += 1
            node.parent = parent
            pos = skip_whitespace(s, start)

            if pos < len(s) and s[pos] == '(':
                pos = skip_whitespace(s, pos + 1)
                while True:
                    child, pos = parse_node(s, pos, node)
                    node.children.append(child)
                    pos = skip_whitespace(s, pos)

                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        continue
                    elif pos < len(s) and s[pos] == ')':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

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
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")

            return node, pos

        root, pos = parse_node(tree_line, 0, None)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise ValueError(f"Unexpected characters after position {pos}")

        return cls(root=root)

    def to_newick(self, precision: int = 10) -> str:
        """Write the tree in Newick format."""

        def write(node: TreeNode) -> str:
            text = ""
            if node.children:
                text = "(" + ",".join(write(child) for child in node.children) + ")"
            if node.name:
                text += node.name
            if node.parent is not None:
                text += f":{node.branch_length:.{precision}g}"
            return text

        return write(self.root) + ";"

    def __str__(self) -> str:
        return self.to_newick()

    def copy(self) -> "Tree":
        return copy.deepcopy(self)

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    @property
    def n_leaves(self) -> int:
        return len(self.leaves())

    @property
    def leaf_names(self) -> list[str]:
        return [leaf.name if leaf.name else str(leaf.id) for leaf in self.leaves()]

    def has_node(self, node_id: int) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: int) -> TreeNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def find_leaf(self, name: str) -> Optional[TreeNode]:
        for leaf in self.leaves():
            if leaf.name == name:
                return leaf
        return None

    def get_node_ids(self) -> list[int]:
        return [node.id for node in self.preorder()]

    def get_branch_node_ids(self) -> list[int]:
        """Ids of every node carrying a branch (all but the root)."""
        return [node.id for node in self.preorder() if node.parent is not None]

    def nodes(self) -> list[TreeNode]:
        return self.preorder()

    def leaves(self) -> list[TreeNode]:
        return [node for node in self.preorder() if node.is_leaf]

    def preorder(self) -> list[TreeNode]:
        result = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(reversed(node.children))
        return result

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        result = []

        def traverse(node: TreeNode) -> None:
            for child in node.children:
                traverse(child)
            result.append(node)

        traverse(self.root)
        return result

    def get_branches(self) -> list[tuple[TreeNode, TreeNode]]:
        """
        Get all branches as (parent, child) pairs in pre-order.

        Returns
        -------
        list[tuple[TreeNode, TreeNode]]
        """
        return [(node.parent, node) for node in self.preorder() if node.parent is not None]

    def path_to_root(self, node_id: int) -> Iterator[TreeNode]:
        """Yield the node and each of its ancestors up to the root."""
        node = self.get_node(node_id)
        while node is not None:
            yield node
            node = node.parent

    def get_branch_length(self, node_id: int) -> float:
        return self.get_node(node_id).branch_length

    def set_branch_length(self, node_id: int, length: float) -> None:
        self.get_node(node_id).branch_length = float(length)

    def total_length(self) -> float:
        return sum(child.branch_length for _, child in self.get_branches())

    def scale(self, factor: float) -> None:
        """Multiply every branch length by ``factor``."""
        for _, child in self.get_branches():
            child.branch_length *= factor

    def unroot(self) -> None:
        """
        Turn a bifurcating root into a trifurcation.

        The internal child of the root is removed, its children are attached
        to the root and its branch length is added to the other root child.
        Trees whose root does not have exactly two children are unchanged.
        """
        if len(self.root.children) != 2:
            return
        inner = next((c for c in self.root.children if not c.is_leaf), None)
        if inner is None:
            return
        other = next(c for c in self.root.children if c is not inner)
        other.branch_length += inner.branch_length
        position = self.root.children.index(inner)
        for child in inner.children:
            child.parent = self.root
        self.root.children[position:position + 1] = inner.children
        inner.parent = None
        inner.children = []
        self.reindex()

    def renumber(self) -> None:
        """Assign node ids in pre-order starting at 0 (the root)."""
        for i, node in enumerate(self.preorder()):
            node.id = i
        self.reindex()

    def nni_moves(self) -> list[tuple[int, int]]:
        """
        Every (node_id, child_index) accepted by :meth:`nni`.

        Each internal non-root node contributes one move per child. On an
        unrooted (multifurcating root) tree this enumerates both
        rearrangements around every internal edge.
        """
        moves = []
        for node in self.preorder():
            if node.parent is None or node.is_leaf:
                continue
            moves.extend((node.id, i) for i in range(len(node.children)))
        return moves

    def nni(self, node_id: int, child_index: int) -> None:
        """
        Nearest-neighbour interchange around the branch above ``node_id``.

        Swaps child ``child_index`` of the node with the node's first
        sibling. Branch lengths travel with the swapped subtrees and node ids
        are unchanged. Applying the same move twice restores the topology.
        """
        node = self.get_node(node_id)
        if node.parent is None or node.is_leaf:
            raise ValueError(f"NNI requires an internal non-root node, got {node_id}")
        if not 0 <= child_index < len(node.children):
            raise ValueError(f"Node {node_id} has no child {child_index}")
        siblings = [c for c in node.parent.children if c is not node]
        if not siblings:
            raise ValueError(f"Node {node_id} has no sibling")

        parent = node.parent
        child = node.children[child_index]
        sibling = siblings[0]
        sibling_pos = parent.children.index(sibling)

        node.children[child_index] = sibling
        sibling.parent = node
        parent.children[sibling_pos] = child
        child.parent = parent

    def splits(self) -> set[frozenset]:
        """
        Non-trivial bipartitions of the leaf set, unrooted.

        Each split is represented by the side not containing the
        alphabetically first leaf name.
        """
        names = sorted(self.leaf_names)
        all_names = frozenset(names)
        reference = names[0]
        result = set()

        def collect(node: TreeNode) -> frozenset:
            if node.is_leaf:
                below = frozenset([node.name if node.name else str(node.id)])
            else:
                below = frozenset().union(*(collect(child) for child in node.children))
            side = below if reference not in below else all_names - below
            if 1 < len(side) < len(all_names) - 1:
                result.add(side)
            return below

        collect(self.root)
        return result

    def robinson_foulds_distance(self, other: "Tree") -> int:
        """Number of splits present in exactly one of the two trees."""
        if sorted(self.leaf_names) != sorted(other.leaf_names):
            raise ValueError("Trees do not share the same leaf set")
        return len(self.splits() ^ other.splits())


def robinson_foulds_distance(tree1: Tree, tree2: Tree) -> int:
    """Unrooted Robinson-Foulds distance between two trees on the same leaves."""
    return tree1.robinson_foulds_distance(tree2)
