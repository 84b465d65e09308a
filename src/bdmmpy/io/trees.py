"""
Timed phylogenetic tree parsing and manipulation.

Trees are read from Newick (optionally inside a NEXUS ``trees`` block) with
BEAST-style node metadata such as ``A[&type="deme1"]:0.5``. Node heights are
measured backwards from the most recent sample.

Sampled ancestors are represented the BEAST way: a bifurcation one of whose
children is a leaf on a zero-length edge (a *direct ancestor*). A named node
with a single child, ``(A:1.0)B:0.5``, is read as the sampled ancestor ``B``
and converted to that representation.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

_NAME_TERMINATORS = ',:;()[ \t\n\r'


@dataclass
class TreeNode:
    """
    Node of a timed phylogenetic tree.

    Attributes
    ----------
    id : int
        Node number. Leaves are numbered ``0..n_leaves-1`` in the order they
        appear, internal nodes follow in post-order.
    name : Optional[str]
        Node name (taxon name for leaves)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes (zero or two)
    branch_length : float
        Length of the edge to the parent
    metadata : dict[str, str]
        Annotations from ``[&key=value,...]`` comments
    height : float
        Time before the most recent sample
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)
    branch_length: float = 0.0
    metadata: Dict[str, str] = field(default_factory=dict)
    height: float = 0.0

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def is_direct_ancestor(self) -> bool:
        """Leaf on a zero-length edge: a sample that is an ancestor of others."""
        return self.is_leaf and self.parent is not None and self.branch_length == 0.0

    @property
    def is_sampled_ancestor(self) -> bool:
        """Bifurcation standing in for a sampled ancestor (one direct-ancestor child)."""
        return any(child.is_direct_ancestor for child in self.children)

    @property
    def direct_ancestor_child(self) -> Optional["TreeNode"]:
        for child in self.children:
            if child.is_direct_ancestor:
                return child
        return None

    @property
    def non_direct_ancestor_child(self) -> Optional["TreeNode"]:
        for child in self.children:
            if not child.is_direct_ancestor:
                return child
        return None

    def postorder(self) -> list["TreeNode"]:
        """Nodes of the subtree below this node, children left to right before parents."""
        result = []
        stack = [self]
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(node.children)
        result.reverse()
        return result

    def __repr__(self) -> str:
        return (f"TreeNode(id={self.id}, name={self.name!r}, "
                f"height={self.height:g}, n_children={len(self.children)})")


@dataclass
class Tree:
    """
    Rooted binary timed tree.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes (direct ancestors included)
    leaf_names : list[str]
        Names of leaf nodes, in node-number order

    Examples
    --------
    >>> tree = Tree.from_newick("((A[&type=0]:1.0,B[&type=1]:1.0):0.5,C[&type=1]:1.5);")
    >>> tree.n_leaves
    3
    >>> tree.root.height
    1.5
    """

    root: TreeNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]

    @classmethod
    def from_newick(cls, newick_string: str) -> "Tree":
        """
        Parse a Newick tree with optional BEAST metadata comments.

        Parameters
        ----------
        newick_string : str
            Newick format tree, terminated by a semicolon

        Returns
        -------
        Tree
            Parsed tree with node heights computed

        Raises
        ------
        ValueError
            On malformed input, polytomies, unnamed single-child nodes or
            negative branch lengths.
        """
        newick = newick_string.strip()
        # Rooting annotation written by BEAST before the tree
        newick = re.sub(r'^\[&[RU]\]\s*', '', newick)

        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")

        tree_line = newick[:newick.index(';')]
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
        if not tree_line.strip():
            raise ValueError("Invalid Newick format: no tree found")

        def skip_whitespace(s: str, pos: int) -> int:
            """Skip whitespace characters."""
            while pos < len(s) and s[pos] in ' \t\n\r':
                pos += 1
            return pos

        def parse_metadata(s: str, pos: int, node: TreeNode) -> int:
            """Parse a ``[&key=value,...]`` comment starting at ``s[pos] == '['``."""
            end = s.find(']', pos)
            if end < 0:
                raise ValueError(f"Unterminated comment at position {pos}")
            body = s[pos + 1:end]
            if body.startswith('&'):
                node.metadata.update(_parse_annotations(body[1:]))
            return end + 1

        def parse_label(s: str, pos: int, node: TreeNode) -> int:
            """Parse the name, metadata and branch length following a node."""
            # Node name, possibly quoted
            if pos < len(s) and s[pos] in '\'"':
                quote = s[pos]
                end = s.find(quote, pos + 1)
                if end < 0:
                    raise ValueError(f"Unterminated quoted name at position {pos}")
                node.name = s[pos + 1:end]
                pos = end + 1
            else:
                name_start = pos
                while pos < len(s) and s[pos] not in _NAME_TERMINATORS:
                    pos += 1
                if pos > name_start:
                    node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)
            if pos < len(s) and s[pos] == '[':
                pos = skip_whitespace(s, parse_metadata(s, pos, node))

            # Branch length (e.g., :0.123 or : 0.123), metadata may follow
            if pos < len(s) and s[pos] == ':':
                pos = skip_whitespace(s, pos + 1)
                if pos < len(s) and s[pos] == '[':
                    pos = skip_whitespace(s, parse_metadata(s, pos, node))
                length_start = pos
                while pos < len(s) and s[pos] not in ',()[; \t\n\r':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")
                if node.branch_length < 0.0:
                    raise ValueError(f"Negative branch length {node.branch_length} on node {node.name}")
                pos = skip_whitespace(s, pos)
                if pos < len(s) and s[pos] == '[':
                    pos = skip_whitespace(s, parse_metadata(s, pos, node))

            return pos

        def parse_tree(s: str) -> tuple[TreeNode, int]:
            """Parse the whole tree, keeping the open clades on a stack."""
            root = TreeNode(id=-1)
            node = root
            open_clades = []
            pos = skip_whitespace(s, 0)

            while True:
                if pos < len(s) and s[pos] == '(':
                    open_clades.append(node)
                    child = TreeNode(id=-1, parent=node)
                    node.children.append(child)
                    node = child
                    pos = skip_whitespace(s, pos + 1)
                    continue

                pos = parse_label(s, pos, node)
                while True:
                    if not open_clades:
                        return root, pos
                    if pos < len(s) and s[pos] == ',':
                        parent = open_clades[-1]
                        node = TreeNode(id=-1, parent=parent)
                        parent.children.append(node)
                        pos = skip_whitespace(s, pos + 1)
                        break
                    elif pos < len(s) and s[pos] == ')':
                        node = open_clades.pop()
                        pos = parse_label(s, skip_whitespace(s, pos + 1), node)
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

        root, pos = parse_tree(tree_line)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise ValueError(f"Unexpected text after tree at position {pos}")

        _expand_sampled_ancestors(root)
        leaves, internals = _check_binary(root)

        for i, leaf in enumerate(leaves):
            leaf.id = i
            if leaf.name is None:
                leaf.name = str(i)
        for i, node in enumerate(internals):
            node.id = len(leaves) + i

        tree = cls(
            root=root,
            n_nodes=len(leaves) + len(internals),
            n_leaves=len(leaves),
            leaf_names=[leaf.name for leaf in leaves],
        )
        tree.compute_heights()
        return tree

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Tree":
        """
        Read the first tree of a Newick or NEXUS file.

        NEXUS ``Translate`` tables are applied to leaf names.
        """
        text = Path(path).read_text()
        if not text.lstrip().upper().startswith('#NEXUS'):
            return cls.from_newick(text)

        match = re.search(r'^\s*tree\s+[^=]+=\s*(.+?;)', text, re.IGNORECASE | re.MULTILINE)
        if match is None:
            raise ValueError(f"No tree statement found in NEXUS file {path}")
        tree = cls.from_newick(match.group(1))

        translate = re.search(r'translate\s+(.*?);', text, re.IGNORECASE | re.DOTALL)
        if translate is not None:
            table = {}
            for entry in translate.group(1).split(','):
                parts = entry.split()
                if len(parts) == 2:
                    table[parts[0]] = parts[1].strip('\'"')
            for leaf in tree.leaves():
                leaf.name = table.get(leaf.name, leaf.name)
            tree.leaf_names = [leaf.name for leaf in tree.leaves()]

        return tree

    def compute_heights(self) -> None:
        """Set node heights from branch lengths (most recent leaf at height 0)."""
        order = self.postorder()
        depths = {self.root.id: 0.0}
        for node in reversed(order):
            for child in node.children:
                depths[child.id] = depths[node.id] + child.branch_length

        max_depth = max(depths.values())
        for node in order:
            node.height = max_depth - depths[node.id]

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        return self.root.postorder()

    def leaves(self) -> list[TreeNode]:
        """Leaf nodes ordered by node number."""
        return sorted((node for node in self.postorder() if node.is_leaf), key=lambda n: n.id)

    @property
    def direct_ancestor_count(self) -> int:
        """Number of sampled ancestors (zero-length leaves)."""
        return sum(1 for node in self.postorder() if node.is_direct_ancestor)

    @property
    def root_height(self) -> float:
        return self.root.height


def _parse_annotations(body: str) -> Dict[str, str]:
    """Split ``key=value,key2={a,b}`` into a dict, respecting braces and quotes."""
    annotations = {}
    depth = 0
    quote = None
    current = []
    parts = []
    for char in body:
        if quote:
            if char == quote:
                quote = None
            current.append(char)
        elif char in '\'"':
            quote = char
            current.append(char)
        elif char == '{':
            depth += 1
            current.append(char)
        elif char == '}':
            depth -= 1
            current.append(char)
        elif char == ',' and depth == 0:
            parts.append(''.join(current))
            current = []
        else:
            current.append(char)
    parts.append(''.join(current))

    for part in parts:
        if '=' not in part:
            continue
        key, value = part.split('=', 1)
        annotations[key.strip()] = value.strip().strip('\'"')
    return annotations


def _expand_sampled_ancestors(root: TreeNode) -> None:
    """Rewrite named single-child nodes as a bifurcation with a zero-length leaf."""
    for node in root.postorder():
        if len(node.children) != 1:
            continue
        if node.name is None:
            raise ValueError("Unnamed node with a single child cannot be read as a sampled ancestor")

        ancestor = TreeNode(id=-1, name=node.name, parent=node, branch_length=0.0,
                            metadata=dict(node.metadata))
        node.name = None
        node.metadata = {}
        node.children.append(ancestor)


def _check_binary(root: TreeNode) -> tuple[list[TreeNode], list[TreeNode]]:
    """Validate the topology and return (leaves in order, internal nodes in post-order)."""
    if root.is_leaf:
        raise ValueError("Tree must contain at least two leaves")

    leaves = []
    internals = []
    for node in root.postorder():
        if node.is_leaf:
            leaves.append(node)
            continue
        if len(node.children) != 2:
            raise ValueError(
                f"Node with {len(node.children)} children found; only binary trees are supported"
            )
        if all(child.is_direct_ancestor for child in node.children):
            raise ValueError("A node cannot have two zero-length leaf children")
        internals.append(node)
    return leaves, internals
