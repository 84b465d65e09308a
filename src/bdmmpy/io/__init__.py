"""
Input modules for timed trees and leaf types.

- **Timed trees**: Newick or NEXUS with BEAST metadata and sampled ancestors
- **Leaf types**: trait files, trait strings and metadata annotations
"""

from bdmmpy.io.traits import UNKNOWN_TYPE, read_type_traits, resolve_leaf_types
from bdmmpy.io.trees import Tree, TreeNode

__all__ = ["Tree", "TreeNode", "UNKNOWN_TYPE", "read_type_traits", "resolve_leaf_types"]
