"""
Leaf type assignment.

Leaf types are resolved once, before any evaluation, into a mapping from leaf
node number to type index. The unknown type (``-1``) makes the likelihood
marginalize over every type for that leaf.
"""

import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Union

from ..errors import ConfigurationError

if TYPE_CHECKING:
    from ..models.schedule import RateSchedule
    from .trees import Tree

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = -1

_UNKNOWN_LABELS = ("?", "")


def read_type_traits(path: Union[str, Path]) -> Dict[str, str]:
    """
    Read leaf type labels from a two-column text file.

    Each non-empty line holds a leaf name and its type label separated by a
    tab, a comma, ``=`` or whitespace. Lines starting with ``#`` are
    ignored, and so is a first line reading ``taxon``/``name``.

    Parameters
    ----------
    path : str or Path
        Trait file.

    Returns
    -------
    dict
        Leaf name to type label.
    """
    traits = {}
    with open(path) as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            parts = [p for p in re.split(r'[\t,=]|\s+', line) if p]
            if len(parts) != 2:
                raise ConfigurationError(
                    f"{path}, line {line_no}: expected '<leaf> <type>', got '{line}'"
                )
            name, label = parts
            if line_no == 1 and name.lower() in ("taxon", "name", "traits"):
                continue
            traits[name.strip('\'"')] = label.strip('\'"')
    return traits


def parse_trait_string(value: str) -> Dict[str, str]:
    """Parse a BEAST-style trait string ``"A=deme0,B=deme1"``."""
    traits = {}
    for entry in value.split(','):
        entry = entry.strip()
        if not entry:
            continue
        if '=' not in entry:
            raise ConfigurationError(f"Invalid trait entry '{entry}', expected name=type")
        name, label = entry.split('=', 1)
        traits[name.strip()] = label.strip()
    return traits


def load_type_traits(source: Union[str, Path]) -> Dict[str, str]:
    """
    Leaf type labels from a trait file or a BEAST-style trait string.

    A ``str`` containing ``=`` that does not name an existing file is read
    as ``"A=deme0,B=deme1"``; anything else is read as a trait file.
    """
    if isinstance(source, str) and '=' in source and not os.path.isfile(source):
        return parse_trait_string(source)
    return read_type_traits(source)


def _label_to_index(label, schedule: "RateSchedule") -> int:
    label = str(label).strip()
    if label in _UNKNOWN_LABELS:
        return UNKNOWN_TYPE
    if label in schedule.type_names:
        return schedule.type_names.index(label)

    # Numeric annotations such as "1.0" name the type "1"
    try:
        numeric = float(label)
    except ValueError:
        numeric = None
    if numeric is not None and numeric == round(numeric):
        rounded = str(int(round(numeric)))
        if rounded in schedule.type_names:
            return schedule.type_names.index(rounded)

    return schedule.type_index(label)


def resolve_leaf_types(
    tree: "Tree",
    schedule: "RateSchedule",
    leaf_types: Optional[Mapping[str, Union[str, int]]] = None,
    type_label: Optional[str] = None,
) -> Dict[int, int]:
    """
    Map every leaf of ``tree`` to a type index.

    Parameters
    ----------
    tree : Tree
        Tree whose leaves are typed.
    schedule : RateSchedule
        Supplies the number of types and their labels.
    leaf_types : mapping, optional
        Leaf name to type label (or integer index). Takes precedence over
        ``type_label``.
    type_label : str, optional
        Metadata key holding the type of each leaf, e.g. ``"type"`` for
        ``A[&type=deme0]``.

    Returns
    -------
    dict
        Leaf node number to type index, ``UNKNOWN_TYPE`` for ``?``.

    Raises
    ------
    ConfigurationError
        If the model has several types and a leaf has no type, or a label
        is not one of the schedule's type names.
    """
    if leaf_types is None and type_label is None:
        if schedule.n_types > 1:
            raise ConfigurationError(
                f"Model has {schedule.n_types} types; leaf types must be given "
                "as a mapping or a metadata key"
            )
        return {leaf.id: 0 for leaf in tree.leaves()}

    resolved = {}
    for leaf in tree.leaves():
        if leaf_types is not None:
            label = leaf_types.get(leaf.name)
            source = "type mapping"
        else:
            label = leaf.metadata.get(type_label)
            source = f"metadata key '{type_label}'"

        if label is None:
            if schedule.n_types > 1:
                raise ConfigurationError(f"No type for leaf '{leaf.name}' in {source}")
            resolved[leaf.id] = 0
            continue

        if isinstance(label, int) and not isinstance(label, bool):
            if not UNKNOWN_TYPE <= label < schedule.n_types:
                raise ConfigurationError(
                    f"Type index {label} of leaf '{leaf.name}' is out of range"
                )
            resolved[leaf.id] = label
        else:
            resolved[leaf.id] = _label_to_index(label, schedule)

    n_unknown = sum(1 for t in resolved.values() if t == UNKNOWN_TYPE)
    if n_unknown:
        logger.info("%d of %d leaves have unknown type", n_unknown, len(resolved))
    return resolved
