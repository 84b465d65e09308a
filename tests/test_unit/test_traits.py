"""
Tests for leaf type assignment.
"""

import pytest

from bdmmpy import ConfigurationError, RateSchedule, Tree
from bdmmpy.io.traits import (
    UNKNOWN_TYPE,
    load_type_traits,
    parse_trait_string,
    read_type_traits,
    resolve_leaf_types,
)


@pytest.fixture
def numeric_schedule():
    return RateSchedule.constant(origin=2.5, birth_rate=[1.0, 1.0])


class TestReadTraits:
    """Test trait file parsing."""

    def test_header_skipped(self, types_file):
        assert read_type_traits(types_file) == {"a": "A", "b": "B", "c": "A", "d": "B"}

    def test_separators_and_comments(self, tmp_path):
        path = tmp_path / "traits.txt"
        path.write_text("# leaf types\na,A\nb=B\n\n'c' A\n")
        assert read_type_traits(path) == {"a": "A", "b": "B", "c": "A"}

    def test_bad_line(self, tmp_path):
        path = tmp_path / "traits.txt"
        path.write_text("a A extra\n")
        with pytest.raises(ConfigurationError, match="line 1"):
            read_type_traits(path)

    def test_trait_string(self):
        assert parse_trait_string("a=A, b=B,") == {"a": "A", "b": "B"}
        with pytest.raises(ConfigurationError):
            parse_trait_string("a")

    def test_load_trait_string(self):
        assert load_type_traits("a=A,b=B") == {"a": "A", "b": "B"}

    def test_load_long_trait_string(self):
        value = ",".join(f"taxon{i}=deme{i % 2}" for i in range(200))
        traits = load_type_traits(value)
        assert len(traits) == 200
        assert traits["taxon7"] == "deme1"

    def test_load_trait_file(self, types_file):
        assert load_type_traits(types_file) == read_type_traits(types_file)
        assert load_type_traits(str(types_file)) == read_type_traits(types_file)


class TestResolveLeafTypes:
    """Test mapping leaves to type indices."""

    def test_from_metadata(self, typed_tree, two_type_schedule):
        types = resolve_leaf_types(typed_tree, two_type_schedule, type_label="type")
        assert types == {0: 0, 1: 1, 2: 0, 3: 1}

    def test_from_mapping(self, typed_tree, two_type_schedule):
        mapping = {"a": "B", "b": "B", "c": "A", "d": 0}
        types = resolve_leaf_types(typed_tree, two_type_schedule, leaf_types=mapping)
        assert types == {0: 1, 1: 1, 2: 0, 3: 0}

    def test_mapping_takes_precedence(self, typed_tree, two_type_schedule):
        mapping = {"a": "B", "b": "A", "c": "B", "d": "A"}
        types = resolve_leaf_types(typed_tree, two_type_schedule, mapping, type_label="type")
        assert types == {0: 1, 1: 0, 2: 1, 3: 0}

    def test_numeric_labels(self, numeric_schedule):
        tree = Tree.from_newick("(a[&type=1.0]:1.0,b[&type=0]:1.0);")
        assert resolve_leaf_types(tree, numeric_schedule, type_label="type") == {0: 1, 1: 0}

    def test_unknown_type(self, typed_tree, two_type_schedule):
        mapping = {"a": "?", "b": "B", "c": "A", "d": ""}
        types = resolve_leaf_types(typed_tree, two_type_schedule, leaf_types=mapping)
        assert types[0] == UNKNOWN_TYPE
        assert types[3] == UNKNOWN_TYPE

    def test_single_type_needs_no_source(self, simple_tree, single_type_schedule):
        assert resolve_leaf_types(simple_tree, single_type_schedule) == {0: 0, 1: 0, 2: 0}

    def test_multi_type_needs_source(self, typed_tree, two_type_schedule):
        with pytest.raises(ConfigurationError, match="leaf types must be given"):
            resolve_leaf_types(typed_tree, two_type_schedule)

    def test_missing_leaf(self, typed_tree, two_type_schedule):
        with pytest.raises(ConfigurationError, match="No type for leaf 'd'"):
            resolve_leaf_types(typed_tree, two_type_schedule, leaf_types={"a": "A", "b": "A", "c": "B"})

    def test_unknown_label(self, typed_tree, two_type_schedule):
        with pytest.raises(ConfigurationError, match="Unknown type label"):
            resolve_leaf_types(typed_tree, two_type_schedule,
                               leaf_types={"a": "A", "b": "A", "c": "B", "d": "C"})

    def test_index_out_of_range(self, typed_tree, two_type_schedule):
        with pytest.raises(ConfigurationError, match="out of range"):
            resolve_leaf_types(typed_tree, two_type_schedule,
                               leaf_types={"a": 0, "b": 1, "c": 2, "d": 0})
