"""Tests for state schemas and reducers.

This module tests:
- The built-in reducers
- MapSchema key-by-key merging and defaults
- StructSchema zero-value semantics, reducers, templates and custom merges
- Schema inference from the initial state
"""

from dataclasses import dataclass, field
from typing import List

import pytest
from pydantic import BaseModel, Field

from graphflow.core.graph.schema import (
    MapSchema,
    OverwriteSchema,
    StructSchema,
    add,
    append,
    infer_schema,
    is_zero,
    keep_current,
    max_value,
    merge_dict,
    min_value,
    overwrite,
    set_union,
)


class Story(BaseModel):
    """Pydantic state used across schema tests."""
    title: str = ""
    lines: List[str] = Field(default_factory=list)
    words: int = 0
    done: bool = False


@dataclass
class Tally:
    """Dataclass state used across schema tests."""
    label: str = ""
    seen: List[str] = field(default_factory=list)
    total: int = 0


@dataclass
class Stop:
    """Nested dataclass."""
    city: str = ""


@dataclass
class Trip:
    """Dataclass state with a nested dataclass field."""
    label: str = ""
    stop: Stop = field(default_factory=Stop)


class TestReducers:
    """Test suite for the built-in reducers."""

    @pytest.mark.parametrize("value,expected", [
        (None, True), (False, True), (0, True), (0.0, True), ("", True), ([], True), ({}, True),
        (True, False), (1, False), ("x", False), ([0], False), (Story(), False),
    ])
    def test_is_zero(self, value, expected):
        """Test which values count as unset."""
        assert is_zero(value) is expected

    def test_overwrite_and_keep(self):
        """Test the replacing reducers."""
        assert overwrite(1, 2) == 2
        assert keep_current(1, 2) == 1
        assert keep_current(None, 2) == 2

    def test_append(self):
        """Test list concatenation."""
        assert append(["a"], ["b", "c"]) == ["a", "b", "c"]
        assert append(None, "x") == ["x"]
        assert append(["a"], None) == ["a"]

    def test_add(self):
        """Test numeric and string sums."""
        assert add(1, 2) == 3
        assert add(None, 2) == 2
        assert add("ab", "c") == "abc"

    def test_min_max(self):
        """Test min and max reducers."""
        assert max_value(3, 5) == 5
        assert max_value(None, 5) == 5
        assert min_value(3, 5) == 3
        assert min_value(3, None) == 3

    def test_set_union_keeps_order(self):
        """Test that the union keeps first-seen order."""
        assert set_union(["a", "b"], ["b", "c", "a"]) == ["a", "b", "c"]

    def test_merge_dict(self):
        """Test shallow dict merging."""
        assert merge_dict({"a": 1, "b": 1}, {"b": 2}) == {"a": 1, "b": 2}
        assert merge_dict(None, {"a": 1}) == {"a": 1}


class TestMapSchema:
    """Test suite for MapSchema."""

    def test_present_keys_overwrite(self):
        """Test that returned keys replace, absent keys stay."""
        schema = MapSchema()
        state = schema.update({"a": 1, "b": 2}, {"b": 3, "c": 4})
        assert state == {"a": 1, "b": 3, "c": 4}

    def test_reducers(self):
        """Test per-key reducers."""
        schema = MapSchema(reducers={"log": append}).register_reducer("count", add)
        state = {"log": ["start"], "count": 1}
        state = schema.update(state, {"log": ["a"], "count": 2})
        state = schema.update(state, {"log": ["b"], "count": 3})
        assert state == {"log": ["start", "a", "b"], "count": 6}

    def test_explicit_zero_applies(self):
        """Test that returning a zero value still sets the key."""
        schema = MapSchema()
        assert schema.update({"count": 5}, {"count": 0}) == {"count": 0}

    def test_none_update_is_noop(self):
        """Test that a None update leaves the state alone."""
        state = {"a": 1}
        assert MapSchema().update(state, None) is state

    def test_update_does_not_mutate(self):
        """Test that merging returns a new dict."""
        state = {"a": 1}
        MapSchema().update(state, {"a": 2})
        assert state == {"a": 1}

    def test_defaults_seed_missing_keys(self):
        """Test default values for the initial state."""
        schema = MapSchema(defaults={"log": [], "mode": "fast"})
        assert schema.seed(None) == {"log": [], "mode": "fast"}
        assert schema.seed({"mode": "slow"}) == {"log": [], "mode": "slow"}
        assert schema.seed({"mode": ""}) == {"log": [], "mode": "fast"}

    def test_seed_copies_initial(self):
        """Test that the caller's initial state is never mutated."""
        initial = {"log": ["a"]}
        seeded = MapSchema().seed(initial)
        seeded["log"].append("b")
        assert initial == {"log": ["a"]}

    def test_non_dict_update_rejected(self):
        """Test that dict state needs dict updates."""
        with pytest.raises(TypeError):
            MapSchema().update({}, ["not", "a", "dict"])


class TestStructSchema:
    """Test suite for StructSchema."""

    def test_zero_fields_are_skipped(self):
        """Test that zero-valued fields in an instance update are ignored."""
        schema = StructSchema(Story)
        state = schema.update(Story(title="t", words=4), Story(words=9))
        assert state == Story(title="t", words=9)

    def test_dict_updates_always_apply(self):
        """Test that dict keys apply even when zero."""
        schema = StructSchema(Story)
        state = schema.update(Story(title="t", words=4), {"words": 0, "done": True})
        assert state == Story(title="t", words=0, done=True)

    def test_field_reducers(self):
        """Test reducers registered per field."""
        schema = StructSchema(Story, reducers={"lines": append, "words": add})
        state = Story(title="t")
        state = schema.update(state, Story(lines=["once"], words=1))
        state = schema.update(state, Story(lines=["upon"], words=1))
        assert state.lines == ["once", "upon"]
        assert state.words == 2
        assert state.title == "t"

    def test_dataclass_state(self):
        """Test dataclass state with reducers."""
        schema = StructSchema(Tally, reducers={"seen": set_union, "total": add})
        state = schema.update(Tally(label="x", seen=["a"]), Tally(seen=["a", "b"], total=2))
        assert state == Tally(label="x", seen=["a", "b"], total=2)

    def test_update_returns_new_value(self):
        """Test that the current state is not mutated."""
        current = Story(title="t")
        StructSchema(Story).update(current, Story(title="u"))
        assert current.title == "t"

    def test_template_seeds_zero_fields(self):
        """Test the template fills unset fields of the initial state once."""
        schema = StructSchema(Story, template=Story(title="untitled", words=1))
        assert schema.seed(Story(words=5)) == Story(title="untitled", words=5)
        assert schema.seed(None) == Story(title="untitled", words=1)

    def test_seed_from_mapping(self):
        """Test that a dict initial state is converted to the state type."""
        assert StructSchema(Story).seed({"title": "t"}) == Story(title="t")

    def test_seed_wrong_type(self):
        """Test that initial state of another type is rejected."""
        with pytest.raises(TypeError):
            StructSchema(Story).seed(Tally())

    def test_custom_merge(self):
        """Test that a merge function replaces field merging."""
        schema = StructSchema(Story, merge=lambda current, incoming: incoming)
        assert schema.update(Story(title="t"), Story()) == Story()

    def test_unknown_field_in_dict(self):
        """Test that dict updates must name real fields."""
        with pytest.raises(ValueError):
            StructSchema(Story).update(Story(), {"nope": 1})

    def test_unknown_reducer_field(self):
        """Test that reducers must name real fields."""
        with pytest.raises(ValueError):
            StructSchema(Story, reducers={"nope": add})

    def test_requires_struct_type(self):
        """Test that only models and dataclasses are accepted."""
        with pytest.raises(TypeError):
            StructSchema(dict)

    def test_coerce(self):
        """Test rebuilding state loaded as a plain dict."""
        schema = StructSchema(Story)
        assert schema.coerce({"title": "t", "lines": ["a"]}) == Story(title="t", lines=["a"])
        story = Story()
        assert schema.coerce(story) is story

    def test_coerce_nested_dataclass(self):
        """Test that nested dataclass fields are rebuilt from dicts."""
        schema = StructSchema(Trip)
        trip = schema.coerce({"label": "t", "stop": {"city": "Oslo"}})
        assert trip == Trip(label="t", stop=Stop(city="Oslo"))
        assert schema.seed({"stop": {"city": "Rome"}}).stop == Stop(city="Rome")

    def test_clone_has_own_reducers(self):
        """Test that reducers registered on a clone stay on the clone."""
        schema = StructSchema(Story, reducers={"lines": append})
        clone = schema.clone()
        clone.register_reducer("words", add)
        assert schema.reducers == {"lines": append}
        assert clone.reducers == {"lines": append, "words": add}

        map_schema = MapSchema(defaults={"log": []})
        map_clone = map_schema.clone()
        map_clone.register_reducer("log", append)
        assert map_schema.reducers == {}
        assert map_clone.defaults == {"log": []}


class TestInference:
    """Test suite for infer_schema."""

    def test_infer(self):
        """Test the schema picked for each kind of initial state."""
        assert isinstance(infer_schema(None), MapSchema)
        assert isinstance(infer_schema({"a": 1}), MapSchema)
        assert isinstance(infer_schema(Story()), StructSchema)
        assert isinstance(infer_schema(Tally()), StructSchema)
        assert isinstance(infer_schema(42), OverwriteSchema)

    def test_overwrite_schema(self):
        """Test whole-value replacement."""
        schema = OverwriteSchema()
        assert schema.update(1, 2) == 2
        assert schema.update(1, None) == 1
