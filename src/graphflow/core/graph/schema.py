"""State schemas and reducers.

A schema decides how the partial state returned by a node is merged into the
accumulated workflow state. The engine applies updates one node at a time in
node declaration order, so reducers need not be commutative.

Three schemas are provided:

1. MapSchema: dict state. Keys present in a node's returned dict are merged
   with that key's reducer (overwrite by default); absent keys are kept.
2. StructSchema: pydantic model or dataclass state. A field is only updated
   when the node returns a non-zero value for it, or names it in a dict.
3. OverwriteSchema: the returned value replaces the state wholesale.

Example:
    ```python
    class Story(BaseModel):
        title: str = ""
        lines: List[str] = []
        words: int = 0

    schema = StructSchema(Story, reducers={"lines": append, "words": add})
    state = schema.update(Story(title="t"), Story(lines=["once"], words=1))
    ```
"""

import abc
import copy
import dataclasses
import functools
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from pydantic import BaseModel, TypeAdapter

from graphflow.core.checkpoint.registry import is_struct_type
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.SCHEMA)

Reducer = Callable[[Any, Any], Any]


def is_zero(value: Any) -> bool:
    """True for None, False, numeric zero and empty strings or collections."""
    if value is None:
        return True
    if isinstance(value, bool):
        return value is False
    if isinstance(value, (int, float, complex)):
        return value == 0
    if isinstance(value, (str, bytes, bytearray, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


###################################################################
# Reducers
###################################################################

def overwrite(current: Any, incoming: Any) -> Any:
    """Replace the accumulated value."""
    return incoming


def keep_current(current: Any, incoming: Any) -> Any:
    """Keep the accumulated value; take the incoming one only if there is none."""
    return incoming if is_zero(current) else current


def _as_items(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def append(current: Any, incoming: Any) -> list:
    """Concatenate sequences; a single non-list value is appended."""
    return _as_items(current) + _as_items(incoming)


def add(current: Any, incoming: Any) -> Any:
    """Sum the values."""
    if current is None:
        return incoming
    if incoming is None:
        return current
    return current + incoming


def max_value(current: Any, incoming: Any) -> Any:
    if current is None:
        return incoming
    if incoming is None:
        return current
    return max(current, incoming)


def min_value(current: Any, incoming: Any) -> Any:
    if current is None:
        return incoming
    if incoming is None:
        return current
    return min(current, incoming)


def set_union(current: Any, incoming: Any) -> list:
    """Ordered union: items already present are not added again."""
    merged = []
    for item in _as_items(current) + _as_items(incoming):
        if item not in merged:
            merged.append(item)
    return merged


def merge_dict(current: Any, incoming: Any) -> dict:
    """Shallow dict merge; incoming keys win."""
    merged = dict(current or {})
    merged.update(incoming or {})
    return merged


###################################################################
# Schemas
###################################################################

class StateSchema(abc.ABC):
    """Merge policy for one state type."""

    def init(self) -> Any:
        """Initial value used when an execution starts without state."""
        return None

    def seed(self, initial: Any) -> Any:
        """Prepare the initial state once, before the first superstep."""
        return self.copy(initial)

    @abc.abstractmethod
    def update(self, current: Any, incoming: Any) -> Any:
        """Merge a node's return value into the accumulated state."""

    def copy(self, state: Any) -> Any:
        """Independent copy handed to each handler."""
        return copy.deepcopy(state)

    def coerce(self, state: Any) -> Any:
        """Convert a value loaded from a checkpoint back to the state type."""
        return state

    def clone(self) -> "StateSchema":
        """Copy whose reducer table can change without affecting this one."""
        return copy.copy(self)


class OverwriteSchema(StateSchema):
    """Each non-None return replaces the whole state."""

    def update(self, current: Any, incoming: Any) -> Any:
        return current if incoming is None else incoming


class MapSchema(StateSchema):
    """Schema for dict state with per-key reducers.

    Args:
        reducers: Reducer per key; keys without one are overwritten
        defaults: Values seeded into missing or empty keys of the initial state
    """

    def __init__(
        self,
        reducers: Optional[Dict[str, Reducer]] = None,
        defaults: Optional[Dict[str, Any]] = None,
    ):
        self.reducers: Dict[str, Reducer] = dict(reducers or {})
        self.defaults: Dict[str, Any] = dict(defaults or {})

    def clone(self) -> "MapSchema":
        return MapSchema(reducers=self.reducers, defaults=copy.deepcopy(self.defaults))

    def register_reducer(self, key: str, reducer: Reducer) -> "MapSchema":
        self.reducers[key] = reducer
        logger.debug(f"Registered reducer for key {key}: {getattr(reducer, '__name__', reducer)}")
        return self

    def init(self) -> Dict[str, Any]:
        return copy.deepcopy(self.defaults)

    def seed(self, initial: Any) -> Dict[str, Any]:
        if initial is None:
            return self.init()
        if not isinstance(initial, Mapping):
            raise TypeError(f"MapSchema expects dict state, got {type(initial).__name__}")
        state = copy.deepcopy(dict(initial))
        for key, value in self.defaults.items():
            if is_zero(state.get(key)):
                state[key] = copy.deepcopy(value)
        return state

    def update(self, current: Any, incoming: Any) -> Dict[str, Any]:
        if incoming is None:
            return current
        if not isinstance(incoming, Mapping):
            raise TypeError(f"MapSchema expects dict updates, got {type(incoming).__name__}")
        merged = dict(current or {})
        for key, value in incoming.items():
            reducer = self.reducers.get(key, overwrite)
            merged[key] = reducer(merged.get(key), value)
        return merged


class StructSchema(StateSchema):
    """Schema for pydantic model or dataclass state.

    A node may return an instance of the state type or a dict of field
    values. For an instance, zero-valued fields count as "not set" and leave
    the accumulated value alone; non-zero fields go through the field's
    reducer, or overwrite when none is registered. Keys of a returned dict
    are always applied, which is how a node resets a field to zero.

    Args:
        state_type: The pydantic model or dataclass class
        reducers: Reducer per field name
        template: Instance whose non-zero fields fill zero fields of the
            initial state, once, before the first superstep
        merge: Replaces the field-by-field merge entirely
    """

    def __init__(
        self,
        state_type: type,
        reducers: Optional[Dict[str, Reducer]] = None,
        template: Any = None,
        merge: Optional[Callable[[Any, Any], Any]] = None,
    ):
        if not is_struct_type(state_type):
            raise TypeError(f"StructSchema needs a pydantic model or dataclass, got {state_type!r}")
        if template is not None and not isinstance(template, state_type):
            raise TypeError(f"template must be a {state_type.__name__} instance")
        self.state_type = state_type
        self.field_names: Tuple[str, ...] = _field_names(state_type)
        self.reducers: Dict[str, Reducer] = {}
        self.template = template
        self.merge = merge
        for name, reducer in (reducers or {}).items():
            self.register_reducer(name, reducer)

    def register_reducer(self, field: str, reducer: Reducer) -> "StructSchema":
        if field not in self.field_names:
            raise ValueError(f"{self.state_type.__name__} has no field {field!r}")
        self.reducers[field] = reducer
        logger.debug(f"Registered reducer for {self.state_type.__name__}.{field}")
        return self

    def init(self) -> Any:
        return self.copy(self.template) if self.template is not None else None

    def clone(self) -> "StructSchema":
        clone = copy.copy(self)
        clone.reducers = dict(self.reducers)
        return clone

    @functools.cached_property
    def adapter(self) -> TypeAdapter:
        """Validator that rebuilds nested models and dataclasses from plain data."""
        return TypeAdapter(self.state_type)

    def coerce(self, state: Any) -> Any:
        if isinstance(state, Mapping):
            return self.adapter.validate_python(dict(state))
        return state

    def seed(self, initial: Any) -> Any:
        if initial is None:
            initial = self.init()
            if initial is None:
                initial = self.state_type()
        elif isinstance(initial, Mapping):
            initial = self.adapter.validate_python(dict(initial))
        elif not isinstance(initial, self.state_type):
            raise TypeError(
                f"expected {self.state_type.__name__} state, got {type(initial).__name__}"
            )
        state = self.copy(initial)
        if self.template is None:
            return state
        seeded = {
            name: copy.deepcopy(getattr(self.template, name))
            for name in self.field_names
            if is_zero(getattr(state, name)) and not is_zero(getattr(self.template, name))
        }
        return _replace(state, seeded)

    def update(self, current: Any, incoming: Any) -> Any:
        if incoming is None:
            return current
        if self.merge is not None:
            return self.merge(current, incoming)

        changes = {}
        for name, value, explicit in self._incoming_fields(incoming):
            if not explicit and is_zero(value):
                continue
            reducer = self.reducers.get(name)
            if reducer is not None:
                changes[name] = reducer(getattr(current, name), value)
            else:
                changes[name] = value
        return _replace(current, changes)

    def _incoming_fields(self, incoming: Any) -> Iterable[Tuple[str, Any, bool]]:
        if isinstance(incoming, Mapping):
            unknown = set(incoming) - set(self.field_names)
            if unknown:
                raise ValueError(
                    f"{self.state_type.__name__} has no fields {sorted(unknown)}"
                )
            return [(name, value, True) for name, value in incoming.items()]
        if not isinstance(incoming, self.state_type):
            raise TypeError(
                f"expected {self.state_type.__name__} update, got {type(incoming).__name__}"
            )
        return [(name, getattr(incoming, name), False) for name in self.field_names]


def _field_names(state_type: type) -> Tuple[str, ...]:
    if issubclass(state_type, BaseModel):
        return tuple(state_type.model_fields)
    return tuple(f.name for f in dataclasses.fields(state_type))


def _replace(state: Any, changes: Dict[str, Any]) -> Any:
    if not changes:
        return state
    if isinstance(state, BaseModel):
        return state.model_copy(update=changes)
    return dataclasses.replace(state, **changes)


def infer_schema(value: Any) -> StateSchema:
    """Pick a schema for a state value when none was set on the graph."""
    if value is None or isinstance(value, Mapping):
        return MapSchema()
    if is_struct_type(type(value)):
        return StructSchema(type(value))
    return OverwriteSchema()
