"""Type registry for typed state (de)serialization.

Checkpoint stores persist state as JSON. Plain JSON loses the concrete type of
a pydantic model or dataclass, so a registered type is wrapped in an
envelope naming it::

    {"_type": "UserState", "_value": {"name": "ada", "age": 36}}

On the way back the name is resolved to the registered class and the payload
is validated into a fresh instance. Unregistered values are written as plain
JSON and come back as generic dicts/lists/scalars. A plain dict that has its
own ``_type`` key is wrapped under the reserved name ``__json__`` so it is not
mistaken for an envelope.

A process-wide default registry is provided for convenience; tests and
multi-tenant applications can build isolated ``TypeRegistry`` instances and
inject them into ``CheckpointSerializer``.

Example:
    ```python
    @registered_type("UserState")
    class UserState(BaseModel):
        name: str = ""
        age: int = 0

    data = get_type_registry().marshal(UserState(name="ada", age=36))
    state = get_type_registry().unmarshal(data)  # -> UserState
    ```
"""

import dataclasses
import json
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type, Union

from pydantic import BaseModel, TypeAdapter
from pydantic_core import PydanticSerializationError, to_jsonable_python

from graphflow.core.errors import (
    SerializationError,
    TypeRegistrationError,
    UnknownTypeError,
)
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.REGISTRY)

ENVELOPE_TYPE = "_type"
ENVELOPE_VALUE = "_value"
# Reserved name wrapping plain data that already carries an ENVELOPE_TYPE key
PLAIN_TYPE = "__json__"

MarshalFunc = Callable[[Any], Any]
UnmarshalFunc = Callable[[Any], Any]


def is_struct_type(cls: Any) -> bool:
    """True for pydantic model classes and dataclass classes."""
    if not isinstance(cls, type):
        return False
    return issubclass(cls, BaseModel) or dataclasses.is_dataclass(cls)


@dataclass(frozen=True)
class TypeEntry:
    """A registered type and its codec."""
    name: str
    cls: type
    adapter: TypeAdapter
    marshal: Optional[MarshalFunc] = None
    unmarshal: Optional[UnmarshalFunc] = None

    def encode(self, value: Any) -> Any:
        if self.marshal is not None:
            return self.marshal(value)
        return self.adapter.dump_python(value, mode="json")

    def decode(self, payload: Any) -> Any:
        if self.unmarshal is not None:
            return self.unmarshal(payload)
        return self.adapter.validate_python(payload)


class TypeRegistry:
    """Thread-safe mapping between struct types and stable names."""

    def __init__(self):
        self._lock = threading.RLock()
        self._by_type: Dict[type, TypeEntry] = {}
        self._by_name: Dict[str, TypeEntry] = {}

    def register(
        self,
        cls: Type,
        name: str,
        marshal: Optional[MarshalFunc] = None,
        unmarshal: Optional[UnmarshalFunc] = None,
    ) -> None:
        """Associate ``cls`` with ``name``.

        Args:
            cls: A pydantic model or dataclass class
            name: Stable name written into envelopes
            marshal: Optional function turning an instance into JSON-compatible data
            unmarshal: Optional function building an instance from that data

        Raises:
            TypeRegistrationError: If ``cls`` is not a struct type, is already
                registered under another name, or ``name`` is taken by
                another type
        """
        if not is_struct_type(cls):
            raise TypeRegistrationError(
                f"only pydantic models and dataclasses can be registered, got {cls!r}"
            )
        if not isinstance(name, str) or not name:
            raise TypeRegistrationError("type name must be a non-empty string")
        if name == PLAIN_TYPE:
            raise TypeRegistrationError(f"type name {PLAIN_TYPE!r} is reserved")

        with self._lock:
            existing = self._by_type.get(cls)
            if existing is not None and existing.name != name:
                raise TypeRegistrationError(
                    f"type {cls.__qualname__} already registered as {existing.name!r}"
                )
            owner = self._by_name.get(name)
            if owner is not None and owner.cls is not cls:
                raise TypeRegistrationError(
                    f"name {name!r} already registered for {owner.cls.__qualname__}"
                )
            if existing is not None and marshal is None and unmarshal is None:
                return

            entry = TypeEntry(
                name=name,
                cls=cls,
                adapter=existing.adapter if existing else TypeAdapter(cls),
                marshal=marshal,
                unmarshal=unmarshal,
            )
            self._by_type[cls] = entry
            self._by_name[name] = entry
        logger.debug(f"Registered type {cls.__qualname__} as {name!r}")

    def name_of(self, cls: type) -> Optional[str]:
        """Registered name for ``cls``, or None."""
        with self._lock:
            entry = self._by_type.get(cls)
        return entry.name if entry else None

    def type_of(self, name: str) -> Optional[type]:
        """Registered class for ``name``, or None."""
        with self._lock:
            entry = self._by_name.get(name)
        return entry.cls if entry else None

    def is_registered(self, cls: type) -> bool:
        with self._lock:
            return cls in self._by_type

    def to_jsonable(self, value: Any) -> Any:
        """Convert ``value`` to JSON-compatible data, enveloping registered types."""
        with self._lock:
            entry = self._by_type.get(type(value))

        if entry is not None:
            try:
                payload = entry.encode(value)
            except SerializationError:
                raise
            except Exception as e:
                raise SerializationError(f"failed to marshal {entry.name}: {e}") from e
            return {ENVELOPE_TYPE: entry.name, ENVELOPE_VALUE: payload}

        try:
            data = to_jsonable_python(value)
        except PydanticSerializationError as e:
            raise SerializationError(
                f"cannot serialize value of type {type(value).__name__}: {e}"
            ) from e
        if isinstance(data, dict) and ENVELOPE_TYPE in data:
            return {ENVELOPE_TYPE: PLAIN_TYPE, ENVELOPE_VALUE: data}
        return data

    def from_jsonable(self, data: Any) -> Any:
        """Inverse of ``to_jsonable``.

        Raises:
            UnknownTypeError: If the envelope names an unregistered type
            SerializationError: If the envelope is malformed or decoding fails
        """
        if not (isinstance(data, dict) and ENVELOPE_TYPE in data):
            return data

        name = data[ENVELOPE_TYPE]
        if name == PLAIN_TYPE and ENVELOPE_VALUE in data:
            return data[ENVELOPE_VALUE]
        with self._lock:
            entry = self._by_name.get(name)
        if entry is None:
            raise UnknownTypeError(f"unknown type: {name!r}")
        if ENVELOPE_VALUE not in data:
            raise SerializationError(f"envelope for {name!r} has no {ENVELOPE_VALUE}")

        try:
            return entry.decode(data[ENVELOPE_VALUE])
        except SerializationError:
            raise
        except Exception as e:
            raise SerializationError(f"failed to unmarshal {name}: {e}") from e

    def marshal(self, value: Any) -> str:
        """Serialize ``value`` to a JSON string."""
        data = self.to_jsonable(value)
        try:
            return json.dumps(data)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"value is not JSON serializable: {e}") from e

    def unmarshal(self, data: Union[str, bytes]) -> Any:
        """Deserialize a JSON string produced by ``marshal``."""
        try:
            decoded = json.loads(data)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"invalid JSON: {e}") from e
        return self.from_jsonable(decoded)


_default_registry = TypeRegistry()


def get_type_registry() -> TypeRegistry:
    """Return the process-wide default registry."""
    return _default_registry


def register_type(
    cls: Type,
    name: str,
    marshal: Optional[MarshalFunc] = None,
    unmarshal: Optional[UnmarshalFunc] = None,
) -> None:
    """Register ``cls`` on the default registry."""
    _default_registry.register(cls, name, marshal=marshal, unmarshal=unmarshal)


def registered_type(name: str, registry: Optional[TypeRegistry] = None):
    """Class decorator registering the class under ``name``.

    Example:
        @registered_type("Ticket")
        @dataclass
        class Ticket:
            title: str = ""
    """
    def decorator(cls):
        (registry or _default_registry).register(cls, name)
        return cls
    return decorator
