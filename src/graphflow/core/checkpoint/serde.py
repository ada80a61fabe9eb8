"""Checkpoint serialization shared by the persistent backends."""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic_core import PydanticSerializationError, to_jsonable_python

from graphflow.core.checkpoint.base import Checkpoint
from graphflow.core.checkpoint.registry import TypeRegistry, get_type_registry
from graphflow.core.errors import SerializationError


class CheckpointSerializer:
    """Encodes checkpoint fields through a ``TypeRegistry``.

    Args:
        registry: Registry used for state values; the default registry if None
    """

    def __init__(self, registry: Optional[TypeRegistry] = None):
        self.registry = registry or get_type_registry()

    def dump_state(self, state: Any) -> str:
        return self.registry.marshal(state)

    def load_state(self, data: Union[str, bytes]) -> Any:
        return self.registry.unmarshal(data)

    def state_to_jsonable(self, state: Any) -> Any:
        return self.registry.to_jsonable(state)

    def state_from_jsonable(self, data: Any) -> Any:
        return self.registry.from_jsonable(data)

    def metadata_to_jsonable(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        try:
            jsonable = to_jsonable_python(metadata)
        except PydanticSerializationError as e:
            raise SerializationError(f"checkpoint metadata is not serializable: {e}") from e
        if not isinstance(jsonable, dict):
            raise SerializationError("checkpoint metadata must be a mapping")
        return jsonable

    def dump_metadata(self, metadata: Dict[str, Any]) -> str:
        return json.dumps(self.metadata_to_jsonable(metadata))

    def load_metadata(self, data: Union[str, bytes, None]) -> Dict[str, Any]:
        if not data:
            return {}
        try:
            return json.loads(data)
        except ValueError as e:
            raise SerializationError(f"invalid checkpoint metadata: {e}") from e

    def to_document(self, checkpoint: Checkpoint) -> Dict[str, Any]:
        """Full checkpoint as a JSON-compatible dict."""
        return {
            "id": checkpoint.id,
            "node_name": checkpoint.node_name,
            "state": self.state_to_jsonable(checkpoint.state),
            "metadata": self.metadata_to_jsonable(checkpoint.metadata),
            "timestamp": format_timestamp(checkpoint.timestamp),
            "version": checkpoint.version,
        }

    def from_document(self, document: Dict[str, Any]) -> Checkpoint:
        try:
            return Checkpoint(
                id=document["id"],
                node_name=document.get("node_name", ""),
                state=self.state_from_jsonable(document.get("state")),
                metadata=document.get("metadata") or {},
                timestamp=parse_timestamp(document["timestamp"]),
                version=document.get("version", 0),
            )
        except KeyError as e:
            raise SerializationError(f"checkpoint document is missing {e}") from e

    def dumps(self, checkpoint: Checkpoint) -> str:
        return json.dumps(self.to_document(checkpoint))

    def loads(self, data: Union[str, bytes]) -> Checkpoint:
        try:
            document = json.loads(data)
        except ValueError as e:
            raise SerializationError(f"invalid checkpoint document: {e}") from e
        return self.from_document(document)


def to_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).isoformat()


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
