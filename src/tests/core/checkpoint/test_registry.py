"""Tests for the type registry and checkpoint serializer."""

import json
from dataclasses import dataclass, field
from typing import Dict, List

import pytest
from pydantic import BaseModel, Field

from graphflow.core.checkpoint import (
    Checkpoint,
    CheckpointSerializer,
    SQLiteCheckpointStore,
    TypeRegistry,
    get_type_registry,
    registered_type,
)
from graphflow.core.errors import (
    SerializationError,
    TypeRegistrationError,
    UnknownTypeError,
)


class Profile(BaseModel):
    """Pydantic state type."""
    name: str = ""
    age: int = 0
    scores: Dict[str, float] = Field(default_factory=dict)


@dataclass
class Address:
    """Nested dataclass."""
    city: str = ""
    zip_code: str = ""


@dataclass
class Customer:
    """Dataclass state type with a nested dataclass."""
    name: str = ""
    address: Address = field(default_factory=Address)
    orders: List[int] = field(default_factory=list)


class Money:
    """Plain class; not a struct type."""

    def __init__(self, cents: int):
        self.cents = cents


@pytest.fixture
def registry() -> TypeRegistry:
    """Fixture providing an isolated registry."""
    return TypeRegistry()


class TestRegistration:
    """Test suite for register()."""

    def test_register_model(self, registry: TypeRegistry):
        """Test registering a pydantic model."""
        registry.register(Profile, "Profile")
        assert registry.name_of(Profile) == "Profile"
        assert registry.type_of("Profile") is Profile
        assert registry.is_registered(Profile)

    def test_register_same_name_twice(self, registry: TypeRegistry):
        """Test that re-registering under the same name is a no-op."""
        registry.register(Profile, "Profile")
        registry.register(Profile, "Profile")
        assert registry.name_of(Profile) == "Profile"

    def test_register_second_name_fails(self, registry: TypeRegistry):
        """Test that one type cannot have two names."""
        registry.register(Profile, "Profile")
        with pytest.raises(TypeRegistrationError):
            registry.register(Profile, "UserProfile")
        assert registry.name_of(Profile) == "Profile"

    def test_register_taken_name_fails(self, registry: TypeRegistry):
        """Test that one name cannot map to two types."""
        registry.register(Profile, "State")
        with pytest.raises(TypeRegistrationError):
            registry.register(Customer, "State")

    @pytest.mark.parametrize("bad_type", [int, str, dict, list, Money, Profile(name="x")])
    def test_register_non_struct_fails(self, registry: TypeRegistry, bad_type):
        """Test that only pydantic models and dataclasses are accepted."""
        with pytest.raises(TypeRegistrationError):
            registry.register(bad_type, "Bad")

    def test_registries_are_isolated(self, registry: TypeRegistry):
        """Test that an isolated registry does not touch the default one."""
        registry.register(Customer, "tests.registry.Customer")
        assert get_type_registry().type_of("tests.registry.Customer") is None

    def test_registered_type_decorator(self, registry: TypeRegistry):
        """Test the class decorator."""
        @registered_type("Note", registry=registry)
        @dataclass
        class Note:
            text: str = ""

        assert registry.type_of("Note") is Note


class TestMarshal:
    """Test suite for marshal()/unmarshal()."""

    def test_model_round_trip(self, registry: TypeRegistry):
        """Test that a registered model survives a round trip."""
        registry.register(Profile, "Profile")
        profile = Profile(name="ada", age=36, scores={"math": 9.5})

        data = registry.marshal(profile)
        assert json.loads(data) == {
            "_type": "Profile",
            "_value": {"name": "ada", "age": 36, "scores": {"math": 9.5}},
        }
        assert registry.unmarshal(data) == profile

    def test_dataclass_round_trip(self, registry: TypeRegistry):
        """Test that nested dataclasses are rebuilt."""
        registry.register(Customer, "Customer")
        customer = Customer(name="bo", address=Address(city="Oslo", zip_code="0150"), orders=[1, 2])

        restored = registry.unmarshal(registry.marshal(customer))
        assert isinstance(restored, Customer)
        assert isinstance(restored.address, Address)
        assert restored == customer

    def test_unregistered_has_no_envelope(self, registry: TypeRegistry):
        """Test that unregistered values are written as plain JSON."""
        decoded = json.loads(registry.marshal(Profile(name="ada")))
        assert "_type" not in decoded
        assert decoded["name"] == "ada"

        assert registry.unmarshal(registry.marshal(Profile(name="ada"))) == {
            "name": "ada", "age": 0, "scores": {}
        }

    def test_plain_values(self, registry: TypeRegistry):
        """Test that plain JSON data decodes to generic values."""
        value = {"a": [1, 2, {"b": None}], "c": "text"}
        assert registry.unmarshal(registry.marshal(value)) == value
        assert registry.unmarshal(b'[1, 2, 3]') == [1, 2, 3]

    def test_plain_dict_with_type_key(self, registry: TypeRegistry):
        """Test that a plain dict carrying its own _type key comes back unchanged."""
        value = {"_type": "invoice", "total": 3}
        assert registry.unmarshal(registry.marshal(value)) == value
        assert json.loads(registry.marshal(value))["_type"] == "__json__"

    def test_reserved_name(self, registry: TypeRegistry):
        """Test that the plain-data wrapper name cannot be registered."""
        with pytest.raises(TypeRegistrationError):
            registry.register(Profile, "__json__")

    def test_unknown_type_name(self, registry: TypeRegistry):
        """Test that an unregistered envelope name raises UnknownTypeError."""
        with pytest.raises(UnknownTypeError):
            registry.unmarshal('{"_type": "Nope", "_value": {}}')

    def test_missing_value(self, registry: TypeRegistry):
        """Test that an envelope without _value is rejected."""
        registry.register(Profile, "Profile")
        with pytest.raises(SerializationError):
            registry.unmarshal('{"_type": "Profile"}')

    def test_invalid_payload(self, registry: TypeRegistry):
        """Test that a payload failing validation raises SerializationError."""
        registry.register(Profile, "Profile")
        with pytest.raises(SerializationError):
            registry.unmarshal('{"_type": "Profile", "_value": {"age": "old"}}')

    def test_invalid_json(self, registry: TypeRegistry):
        """Test that malformed JSON raises SerializationError."""
        with pytest.raises(SerializationError):
            registry.unmarshal("{not json")

    def test_unserializable_value(self, registry: TypeRegistry):
        """Test that values without a JSON form raise SerializationError."""
        with pytest.raises(SerializationError):
            registry.marshal(Money(5))

    def test_custom_codec(self, registry: TypeRegistry):
        """Test custom marshal/unmarshal functions."""
        registry.register(
            Profile,
            "Profile",
            marshal=lambda p: f"{p.name}:{p.age}",
            unmarshal=lambda s: Profile(name=s.split(":")[0], age=int(s.split(":")[1])),
        )
        data = registry.marshal(Profile(name="ada", age=36))
        assert json.loads(data) == {"_type": "Profile", "_value": "ada:36"}
        assert registry.unmarshal(data) == Profile(name="ada", age=36)

    def test_failing_custom_codec(self, registry: TypeRegistry):
        """Test that errors in custom functions become SerializationError."""
        def explode(_):
            raise RuntimeError("nope")

        registry.register(Profile, "Profile", marshal=explode, unmarshal=explode)
        with pytest.raises(SerializationError):
            registry.marshal(Profile())
        with pytest.raises(SerializationError):
            registry.unmarshal('{"_type": "Profile", "_value": {}}')


class TestSerializer:
    """Test suite for CheckpointSerializer."""

    def test_document_round_trip(self, registry: TypeRegistry):
        """Test full checkpoint documents."""
        registry.register(Profile, "Profile")
        serializer = CheckpointSerializer(registry)
        checkpoint = Checkpoint(
            node_name="a",
            state=Profile(name="ada"),
            metadata={"execution_id": "e1"},
            version=4,
        )

        restored = serializer.loads(serializer.dumps(checkpoint))
        assert restored == checkpoint

    async def test_injected_registry_in_store(self, registry: TypeRegistry, tmp_path):
        """Test that a store uses the registry it was given."""
        registry.register(Customer, "Customer")
        store = SQLiteCheckpointStore(tmp_path / "cp.db", serializer=CheckpointSerializer(registry))
        customer = Customer(name="bo", orders=[7])

        await store.save(Checkpoint(id="cp", state=customer, metadata={"execution_id": "e"}))
        loaded = await store.load("cp")
        await store.close()

        assert loaded.state == customer

        # A store using the default registry cannot resolve the name
        other = SQLiteCheckpointStore(tmp_path / "cp.db")
        with pytest.raises(UnknownTypeError):
            await other.load("cp")
        await other.close()
