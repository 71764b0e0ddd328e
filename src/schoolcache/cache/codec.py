"""
Payload codecs for cache entries.

Every value crosses the store boundary as bytes. A codec owns both
directions, so a value that cannot round-trip is rejected at put() time
instead of surfacing as a corrupt entry later.
"""

from __future__ import annotations

from typing import Any, Generic, Protocol, TypeVar

import orjson
from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from schoolcache.exceptions import CacheSerializationError, CorruptEntryError

T = TypeVar("T")


class Codec(Protocol[T]):
    """Serializes values of type T to bytes and back."""

    name: str

    def encode(self, value: T) -> bytes: ...

    def decode(self, raw: bytes) -> T: ...


class JsonCodec:
    """Default codec: JSON via orjson, for plain dict/list/scalar payloads."""

    name = "json"

    def encode(self, value: Any) -> bytes:
        try:
            return orjson.dumps(value, option=orjson.OPT_NON_STR_KEYS)
        except orjson.JSONEncodeError as e:
            raise CacheSerializationError(
                "Value is not JSON serializable",
                context={"codec": self.name, "type": type(value).__name__, "error": str(e)},
            ) from e

    def decode(self, raw: bytes) -> Any:
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise CorruptEntryError(
                "Stored payload is not valid JSON",
                context={"codec": self.name, "error": str(e)},
            ) from e


class ModelCodec(Generic[T]):
    """Typed codec backed by a pydantic TypeAdapter.

    Decoding validates the payload against the declared type, so a row
    written by an older schema is reported as corrupt rather than returned
    half-shaped.
    """

    def __init__(self, type_: type[T] | Any) -> None:
        self._adapter: TypeAdapter[T] = TypeAdapter(type_)
        self.name = f"model[{getattr(type_, '__name__', repr(type_))}]"

    def encode(self, value: T) -> bytes:
        try:
            return self._adapter.dump_json(value)
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise CacheSerializationError(
                "Value could not be serialized",
                context={"codec": self.name, "error": str(e)},
            ) from e

    def decode(self, raw: bytes) -> T:
        try:
            return self._adapter.validate_json(raw)
        except ValidationError as e:
            raise CorruptEntryError(
                "Stored payload failed validation",
                context={"codec": self.name, "errors": e.error_count()},
            ) from e


DEFAULT_CODEC = JsonCodec()
