import json as basejson
from typing import Any, TypeAlias, cast

from .primitives import asPrimitive

TJSON: TypeAlias = None | int | float | bool | str | list[Any] | dict[str, Any]


def json(value: Any) -> bytes:
	"""Serializes the value as UTF-8 JSON, bytes being written as text."""
	return basejson.dumps(asPrimitive(value), ensure_ascii=False).encode("utf8")


def unjson(value: bytes | str) -> TJSON:
	"""Parses JSON, raising a `ValueError` when malformed."""
	return cast(TJSON, basejson.loads(value))


# EOF
