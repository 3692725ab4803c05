from base64 import b64encode
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any

TLiteral = bool | int | float | str | bytes
TComposite = (
    list[TLiteral] | dict[TLiteral, TLiteral] | set[TLiteral] | tuple[TLiteral, ...]
)
TComposite2 = (
    list[TLiteral | TComposite]
    | dict[TLiteral, TLiteral | TComposite]
    | set[TLiteral | TComposite]
    | tuple[TLiteral | TComposite, ...]
)
TPrimitive = bool | int | float | str | bytes | TComposite | TComposite2


def asText(data: bytes) -> str:
    """Returns the bytes as UTF-8 text, or as a base64 data URL when they
    are not valid UTF-8."""
    try:
        return data.decode("utf8")
    except UnicodeDecodeError:
        return f"data:application/octet-stream;base64,{b64encode(data).decode('ascii')}"


def asPrimitive(value: Any) -> Any:
    """Converts the given value to a primitive value, that can be converted
    to JSON"""
    if value is None or type(value) in (bool, float, int, str):
        return value
    elif isinstance(value, (bytes, bytearray)):
        return asText(bytes(value))
    elif isinstance(value, tuple) and hasattr(value, "_fields"):
        return {k: asPrimitive(getattr(value, k)) for k in value._fields}
    elif isinstance(value, (list, tuple, set)):
        return [asPrimitive(_) for _ in value]
    elif isinstance(value, dict):
        return {str(asPrimitive(k)): asPrimitive(v) for k, v in value.items()}
    elif isinstance(value, Enum):
        return asPrimitive(value.value)
    elif is_dataclass(value) and not isinstance(value, type):
        return {_.name: asPrimitive(getattr(value, _.name)) for _ in fields(value)}
    else:
        return str(value)


# EOF
