from .json import json
from .primitives import TPrimitive

DEFAULT_ENCODING: str = "utf8"
EOL: bytes = b"\r\n"


def asWritable(value: str | bytes | bytearray | TPrimitive) -> bytes:
	"""Converts a value yielded by a response stream to bytes, anything that
	is not text being written as JSON."""
	if isinstance(value, (bytes, bytearray)):
		return bytes(value)
	elif isinstance(value, str):
		return value.encode(DEFAULT_ENCODING)
	else:
		return json(value)


class LineParser:
	"""Accumulates fed bytes until a CRLF completes a line, for request lines
	and headers."""

	__slots__ = ["pending", "scanned"]

	def __init__(self) -> None:
		self.pending: bytearray = bytearray()
		# Bytes of `pending` known not to hold the start of an EOL
		self.scanned: int = 0

	def reset(self) -> "LineParser":
		self.pending.clear()
		self.scanned = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bytes | None, int]:
		"""Returns the line completed by `chunk[start:]`, if any, and how many
		bytes were consumed. What follows the line is left in the chunk."""
		before: int = len(self.pending)
		self.pending += chunk[start:]
		end: int = self.pending.find(EOL, self.scanned)
		if end < 0:
			self.scanned = max(0, len(self.pending) - len(EOL) + 1)
			return None, len(chunk) - start
		line = bytes(self.pending[:end])
		self.reset()
		return line, end + len(EOL) - before


# EOF
