import threading
import zlib
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable, Literal

from .logging import debug, logged


class CodecError(ValueError):
	"""Raised when a codec is misconfigured or misused."""


class Encoding(Enum):
	"""The content codings that can be negotiated with `Accept-Encoding`."""

	Identity = "identity"
	Deflate = "deflate"
	GZip = "gzip"


# SEE: https://docs.python.org/3/library/zlib.html#zlib.compressobj
# NOTE: HTTP's `deflate` is the zlib format (RFC 9110 §8.4.1.2), not raw DEFLATE.
ENCODING_WBITS: dict[Encoding, int] = {
	Encoding.Deflate: zlib.MAX_WBITS,
	Encoding.GZip: zlib.MAX_WBITS | 16,
}


class BytesTransform(ABC):
	"""An abstract bytes transform."""

	@abstractmethod
	def feed(self, chunk: bytes, more: bool = False) -> bytes | None | Literal[False]:
		"""Feeds bytes to the transform, may return a value."""

	@abstractmethod
	def flush(self) -> bytes | None | Literal[False]:
		"""Ensures that the bytes transform is flushed, so that everything fed so far can be decoded on the other end."""


class Compressor(BytesTransform):
	"""A stateful compressor for one content coding, meant to be recycled
	through a `CodecPool`. A compressor is bound to a single response at a
	time, and is `reset` before going back to the pool."""

	__slots__ = ["encoding", "template", "compressor", "isAcquired", "isClosed"]

	def __init__(self, encoding: Encoding, template: "zlib._Compress") -> None:
		super().__init__()
		self.encoding: Encoding = encoding
		# The template is never fed, we copy it to get a pristine state.
		self.template: zlib._Compress = template
		self.compressor: zlib._Compress = template.copy()
		self.isAcquired: bool = False
		self.isClosed: bool = False

	def feed(self, chunk: bytes, more: bool = False) -> bytes | None | Literal[False]:
		if self.isClosed:
			raise CodecError(f"Compressor is closed: {self.encoding.value}")
		return self.compressor.compress(chunk)

	def flush(self) -> bytes | None | Literal[False]:
		"""Emits the pending compressed bytes, without ending the stream."""
		if self.isClosed:
			return None
		return self.compressor.flush(zlib.Z_SYNC_FLUSH)

	def close(self) -> bytes:
		"""Ends the compressed stream, returning its trailer."""
		if self.isClosed:
			return b""
		self.isClosed = True
		return self.compressor.flush(zlib.Z_FINISH)

	def reset(self) -> "Compressor":
		"""Discards whatever state the compressor has, so that it can be bound
		to a new response."""
		self.compressor = self.template.copy()
		self.isClosed = False
		return self

	def __repr__(self) -> str:
		return f"(Compressor {self.encoding.value}{' :acquired' if self.isAcquired else ''})"


class CodecPool:
	"""A thread-safe pool of compressors, keyed by content coding. Compressors
	are created on demand and recycled, the pool only keeps up to `capacity`
	idle compressors per encoding (unbounded when `None`)."""

	def __init__(
		self,
		level: int = -1,
		encodings: Iterable[Encoding] = (Encoding.Deflate, Encoding.GZip),
		*,
		capacity: int | None = None,
	) -> None:
		self.level: int = level
		self.capacity: int | None = capacity or None
		self.templates: dict[Encoding, zlib._Compress] = {}
		# NOTE: An invalid level is a configuration error, so we make sure it
		# fails here and not when serving a request.
		for encoding in encodings:
			if encoding not in ENCODING_WBITS:
				raise CodecError(f"Unsupported content coding: {encoding.value}")
			try:
				self.templates[encoding] = zlib.compressobj(
					level, zlib.DEFLATED, ENCODING_WBITS[encoding]
				)
			except (ValueError, zlib.error) as e:
				raise CodecError(
					f"Invalid compression level {level} for {encoding.value}: {e}"
				) from e
		self.idle: dict[Encoding, list[Compressor]] = {_: [] for _ in self.templates}
		self.created: int = 0
		self.lock: threading.Lock = threading.Lock()

	def acquire(self, encoding: Encoding) -> Compressor:
		"""Returns an idle compressor for the given encoding, creating one if
		there is none available."""
		with self.lock:
			if encoding not in self.idle:
				raise CodecError(f"Pool has no codec for: {encoding.value}")
			idle = self.idle[encoding]
			if idle:
				handle = idle.pop()
			else:
				handle = Compressor(encoding, self.templates[encoding])
				self.created += 1
				logged(debug) and debug(
					"Codec pool grew", Encoding=encoding.value, Created=self.created
				)
			handle.isAcquired = True
		return handle

	def release(self, handle: Compressor) -> "CodecPool":
		"""Resets the compressor and puts it back in the pool. A compressor
		must be released exactly once per `acquire`."""
		with self.lock:
			if not handle.isAcquired:
				raise CodecError(f"Compressor released twice: {handle}")
			handle.isAcquired = False
			handle.reset()
			idle = self.idle[handle.encoding]
			if self.capacity is None or len(idle) < self.capacity:
				idle.append(handle)
		return self

	def available(self, encoding: Encoding) -> int:
		"""Returns the number of idle compressors for the given encoding."""
		with self.lock:
			return len(self.idle.get(encoding, ()))

	def clear(self) -> "CodecPool":
		"""Drops all the idle compressors."""
		with self.lock:
			for idle in self.idle.values():
				idle.clear()
		return self


class Decompressor(BytesTransform):
	"""Decodes bytes encoded as `gzip` or `deflate` (zlib)."""

	__slots__ = ["decompressor"]

	def __init__(self) -> None:
		super().__init__()
		# NOTE: The +32 makes zlib detect the gzip or zlib header
		self.decompressor = zlib.decompressobj(wbits=zlib.MAX_WBITS | 32)

	def feed(self, chunk: bytes, more: bool = False) -> bytes | None | Literal[False]:
		return self.decompressor.decompress(chunk)

	def flush(
		self,
	) -> bytes | None | Literal[False]:
		return self.decompressor.flush()


# EOF
