import asyncio
import random
import string
from math import ceil
from typing import AsyncIterator, Awaitable, Callable, NamedTuple

from ..http.model import FLUSH_STREAM, HTTPRequestError, StreamControl

# Paced bodies are generated as a sequence of chunks, each followed by a flush
# so that the client receives them as they are produced.

TSleep = Callable[[float], Awaitable[None]]

# The interval between two drip chunks, when there is more than one per byte
DRIP_INTERVAL: float = 0.1
DRIP_FILL: bytes = b"*"
RANGE_CHUNK_SIZE: int = 10 * 1024


class DripPlan(NamedTuple):
	"""Describes how `numbytes` are to be delivered over `duration` seconds,
	after an initial `delay`, with the given status `code`."""

	numbytes: int = 10
	duration: float = 2.0
	delay: float = 2.0
	code: int = 200

	@staticmethod
	def Make(
		numbytes: int = 10,
		duration: float = 2.0,
		delay: float = 2.0,
		code: int = 200,
		*,
		maxBytes: int = 10 * 1024 * 1024,
		maxDuration: float = 60.0,
		maxDelay: float = 10.0,
	) -> "DripPlan":
		"""Creates a plan with the values clamped to the given bounds. The
		status code must be a valid three-digit status."""
		if not (100 <= code <= 999):
			raise HTTPRequestError(f"Invalid status code: {code}", status=400)
		return DripPlan(
			numbytes=max(0, min(numbytes, maxBytes)),
			duration=max(DRIP_INTERVAL, min(duration, maxDuration)),
			delay=max(0.0, min(delay, maxDelay)),
			code=code,
		)

	@property
	def chunkCount(self) -> int:
		# NOTE: We work in milliseconds, as 0.3/0.1 is 2.9999999999999996
		return max(1, round(self.duration * 1000) // round(DRIP_INTERVAL * 1000))

	@property
	def chunkSize(self) -> int:
		count = self.chunkCount
		return ceil(self.numbytes / count) if count > 1 else self.numbytes


async def drip(
	plan: DripPlan,
	*,
	fill: bytes = DRIP_FILL,
	sleep: TSleep = asyncio.sleep,
) -> AsyncIterator[bytes | StreamControl]:
	"""Yields the bytes of the plan, each chunk being followed by a flush and
	a pause. When there's one byte per chunk, the bytes are evenly spread
	over the duration, otherwise chunks are sent every `DRIP_INTERVAL`."""
	remaining: int = plan.numbytes
	size: int = plan.chunkSize
	pause: float = plan.duration / plan.numbytes if size == 1 else DRIP_INTERVAL
	while remaining > 0:
		n = min(size, remaining)
		yield fill * n
		yield FLUSH_STREAM
		remaining -= n
		await sleep(pause)


class RangeNotSatisfiable(HTTPRequestError):
	"""The requested range doesn't overlap the payload, answered with a 416
	that gives the payload length."""

	def __init__(self, header: str, length: int):
		super().__init__(
			f"Range not satisfiable: {header}",
			status=416,
			headers={"Content-Range": f"bytes */{length}"},
		)
		self.length: int = length


class ByteRange(NamedTuple):
	"""An inclusive range of bytes within a payload of `length` bytes."""

	start: int
	end: int
	length: int

	@staticmethod
	def Full(length: int) -> "ByteRange":
		return ByteRange(0, length - 1, length)

	@staticmethod
	def Parse(header: str | None, length: int) -> "ByteRange":
		"""Parses the value of a `Range` header for a payload of `length`
		bytes. Only the first range is considered, and anything that's not
		a `bytes` range is ignored and means the full payload."""
		full = ByteRange.Full(length)
		unit, sep, ranges = (header or "").strip().partition("=")
		if not sep or unit.strip().lower() != "bytes":
			return full
		first: str = ranges.split(",", 1)[0].strip()
		start_text, sep, end_text = first.partition("-")
		start_text, end_text = start_text.strip(), end_text.strip()
		if not sep or not (start_text or end_text):
			return full
		try:
			if not start_text:
				# A suffix range, for the last bytes of the payload
				suffix = int(end_text)
				if suffix < 0:
					raise ValueError(suffix)
				res = ByteRange(max(0, length - suffix), length - 1, length)
			else:
				start = int(start_text)
				end = int(end_text) if end_text else length - 1
				if start < 0 or end < 0:
					raise ValueError(start_text)
				res = ByteRange(start, end, length)
		except ValueError as e:
			raise HTTPRequestError(
				f"Malformed range: {header}", status=400
			) from e
		if not res.isSatisfiable:
			raise RangeNotSatisfiable(str(header), length)
		return res

	@property
	def isSatisfiable(self) -> bool:
		return 0 <= self.start <= self.end < self.length

	@property
	def isPartial(self) -> bool:
		return self.start > 0 or self.end < self.length - 1

	@property
	def size(self) -> int:
		return self.end - self.start + 1

	@property
	def contentRange(self) -> str:
		return f"bytes {self.start}-{self.end}/{self.length}"


async def ranged(
	payload: bytes,
	span: ByteRange,
	chunkSize: int = RANGE_CHUNK_SIZE,
	*,
	pause: float = 0.0,
	sleep: TSleep = asyncio.sleep,
) -> AsyncIterator[bytes | StreamControl]:
	"""Yields the bytes of `payload` within the span in chunks of at most
	`chunkSize`, each followed by a flush, and pausing in between chunks
	when `pause` is given."""
	size = max(1, chunkSize)
	offset: int = span.start
	end: int = span.end + 1
	while offset < end:
		n = min(size, end - offset)
		yield payload[offset : offset + n]
		yield FLUSH_STREAM
		offset += n
		if pause > 0 and offset < end:
			await sleep(pause)


def synthesize(length: int, seed: int | None = None) -> bytes:
	"""Returns a payload of `length` bytes, lowercase letters cycling from
	`a` to `z` by default, or random bytes for the given seed."""
	if seed is not None:
		return random.Random(seed).randbytes(length)
	letters = string.ascii_lowercase.encode("ascii")
	n = len(letters)
	return (letters * (length // n + 1))[:length]


# EOF
