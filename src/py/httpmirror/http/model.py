import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import cached_property
from http.cookies import Morsel, SimpleCookie
from typing import (
	Any,
	AsyncContextManager,
	AsyncGenerator,
	Callable,
	Generator,
	Iterable,
	Literal,
	NamedTuple,
	TypeAlias,
	TypeVar,
)

from ..utils.codec import BytesTransform, Compressor, Encoding
from ..utils.io import DEFAULT_ENCODING, asWritable
from ..utils.logging import warning
from ..utils.primitives import TPrimitive
from .api import ResponseFactory
from .sniff import sniffContentType
from .status import HTTP_STATUS

T = TypeVar("T")

# Statuses whose responses never have a body, nor a `Content-Length`
BODILESS_STATUS: frozenset[int] = frozenset((*range(100, 200), 204, 304))

# -----------------------------------------------------------------------------
#
# HEADERS
#
# -----------------------------------------------------------------------------

HEADER_NAMES: dict[str, str] = {}


def headername(name: str) -> str:
	"""Normalizes the header name as `Kebab-Case`."""
	key: str = name.lower()
	normalized = HEADER_NAMES.get(key)
	if normalized is None:
		normalized = HEADER_NAMES[key] = "-".join(
			_.capitalize() for _ in key.split("-")
		)
	return normalized


def mergeVary(existing: str | None, value: str) -> str:
	"""Adds `value` to a `Vary` header value, unless it's already listed."""
	if not existing:
		return value
	listed = {_.strip().lower() for _ in existing.split(",")}
	if "*" in listed or value.lower() in listed:
		return existing
	return f"{existing}, {value}"


class HTTPRequestLine(NamedTuple):
	method: str
	path: str
	query: str
	protocol: str


class HTTPHeaders(NamedTuple):
	"""Parsed headers, along with the content type and length when given."""

	headers: dict[str, str]
	contentType: str | None = None
	contentLength: int | None = None


class HTTPRequestError(Exception):
	"""Raised by handlers to answer with an error status, 500 by default."""

	def __init__(
		self,
		message: str,
		status: int | None = None,
		contentType: str | None = None,
		payload: TPrimitive | None = None,
		headers: dict[str, str] | None = None,
	):
		super().__init__(message)
		self.message: str = message
		self.status: int | None = status
		self.contentType: str | None = contentType
		self.payload: TPrimitive | bytes | None = payload
		self.headers: dict[str, str] | None = headers


# -----------------------------------------------------------------------------
#
# BODIES
#
# -----------------------------------------------------------------------------


class HTTPBodyBlob(NamedTuple):
	"""A body held in memory, `remaining` being the bytes of a request body
	that are still to be read from the connection."""

	payload: bytes = b""
	length: int = 0
	remaining: int = 0

	@staticmethod
	def FromBytes(data: bytes) -> "HTTPBodyBlob":
		return HTTPBodyBlob(data, len(data))

	async def load(self) -> bytes:
		return self.payload


class HTTPBodyStream(NamedTuple):
	stream: Generator["str | bytes | TPrimitive | StreamControl", Any, Any]


class HTTPBodyAsyncStream(NamedTuple):
	stream: AsyncGenerator["str | bytes | TPrimitive | StreamControl", Any]


THTTPBody: TypeAlias = HTTPBodyBlob | HTTPBodyStream | HTTPBodyAsyncStream


@dataclass(slots=True, frozen=True)
class StreamControl:
	"""Directives that streams can yield in between chunks."""

	name: str


# Pushes everything written so far to the client
FLUSH_STREAM: StreamControl = StreamControl("flush")


def asBody(content: Any) -> THTTPBody | None:
	if content is None:
		return None
	elif isinstance(content, str):
		return HTTPBodyBlob.FromBytes(content.encode(DEFAULT_ENCODING))
	elif isinstance(content, (bytes, bytearray)):
		return HTTPBodyBlob.FromBytes(bytes(content))
	elif inspect.isgenerator(content):
		return HTTPBodyStream(content)
	elif inspect.isasyncgen(content):
		return HTTPBodyAsyncStream(content)
	else:
		raise ValueError(f"Unsupported content {type(content)}: {content}")


# -----------------------------------------------------------------------------
#
# READERS
#
# -----------------------------------------------------------------------------

BODY_READER_TIMEOUT: float = 1.0


class HTTPBodyReader(ABC):
	"""Reads the part of a request body that didn't come with its head,
	typically from the client socket."""

	__slots__: list[str] = []

	@abstractmethod
	async def read(
		self, timeout: float = BODY_READER_TIMEOUT, size: int | None = None
	) -> bytes | None: ...

	async def load(
		self, timeout: float = BODY_READER_TIMEOUT, size: int | None = None
	) -> bytes:
		"""Reads until `size` bytes are read, or nothing more comes."""
		data = bytearray()
		while size is None or len(data) < size:
			chunk = await self.read(
				timeout=timeout, size=None if size is None else size - len(data)
			)
			if not chunk:
				break
			data += chunk
		return bytes(data)


class HTTPBodyIO:
	"""A request body made of the bytes that came with the head, and of
	the `expected` bytes still to be read from the reader."""

	__slots__ = ["reader", "expected", "existing"]

	def __init__(
		self, reader: HTTPBodyReader, expected: int = 0, existing: bytes = b""
	):
		self.reader: HTTPBodyReader = reader
		self.expected: int = expected
		self.existing: bytes = existing

	async def load(self) -> bytes:
		rest: bytes = b""
		if self.expected > 0:
			try:
				rest = await self.reader.load(size=self.expected)
			except (asyncio.TimeoutError, TimeoutError):
				warning(
					"Request body timed out",
					Expected=self.expected,
					Read=len(self.existing),
				)
		return self.existing + rest


# -----------------------------------------------------------------------------
#
# WRITERS
#
# -----------------------------------------------------------------------------


class HTTPBodyWriter(ABC):
	"""Where responses are written: the head first with `writeHead`, and
	then the body with `write`. Bytes written go through the `transform`,
	when there is one, while `_writeBytes` is what reaches the sink."""

	__slots__ = ["transform", "shouldClose", "wroteHead"]

	def __init__(self, transform: BytesTransform | None) -> None:
		self.transform: BytesTransform | None = transform
		self.shouldClose: bool = False
		self.wroteHead: bool = False

	def reset(self) -> "HTTPBodyWriter":
		"""Called before each response of a kept-alive connection."""
		self.wroteHead = False
		return self

	async def writeHead(self, response: "HTTPResponse") -> bool:
		self.wroteHead = True
		self.shouldClose = self.shouldClose or response.shouldClose
		return await self._writeBytes(response.head(), True)

	async def writeResponse(self, response: "HTTPResponse") -> bool:
		await self.writeHead(response)
		return await self.write(response.body)

	async def write(self, body: THTTPBody | StreamControl | bytes | None) -> bool:
		if body is None:
			return True
		elif isinstance(body, bytes):
			return await self._write(body)
		elif isinstance(body, StreamControl):
			return await self.control(body)
		elif isinstance(body, HTTPBodyBlob):
			return await self._write(body.payload)
		elif isinstance(body, HTTPBodyStream):
			try:
				for item in body.stream:
					await self.writeItem(item)
			finally:
				body.stream.close()
			return True
		elif isinstance(body, HTTPBodyAsyncStream):
			try:
				async for item in body.stream:
					await self.writeItem(item)
			finally:
				await body.stream.aclose()
			return True
		else:
			raise ValueError(f"Unsupported body format: {body}")

	async def writeItem(self, item: "str | bytes | TPrimitive | StreamControl") -> bool:
		if isinstance(item, StreamControl):
			return await self.control(item)
		else:
			return await self._write(asWritable(item), True)

	async def control(self, atom: StreamControl) -> bool:
		if atom is FLUSH_STREAM:
			return await self.flush()
		raise ValueError(f"Unsupported stream control: {atom}")

	async def flush(self) -> bool:
		"""Flushes the transform, and then the sink."""
		chunk = self.transform.flush() if self.transform else None
		if chunk:
			await self._writeBytes(chunk, True)
		return await self._flush()

	async def _write(self, chunk: bytes, more: bool = False) -> bool:
		if self.transform:
			return await self._writeBytes(self.transform.feed(chunk, more), more)
		return await self._writeBytes(chunk, more)

	async def _flush(self) -> bool:
		return True

	@abstractmethod
	async def _writeBytes(
		self, chunk: bytes | None | Literal[False], more: bool = False
	) -> bool: ...


class BodyWriterDecorator(HTTPBodyWriter):
	"""Writes to another writer, adding its `headers` to the response
	head. The optional capabilities of the wrapped writer (`hijack`,
	`push`) are only there when the wrapped writer has them."""

	CAPABILITIES: tuple[str, ...] = ("hijack", "push")

	__slots__ = ["writer", "headers"]

	def __init__(
		self,
		writer: HTTPBodyWriter,
		headers: dict[str, str] | None = None,
		transform: BytesTransform | None = None,
	) -> None:
		super().__init__(transform)
		self.writer: HTTPBodyWriter = writer
		self.headers: dict[str, str] = dict(headers or {})

	def stage(self, response: "HTTPResponse") -> "HTTPResponse":
		for name, value in self.headers.items():
			if headername(name) == "Vary":
				value = mergeVary(response.getHeader(name), value)
			response.setHeader(name, value)
		return response

	async def writeHead(self, response: "HTTPResponse") -> bool:
		self.wroteHead = True
		return await self.writer.writeHead(self.stage(response))

	async def _writeBytes(
		self, chunk: bytes | None | Literal[False], more: bool = False
	) -> bool:
		return await self.writer.write(chunk) if chunk else True

	async def _flush(self) -> bool:
		return await self.writer.flush()

	def __getattr__(self, name: str) -> Any:
		# Only called when the regular lookup fails
		if name in self.CAPABILITIES:
			return getattr(self.writer, name)
		raise AttributeError(
			f"'{self.__class__.__name__}' object has no attribute '{name}'"
		)


class EncodingBodyWriter(BodyWriterDecorator):
	"""Compresses the response body with a `Compressor`. The head is held
	back until the first non-empty body chunk: only then is the response
	committed with its `Content-Encoding`. If no body byte is ever written,
	`close()` rolls back and the response goes out unencoded."""

	__slots__ = ["encoding", "response", "wroteBody"]

	def __init__(
		self,
		writer: HTTPBodyWriter,
		compressor: Compressor,
		headers: dict[str, str] | None = None,
	) -> None:
		super().__init__(writer, headers, compressor)
		self.encoding: Encoding = compressor.encoding
		self.headers["Content-Encoding"] = compressor.encoding.value
		self.response: HTTPResponse | None = None
		self.wroteBody: bool = False

	async def writeHead(self, response: "HTTPResponse") -> bool:
		self.response = response
		return True

	async def commit(self, chunk: bytes) -> bool:
		"""Writes the staged head as an encoded response, the content type
		being sniffed from the first chunk when missing."""
		response = self.response
		if response is None:
			raise RuntimeError("Body written before the response head")
		if not response.getHeader("Content-Type"):
			response.setHeader("Content-Type", sniffContentType(chunk))
		# The encoded length is unknown, so the body ends with the connection
		response.setHeader("Content-Length", None)
		response.setHeader("Connection", "close")
		response.shouldClose = True
		self.wroteHead = True
		return await self.writer.writeHead(self.stage(response))

	async def _write(self, chunk: bytes, more: bool = False) -> bool:
		if not chunk:
			return True
		elif not self.wroteBody:
			self.wroteBody = True
			await self.commit(chunk)
		return await super()._write(chunk, more)

	async def flush(self) -> bool:
		# Nothing can be sent before the head
		return await (super().flush() if self.wroteBody else self._flush())

	async def close(self, abort: bool = False) -> bool:
		"""Ends the response: writes the compressed stream trailer, or when no
		body was written, writes the staged head without `Content-Encoding`.
		When aborting, nothing more is written. The compressor is detached
		in all cases."""
		compressor = self.transform
		self.transform = None
		if abort:
			if self.wroteBody:
				# The client got a truncated stream, the connection can't be reused
				self.writer.shouldClose = True
			return False
		elif self.wroteBody:
			tail = compressor.close() if isinstance(compressor, Compressor) else None
			return await self.writer.write(tail) if tail else True
		elif self.response is not None:
			self.headers.pop("Content-Encoding", None)
			return await self.writer.writeHead(self.stage(self.response))
		else:
			return True


class Middleware(ABC):
	"""Wraps the handling of a request and the writing of its response."""

	@abstractmethod
	def engage(
		self, request: "HTTPRequest", writer: HTTPBodyWriter
	) -> AsyncContextManager[HTTPBodyWriter]:
		"""Returns a context manager yielding the writer the response should
		be written to for the duration of the scope."""


# -----------------------------------------------------------------------------
#
# REQUEST
#
# -----------------------------------------------------------------------------


class HTTPRequest(ResponseFactory["HTTPResponse"]):
	"""A parsed request, which is also the factory of its responses."""

	__slots__ = [
		"protocol",
		"method",
		"path",
		"query",
		"rawQuery",
		"peer",
		"encoding",
		"_headers",
		"_body",
		"_reader",
	]

	def __init__(
		self,
		method: str,
		path: str,
		query: dict[str, str] | None,
		headers: HTTPHeaders,
		body: HTTPBodyBlob | None = None,
		protocol: str = "HTTP/1.1",
		rawQuery: str = "",
	):
		self.method: str = method
		self.path: str = path
		self.query: dict[str, str] = query or {}
		self.rawQuery: str = rawQuery
		self.protocol: str = protocol
		# Set by the server
		self.peer: str | None = None
		# The content coding negotiated for the response
		self.encoding: Encoding = Encoding.Identity
		self._headers: HTTPHeaders = headers
		self._body: HTTPBodyBlob | HTTPBodyIO = body or HTTPBodyBlob()
		self._reader: HTTPBodyReader | None = None

	@property
	def headers(self) -> dict[str, str]:
		return self._headers.headers

	@property
	def contentType(self) -> str | None:
		return self._headers.contentType

	@property
	def contentLength(self) -> int | None:
		return self._headers.contentLength

	def header(self, name: str) -> str | None:
		return self._headers.headers.get(headername(name))

	getHeader = header

	def param(
		self,
		name: str,
		default: T | None = None,
		processor: Callable[[str | T | None], str | T | None] | None = None,
	) -> str | T | None:
		"""Returns the query parameter, optionally processed."""
		value = self.query.get(name, default)
		return processor(value) if processor else value

	@cached_property
	def _cookies(self) -> SimpleCookie:
		cookies = SimpleCookie()
		if value := self.header("Cookie"):
			cookies.load(value)
		return cookies

	def cookies(self) -> Iterable[str]:
		yield from self._cookies.keys()

	def cookie(self, name: str) -> Morsel[str] | None:
		return self._cookies.get(name)

	@property
	def body(self) -> HTTPBodyBlob | HTTPBodyIO:
		"""The request body, which reads the part that didn't come with the
		head from the connection."""
		body = self._body
		if isinstance(body, HTTPBodyBlob) and body.remaining > 0:
			if not self._reader:
				raise RuntimeError("Request has no reader, can't read body")
			self._body = HTTPBodyIO(self._reader, body.remaining, body.payload)
		return self._body

	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> "HTTPResponse":
		return HTTPResponse.Create(
			content,
			contentType=contentType,
			contentLength=contentLength,
			headers=headers,
			status=status,
			message=message,
			protocol=self.protocol,
		)

	def __str__(self) -> str:
		query = f"?{self.rawQuery}" if self.rawQuery else ""
		return f"Request({self.method} {self.path}{query} {self.headers})"


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class HTTPResponse:
	"""A response, which has one value per header name, except for the
	cookies it sets, as each has its own `Set-Cookie` header."""

	__slots__ = [
		"protocol",
		"status",
		"message",
		"headers",
		"body",
		"cookies",
		"shouldClose",
	]

	@staticmethod
	def Create(
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		headers: dict[str, str] | None = None,
		status: int = 200,
		message: str | None = None,
		protocol: str = "HTTP/1.1",
	) -> "HTTPResponse":
		"""Creates a response for the given content, which can be text,
		bytes or a (possibly asynchronous) generator. Blobs always get a
		`Content-Length`, streams only when `contentLength` is given, and
		otherwise end with the connection."""
		values: dict[str, str] = {
			headername(k): str(v) for k, v in (headers or {}).items()
		}
		body = asBody(None if status in BODILESS_STATUS else content)
		if isinstance(body, HTTPBodyBlob):
			contentLength = body.length
		elif body is None:
			contentLength = 0
		elif contentLength is None and "Content-Length" in values:
			contentLength = int(values["Content-Length"])
		if contentType is not None:
			values["Content-Type"] = contentType
		if status in BODILESS_STATUS:
			values.pop("Content-Length", None)
		elif contentLength is not None:
			values["Content-Length"] = str(contentLength)
		return HTTPResponse(
			protocol=protocol,
			status=status,
			message=message or HTTP_STATUS.get(status, "Unknown status"),
			headers=HTTPHeaders(values, values.get("Content-Type"), contentLength),
			body=body,
			shouldClose=contentLength is None,
		)

	def __init__(
		self,
		protocol: str,
		status: int,
		message: str | None,
		headers: HTTPHeaders,
		body: THTTPBody | None = None,
		shouldClose: bool = False,
	):
		self.protocol: str = protocol
		self.status: int = status
		self.message: str | None = message
		self.headers: HTTPHeaders = headers
		self.body: THTTPBody | None = body
		self.cookies: SimpleCookie = SimpleCookie()
		self.shouldClose: bool = shouldClose

	def getHeader(self, name: str) -> str | None:
		return self.headers.headers.get(headername(name))

	def setHeader(self, name: str, value: str | int | None) -> "HTTPResponse":
		if value is None:
			self.headers.headers.pop(headername(name), None)
		else:
			self.headers.headers[headername(name)] = str(value)
		return self

	def setHeaders(self, headers: dict[str, str | int | None]) -> "HTTPResponse":
		for name, value in headers.items():
			self.setHeader(name, value)
		return self

	def setCookie(
		self,
		name: str,
		value: str,
		*,
		path: str = "/",
		maxAge: int | None = None,
	) -> "HTTPResponse":
		"""Adds a `Set-Cookie` header, a negative `maxAge` expiring the
		cookie. Invalid cookie names raise a `CookieError`."""
		self.cookies[name] = value
		morsel = self.cookies[name]
		morsel["path"] = path
		if maxAge is not None:
			morsel["max-age"] = str(maxAge)
			if maxAge <= 0:
				morsel["expires"] = "Thu, 01 Jan 1970 00:00:00 GMT"
		return self

	def head(self) -> bytes:
		"""Serializes the status line and headers."""
		lines: list[str] = [
			f"{self.protocol} {self.status} {self.message or HTTP_STATUS.get(self.status, 'Unknown status')}"
		]
		lines.extend(f"{k}: {v}" for k, v in self.headers.headers.items())
		lines.extend(f"Set-Cookie: {_.OutputString()}" for _ in self.cookies.values())
		return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")

	def __str__(self) -> str:
		return f"Response({self.protocol} {self.status} {self.message} {self.headers} {self.body})"


# EOF
