from enum import Enum
from typing import Iterator, TypeAlias
from urllib.parse import unquote_plus

from ..utils.io import LineParser
from .model import HTTPBodyBlob, HTTPHeaders, HTTPRequest, HTTPRequestLine, headername

# What `HTTPParser.feed` yields, the request always coming last
HTTPAtom: TypeAlias = HTTPRequestLine | HTTPHeaders | HTTPRequest


class HTTPParseError(ValueError):
	pass


class ParserState(Enum):
	RequestLine = 0
	Headers = 1
	Body = 2


def parseRequestLine(line: bytes) -> HTTPRequestLine:
	"""Parses `GET /path?query HTTP/1.1` lines."""
	parts = line.decode("latin-1").split(" ")
	if len(parts) != 3 or not parts[2].startswith("HTTP/"):
		raise HTTPParseError(f"Malformed request line: {line[:100]!r}")
	method, target, protocol = parts
	path, _, query = target.partition("?")
	return HTTPRequestLine(method.upper(), path, query, protocol)


def parseQuery(text: str) -> dict[str, str]:
	"""Parses a query string into a dictionary, the last value of a repeated
	key winning."""
	res: dict[str, str] = {}
	for item in text.split("&"):
		if not item:
			continue
		k, _, v = item.partition("=")
		res[unquote_plus(k)] = unquote_plus(v)
	return res


class HTTPParser:
	"""Incrementally parses the requests sent on a connection, yielding the
	request line, the headers and then the request. Requests without a
	`Content-Length` have no body (chunked transfer coding is not
	supported). When a chunk ends in the middle of a body, the request is
	yielded with what was received, and reads the rest from its reader."""

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.state: ParserState = ParserState.RequestLine
		self.requestLine: HTTPRequestLine | None = None
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None
		self.body: bytearray = bytearray()

	def reset(self) -> "HTTPParser":
		self.line.reset()
		self.state = ParserState.RequestLine
		self.requestLine = None
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		self.body = bytearray()
		return self

	def addHeader(self, line: bytes) -> None:
		name, sep, value = line.decode("latin-1").partition(":")
		if not sep:
			return
		key: str = headername(name.strip())
		v: str = value.strip()
		if key == "Content-Length":
			try:
				self.contentLength = int(v)
			except ValueError:
				self.contentLength = None
		elif key == "Content-Type":
			self.contentType = v
		# Repeated headers are folded as a list
		self.headers[key] = f"{self.headers[key]}, {v}" if key in self.headers else v

	def request(self) -> HTTPRequest:
		line = self.requestLine
		if line is None:
			raise HTTPParseError("Request has no request line")
		expected: int = self.contentLength or 0
		request = HTTPRequest(
			method=line.method,
			path=line.path,
			query=parseQuery(line.query),
			rawQuery=line.query,
			headers=HTTPHeaders(self.headers, self.contentType, self.contentLength),
			body=HTTPBodyBlob(bytes(self.body), len(self.body), expected - len(self.body)),
			protocol=line.protocol,
		)
		self.reset()
		return request

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			if self.state is ParserState.Body:
				wanted = (self.contentLength or 0) - len(self.body)
				taken = chunk[offset : offset + wanted]
				self.body += taken
				offset += len(taken)
				if len(taken) == wanted or offset >= size:
					yield self.request()
				continue
			line, read = self.line.feed(chunk, offset)
			offset += read
			if line is None:
				continue
			elif self.state is ParserState.RequestLine:
				# Empty lines in between pipelined requests are ignored
				if line:
					self.requestLine = parseRequestLine(line)
					self.state = ParserState.Headers
					yield self.requestLine
			elif line:
				self.addHeader(line)
			else:
				yield HTTPHeaders(self.headers, self.contentType, self.contentLength)
				if (self.contentLength or 0) > 0:
					self.state = ParserState.Body
				else:
					yield self.request()


# EOF
