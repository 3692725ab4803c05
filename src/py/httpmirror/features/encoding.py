from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..http.model import (
	BodyWriterDecorator,
	EncodingBodyWriter,
	HTTPBodyWriter,
	HTTPRequest,
	Middleware,
)
from ..utils.codec import CodecPool, Encoding
from ..utils.logging import debug, logged

# SEE: https://www.rfc-editor.org/rfc/rfc9110#name-accept-encoding


def acceptedEncodings(header: str | None) -> dict[str, float]:
	"""Parses an `Accept-Encoding` header into a map of lowercase coding
	to quality value."""
	res: dict[str, float] = {}
	for item in (header or "").split(","):
		coding, *params = (_.strip() for _ in item.split(";"))
		if not coding:
			continue
		quality: float = 1.0
		for param in params:
			name, _, value = param.partition("=")
			if name.strip().lower() == "q":
				try:
					quality = float(value)
				except ValueError:
					quality = 0.0
		res[coding.lower()] = quality
	return res


def accepts(header: str | None, encoding: Encoding) -> bool:
	"""Tells if the `Accept-Encoding` header value lists the given encoding,
	with a non-zero quality."""
	codings = acceptedEncodings(header)
	quality = codings.get(encoding.value, codings.get("*", 0.0))
	return quality > 0


class Negotiation(Middleware):
	"""Compresses responses with the given encoding when the client accepts
	it. Responses always get `Vary: Accept-Encoding`, and the request's
	`encoding` attribute tells the handler which encoding is used, if any."""

	def __init__(self, encoding: Encoding, pool: CodecPool) -> None:
		self.encoding: Encoding = encoding
		self.pool: CodecPool = pool

	@asynccontextmanager
	async def engage(
		self, request: HTTPRequest, writer: HTTPBodyWriter
	) -> AsyncIterator[HTTPBodyWriter]:
		vary = {"Vary": "Accept-Encoding"}
		if not accepts(request.header("Accept-Encoding"), self.encoding):
			request.encoding = Encoding.Identity
			yield BodyWriterDecorator(writer, vary)
			return
		request.encoding = self.encoding
		compressor = self.pool.acquire(self.encoding)
		encoder = EncodingBodyWriter(writer, compressor, vary)
		try:
			yield encoder
		except BaseException:
			await encoder.close(abort=True)
			raise
		else:
			await encoder.close()
			logged(debug) and debug(
				"Encoded response",
				Encoding=self.encoding.value,
				Committed=encoder.wroteBody,
			)
		finally:
			self.pool.release(compressor)

	def __repr__(self) -> str:
		return f"(Negotiation {self.encoding.value})"


# EOF
