import asyncio
import gzip
import zlib

import pytest

from httpmirror.bridge import BridgeResponse, BufferedBodyWriter
from httpmirror.decorators import around, on
from httpmirror.features.encoding import Negotiation, acceptedEncodings, accepts
from httpmirror.http.model import (
	BodyWriterDecorator,
	EncodingBodyWriter,
	FLUSH_STREAM,
	HTTPBodyBlob,
	HTTPRequest,
	HTTPResponse,
)
from httpmirror.http.parser import HTTPParser
from httpmirror.model import Application, Service
from httpmirror.server import sendResponse
from httpmirror.utils.codec import CodecPool, Decompressor, Encoding

VARY = {"Vary": "Accept-Encoding"}


def parse(raw: bytes) -> HTTPRequest:
	return [_ for _ in HTTPParser().feed(raw) if isinstance(_, HTTPRequest)][0]


def encoded(
	response: HTTPResponse, encoding: Encoding = Encoding.GZip
) -> tuple[BridgeResponse, BufferedBodyWriter]:
	"""Writes the response through an encoding writer, and parses what
	reached the sink."""
	pool = CodecPool()
	sink = BufferedBodyWriter()
	compressor = pool.acquire(encoding)

	async def main():
		writer = EncodingBodyWriter(sink, compressor, VARY)
		await writer.writeResponse(response)
		await writer.close()

	asyncio.run(main())
	pool.release(compressor)
	return BridgeResponse.Parse(sink.data, sink.flushes), sink


def test_empty_body_rolls_back():
	res, _ = encoded(HTTPResponse.Create(content=b"", status=204))
	assert res.status == 204
	assert res.header("Content-Encoding") is None
	assert res.header("Vary") == "Accept-Encoding"
	# Bodiless statuses carry no length
	assert res.header("Content-Length") is None
	assert res.body == b""


def test_empty_stream_rolls_back():
	async def nothing():
		yield FLUSH_STREAM
		yield b""

	res, sink = encoded(HTTPResponse.Create(content=nothing(), contentLength=0))
	assert res.header("Content-Encoding") is None
	assert res.header("Vary") == "Accept-Encoding"
	assert res.body == b""


def test_gzip_round_trip():
	payload = b"hello, world\n" * 100
	res, sink = encoded(HTTPResponse.Create(content=payload, contentType="text/plain"))
	assert res.status == 200
	assert res.header("Content-Encoding") == "gzip"
	assert res.header("Content-Length") is None
	assert res.header("Connection") == "close"
	assert res.header("Content-Type") == "text/plain"
	assert len(res.body) < len(payload)
	assert gzip.decompress(res.body) == payload
	assert sink.shouldClose


def test_bytes_written_directly_are_encoded():
	pool = CodecPool()
	sink = BufferedBodyWriter()
	compressor = pool.acquire(Encoding.GZip)

	async def main():
		writer = EncodingBodyWriter(sink, compressor, VARY)
		await writer.writeHead(HTTPResponse.Create(content=b"hello world"))
		await writer.write(b"hello world")
		assert writer.wroteBody
		await writer.close()

	asyncio.run(main())
	pool.release(compressor)
	res = BridgeResponse.Parse(sink.data)
	assert res.header("Content-Encoding") == "gzip"
	assert b"hello world" not in res.body
	assert gzip.decompress(res.body) == b"hello world"


def test_deflate_round_trip():
	payload = b'{"deflated": true}'
	res, _ = encoded(
		HTTPResponse.Create(content=payload, contentType="application/json"),
		Encoding.Deflate,
	)
	assert res.header("Content-Encoding") == "deflate"
	assert zlib.decompress(res.body) == payload


def test_content_type_is_sniffed():
	res, _ = encoded(HTTPResponse.Create(content=b"<html><body>Hi</body></html>"))
	assert res.header("Content-Type") == "text/html; charset=utf-8"
	res, _ = encoded(HTTPResponse.Create(content=b"\x00\x01\x02binary"))
	assert res.header("Content-Type") == "application/octet-stream"


def test_existing_vary_is_merged():
	res, _ = encoded(HTTPResponse.Create(content=b"data", headers={"Vary": "Origin"}))
	assert res.header("Vary") == "Origin, Accept-Encoding"


def test_flush_emits_decodable_prefix():
	async def chunks():
		yield b"first"
		yield FLUSH_STREAM
		yield b"second"

	res, _ = encoded(
		HTTPResponse.Create(content=chunks(), contentType="text/plain")
	)
	assert res.flushes
	d = Decompressor()
	assert d.feed(res.body[: res.flushes[0]]) == b"first"
	assert gzip.decompress(res.body) == b"firstsecond"


def test_capabilities_follow_the_sink():
	class HijackableWriter(BufferedBodyWriter):
		def hijack(self):
			return "socket"

	pool = CodecPool()
	plain = EncodingBodyWriter(BufferedBodyWriter(), pool.acquire(Encoding.GZip))
	assert not hasattr(plain, "hijack")
	assert not hasattr(plain, "push")
	hijackable = EncodingBodyWriter(HijackableWriter(), pool.acquire(Encoding.GZip))
	assert hijackable.hijack() == "socket"
	assert not hasattr(hijackable, "push")
	with pytest.raises(AttributeError):
		hijackable.unknown


def test_abort_after_body_truncates():
	pool = CodecPool()
	sink = BufferedBodyWriter()
	compressor = pool.acquire(Encoding.GZip)

	async def main():
		writer = EncodingBodyWriter(sink, compressor, VARY)
		await writer.writeHead(HTTPResponse.Create(content=b"partial"))
		await writer.write(HTTPBodyBlob.FromBytes(b"partial"))
		assert writer.wroteBody
		return await writer.close(abort=True)

	assert asyncio.run(main()) is False
	assert sink.shouldClose
	res = BridgeResponse.Parse(sink.data)
	assert res.header("Content-Encoding") == "gzip"
	d = zlib.decompressobj(wbits=zlib.MAX_WBITS | 16)
	d.decompress(res.body)
	assert not d.eof


def test_abort_before_body_writes_nothing():
	pool = CodecPool()
	sink = BufferedBodyWriter()

	async def main():
		writer = EncodingBodyWriter(sink, pool.acquire(Encoding.GZip), VARY)
		await writer.writeHead(HTTPResponse.Create(content=b""))
		return await writer.close(abort=True)

	assert asyncio.run(main()) is False
	assert sink.data == b""
	assert not sink.shouldClose


# -----------------------------------------------------------------------------
#
# NEGOTIATION
#
# -----------------------------------------------------------------------------


def test_accepted_encodings():
	assert acceptedEncodings("gzip, deflate;q=0.5, br;q=0") == {
		"gzip": 1.0,
		"deflate": 0.5,
		"br": 0.0,
	}
	assert acceptedEncodings(None) == {}
	assert accepts("GZIP", Encoding.GZip)
	assert not accepts("gzip;q=0", Encoding.GZip)
	assert not accepts("deflate", Encoding.GZip)
	assert accepts("*", Encoding.Deflate)
	assert not accepts("*, gzip;q=0", Encoding.GZip)


def engage(accept: str | None, fail: bool = False):
	pool = CodecPool()
	negotiation = Negotiation(Encoding.GZip, pool)
	headers = f"Accept-Encoding: {accept}\r\n" if accept is not None else ""
	request = parse(f"GET /gzip HTTP/1.1\r\nHost: localhost\r\n{headers}\r\n".encode())
	sink = BufferedBodyWriter()

	async def main():
		async with negotiation.engage(request, sink) as writer:
			if fail:
				raise RuntimeError("Handler failed")
			await writer.writeResponse(request.returns({"ok": True}))
			return writer

	try:
		writer = asyncio.run(main())
	except RuntimeError:
		writer = None
	return request, writer, pool, BridgeResponse.Parse(sink.data) if sink.data else None


def test_negotiation_engages_when_accepted():
	request, writer, pool, res = engage("gzip, deflate")
	assert request.encoding is Encoding.GZip
	assert isinstance(writer, EncodingBodyWriter)
	assert res.header("Content-Encoding") == "gzip"
	assert res.header("Vary") == "Accept-Encoding"
	assert gzip.decompress(res.body) == b'{"ok": true}'
	# The compressor went back to the pool
	assert pool.available(Encoding.GZip) == 1


def test_negotiation_passes_through_otherwise():
	for accept in (None, "deflate", "gzip;q=0"):
		request, writer, pool, res = engage(accept)
		assert request.encoding is Encoding.Identity
		assert type(writer) is BodyWriterDecorator
		assert res.header("Content-Encoding") is None
		assert res.header("Vary") == "Accept-Encoding"
		assert res.body == b'{"ok": true}'
		assert pool.created == 0


def test_negotiation_releases_on_error():
	request, writer, pool, res = engage("gzip", fail=True)
	assert writer is None
	assert res is None
	assert pool.available(Encoding.GZip) == 1


class BrokenPipeWriter(BufferedBodyWriter):
	"""A sink whose client goes away after `writes` non-empty writes."""

	def __init__(self, writes: int) -> None:
		super().__init__()
		self.writes: int = writes

	async def _writeBytes(self, chunk, more=False):
		if chunk:
			if self.writes <= 0:
				raise BrokenPipeError("Client went away")
			self.writes -= 1
		return await super()._writeBytes(chunk, more)


class StreamingService(Service):
	def __init__(self) -> None:
		self.pool = CodecPool()
		self.gzipEncoding = Negotiation(Encoding.GZip, self.pool)
		self.produced: int = 0
		super().__init__()

	@on(GET="/stream")
	@around("gzipEncoding")
	def stream(self, request):
		async def lines():
			for i in range(100):
				self.produced += 1
				yield f"line {i}\n"
				yield FLUSH_STREAM

		return request.respond(lines(), contentType="text/plain")


def test_disconnect_during_encoded_stream():
	service = StreamingService()
	app = Application([service])
	request = parse(b"GET /stream HTTP/1.1\r\nHost: localhost\r\nAccept-Encoding: gzip\r\n\r\n")
	# The head and two flushed lines get through
	writer = BrokenPipeWriter(3)
	assert asyncio.run(sendResponse(request, app, writer)) is None
	assert writer.shouldClose
	assert service.produced < 10
	assert service.pool.created == 1
	assert service.pool.available(Encoding.GZip) == 1
	res = BridgeResponse.Parse(writer.data)
	assert res.header("Content-Encoding") == "gzip"


# EOF
