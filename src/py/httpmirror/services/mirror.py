import asyncio
import base64
import binascii
import random
import uuid
from http.cookies import CookieError
from typing import Any
from urllib.parse import quote, unquote

from .. import config
from ..decorators import around, expose, on
from ..features.cors import cors
from ..features.encoding import Negotiation
from ..features.pacing import (
	ByteRange,
	DripPlan,
	RANGE_CHUNK_SIZE,
	drip,
	ranged,
	synthesize,
)
from ..features.status import StatusSelector
from ..http.model import HTTPRequest, HTTPRequestError, HTTPResponse, FLUSH_STREAM
from ..http.parser import parseQuery
from ..model import Service
from ..utils.codec import CodecPool, Encoding
from ..utils.htmpl import H, Node, html
from ..utils.json import unjson
from ..utils.primitives import asText
from ..utils.logging import debug, logged

# Objects sent by `/stream/{n}`
STREAM_MAX: int = 100
# Links generated by `/links/{n}`
LINKS_MAX: int = 200

ROBOTS_TXT: str = "User-agent: *\nDisallow: /deny\n"

DENY_TXT: str = """
          .-''''''-.
        .' _      _ '.
       /   O      O   \\
      :                :
      |                |
      :       __       :
       \\  .-"`  `"-.  /
        '.          .'
          '-......-'
     YOU SHOULDN'T BE HERE
"""

INDEX_CSS: str = """
:root {
    font-family: sans-serif;
    font-size: 14px;
    line-height: 1.35em;
    padding: 20px;
}
dt { margin-top: 0.75em; }
"""

# The endpoints listed in the index page, with their description
ENDPOINTS: tuple[tuple[str, str], ...] = (
	("/get", "The request's query args, headers, origin and URL."),
	("/post", "The request's data, for POST, also /put /patch /delete."),
	("/anything", "Everything about the request, for any method."),
	("/ip", "The origin IP of the request."),
	("/headers", "The request's headers."),
	("/user-agent", "The request's user agent."),
	("/status/418", "A response with the given status, or picked among weighted codes."),
	("/gzip", "A gzip-encoded response, when accepted."),
	("/deflate", "A deflate-encoded response, when accepted."),
	("/delay/1", "A response delayed by the given number of seconds."),
	("/drip?numbytes=10&duration=2", "Bytes dripped over the given duration."),
	("/range/1024", "Bytes that support range requests."),
	("/stream-bytes/1024", "Random bytes streamed in chunks."),
	("/bytes/1024", "Random bytes."),
	("/stream/10", "JSON objects streamed one per line."),
	("/uuid", "A random UUID4."),
	("/base64/aHR0cG1pcnJvcg==", "The decoded base64 value."),
	("/links/10/0", "A page of links to the other pages."),
	("/cookies", "The request's cookies."),
	("/cookies/set?name=value", "Sets the cookies given as query parameters."),
	("/cookies/delete?name", "Expires the cookies named in the query."),
	("/robots.txt", "The robots rules."),
)


# -----------------------------------------------------------------------------
#
# HELPERS
#
# -----------------------------------------------------------------------------


def origin(request: HTTPRequest) -> str:
	"""Returns the address of the client, as given by the proxies in front of
	us, or the address of the connected peer."""
	forwarded = request.header("X-Forwarded-For")
	if forwarded:
		return forwarded.split(",")[0].strip()
	return request.header("X-Real-Ip") or request.peer or ""


def url(request: HTTPRequest) -> str:
	scheme = request.header("X-Forwarded-Proto") or "http"
	host = request.header("Host") or f"{config.HOST}:{config.PORT}"
	query = f"?{request.rawQuery}" if request.rawQuery else ""
	return f"{scheme}://{host}{request.path}{query}"


def integer(text: str | None, default: int, name: str) -> int:
	"""Parses an integer parameter, failing with a 400 when malformed."""
	if text is None or text == "":
		return default
	try:
		return int(text)
	except ValueError as e:
		raise HTTPRequestError(f"Invalid {name}: {text}", status=400) from e


def number(text: str | None, default: float, name: str) -> float:
	"""Parses a numeric parameter, failing with a 400 when malformed."""
	if text is None or text == "":
		return default
	try:
		value = float(text)
	except ValueError as e:
		raise HTTPRequestError(f"Invalid {name}: {text}", status=400) from e
	if value != value or value in (float("inf"), float("-inf")):
		raise HTTPRequestError(f"Invalid {name}: {text}", status=400)
	return value


def seeded(request: HTTPRequest) -> int | None:
	seed = request.param("seed")
	return None if seed is None else integer(seed, 0, "seed")


def decodeBase64(value: str) -> bytes:
	"""Decodes a base64 value in the standard or URL-safe alphabet, which may
	be percent-encoded and unpadded."""
	text = "".join(unquote(value).split())
	text += "=" * (-len(text) % 4)
	try:
		return base64.b64decode(text, validate=True)
	except (binascii.Error, ValueError):
		pass
	try:
		return base64.b64decode(text, altchars=b"-_", validate=True)
	except (binascii.Error, ValueError) as e:
		raise HTTPRequestError(
			f"Incorrect Base64 data try: {base64.b64encode(b'httpmirror').decode('ascii')}",
			status=400,
		) from e


# -----------------------------------------------------------------------------
#
# SERVICE
#
# -----------------------------------------------------------------------------


@cors
class MirrorService(Service):
	"""Echoes requests back as JSON and synthesizes responses with controlled
	status, encoding, timing and size."""

	def __init__(
		self,
		*,
		compressionLevel: int = config.COMPRESSION_LEVEL,
		poolCapacity: int = config.POOL_CAPACITY,
		maxBytes: int = config.MAX_BYTES,
		maxDelay: float = config.MAX_DELAY,
		seed: int | None = config.SEED,
	):
		# The pool is shared by the two negotiations, and fails early on
		# an invalid compression level.
		self.codecs: CodecPool = CodecPool(compressionLevel, capacity=poolCapacity)
		self.gzipEncoding: Negotiation = Negotiation(Encoding.GZip, self.codecs)
		self.deflateEncoding: Negotiation = Negotiation(Encoding.Deflate, self.codecs)
		self.random: random.Random = random.Random(seed)
		self.statuses: StatusSelector = StatusSelector(self.random)
		self.maxBytes: int = maxBytes
		self.maxDelay: float = maxDelay
		super().__init__()

	async def stop(self) -> None:
		self.codecs.clear()

	# =========================================================================
	# INSPECTION
	# =========================================================================

	def inspect(self, request: HTTPRequest, *fields: str) -> dict[str, Any]:
		res: dict[str, Any] = {
			"args": request.query or {},
			"headers": request.headers,
			"origin": origin(request),
			"url": url(request),
		}
		for name in fields:
			if name == "method":
				res[name] = request.method
		return res

	async def payload(self, request: HTTPRequest) -> dict[str, Any]:
		"""Returns the body of the request as `data`, `form` and `json`. File
		uploads are not parsed, and `files` is always empty."""
		data: bytes = (await request.body.load()) or b""
		content_type = (request.contentType or "").split(";", 1)[0].strip().lower()
		form: dict[str, str] = {}
		value: Any = None
		if content_type == "application/x-www-form-urlencoded":
			form = parseQuery(data.decode("latin-1"))
		elif data and (
			content_type == "application/json" or content_type.endswith("+json")
		):
			try:
				value = unjson(data)
			except ValueError:
				value = None
		return {"data": asText(data), "files": {}, "form": form, "json": value}

	@on(GET="/get")
	def get(self, request: HTTPRequest) -> HTTPResponse:
		return request.returns(self.inspect(request))

	@on(POST="/post", PUT="/put", PATCH="/patch", DELETE="/delete")
	async def submitted(self, request: HTTPRequest) -> HTTPResponse:
		return request.returns(self.inspect(request) | await self.payload(request))

	@on(
		GET_POST_PUT_PATCH_DELETE_OPTIONS=("/anything", "/anything/{path:any}"),
	)
	async def anything(self, request: HTTPRequest, path: str | None = None):
		return request.returns(
			self.inspect(request, "method") | await self.payload(request)
		)

	@on(GET="/ip")
	def ip(self, request: HTTPRequest) -> HTTPResponse:
		return request.returns({"origin": origin(request)})

	@on(GET="/headers")
	def headers(self, request: HTTPRequest) -> HTTPResponse:
		return request.returns({"headers": request.headers})

	@on(GET="/user-agent")
	def userAgent(self, request: HTTPRequest) -> HTTPResponse:
		return request.returns({"user-agent": request.header("User-Agent")})

	# =========================================================================
	# STATUS & ENCODING
	# =========================================================================

	@on(GET_POST_PUT_PATCH_DELETE="/status/{codes:segment}")
	def status(self, request: HTTPRequest, codes: str) -> HTTPResponse:
		return request.empty(status=self.statuses.choose(codes))

	def encoded(self, request: HTTPRequest, flag: str, encoding: Encoding):
		return request.returns(
			{
				flag: request.encoding is encoding,
				"headers": request.headers,
				"method": request.method,
				"origin": origin(request),
			}
		)

	@on(GET_POST_PUT_PATCH_DELETE="/gzip")
	@around("gzipEncoding")
	def gzip(self, request: HTTPRequest) -> HTTPResponse:
		return self.encoded(request, "gzipped", Encoding.GZip)

	@on(GET_POST_PUT_PATCH_DELETE="/deflate")
	@around("deflateEncoding")
	def deflate(self, request: HTTPRequest) -> HTTPResponse:
		return self.encoded(request, "deflated", Encoding.Deflate)

	# =========================================================================
	# PACED DELIVERY
	# =========================================================================

	@on(GET_POST_PUT_PATCH_DELETE="/delay/{delay:segment}")
	async def delay(self, request: HTTPRequest, delay: str) -> HTTPResponse:
		seconds = number(delay, 0.0, "delay")
		if seconds < 0:
			raise HTTPRequestError(f"Invalid delay: {delay}", status=400)
		await asyncio.sleep(min(seconds, self.maxDelay))
		return request.returns(
			self.inspect(request, "method") | await self.payload(request)
		)

	@on(GET="/drip")
	async def dripped(self, request: HTTPRequest) -> HTTPResponse:
		plan = DripPlan.Make(
			numbytes=integer(request.param("numbytes"), 10, "numbytes"),
			duration=number(request.param("duration"), 2.0, "duration"),
			delay=number(request.param("delay"), 2.0, "delay"),
			code=integer(request.param("code"), 200, "code"),
			maxDelay=self.maxDelay,
		)
		logged(debug) and debug(
			"Dripping", Bytes=plan.numbytes, Duration=plan.duration, Delay=plan.delay
		)
		# Nothing is sent during the delay, not even the head
		if plan.delay > 0:
			await asyncio.sleep(plan.delay)
		return request.respond(
			drip(plan),
			contentType="application/octet-stream",
			contentLength=plan.numbytes,
			status=plan.code,
		)

	@on(GET="/range/{numbytes:segment}")
	def byteRange(self, request: HTTPRequest, numbytes: str) -> HTTPResponse:
		length = integer(numbytes, 0, "number of bytes")
		if length <= 0 or length > self.maxBytes:
			return request.notFound(
				f"Number of bytes must be in the range (0, {self.maxBytes}]"
			)
		# The range is checked before anything is written
		span = ByteRange.Parse(request.header("Range"), length)
		chunk_size = integer(
			request.param("chunk_size"), RANGE_CHUNK_SIZE, "chunk_size"
		)
		if chunk_size <= 0:
			raise HTTPRequestError(f"Invalid chunk_size: {chunk_size}", status=400)
		duration = max(
			0.0, min(number(request.param("duration"), 0.0, "duration"), self.maxDelay)
		)
		chunks = -(-span.size // chunk_size)
		headers: dict[str, str] = {
			"Accept-Ranges": "bytes",
			"ETag": f"range{length}",
		}
		if span.isPartial:
			headers["Content-Range"] = span.contentRange
		return request.respond(
			ranged(
				synthesize(length, seeded(request)),
				span,
				chunk_size,
				pause=duration / chunks if chunks > 1 else 0.0,
			),
			contentType="application/octet-stream",
			contentLength=span.size,
			status=206 if span.isPartial else 200,
			headers=headers,
		)

	@on(GET="/stream-bytes/{numbytes:segment}")
	def streamBytes(self, request: HTTPRequest, numbytes: str) -> HTTPResponse:
		length = min(self.maxBytes, integer(numbytes, 0, "number of bytes"))
		if length < 0:
			raise HTTPRequestError(f"Invalid number of bytes: {numbytes}", status=400)
		chunk_size = integer(
			request.param("chunk_size"), RANGE_CHUNK_SIZE, "chunk_size"
		)
		if chunk_size <= 0:
			raise HTTPRequestError(f"Invalid chunk_size: {chunk_size}", status=400)
		seed = seeded(request)
		rng = random.Random(seed) if seed is not None else self.random
		payload = rng.randbytes(length)
		# NOTE: There's no length, the body ends with the connection
		return request.respond(
			ranged(payload, ByteRange.Full(length), chunk_size),
			contentType="application/octet-stream",
		)

	# =========================================================================
	# DYNAMIC DATA
	# =========================================================================

	@on(GET="/bytes/{numbytes:segment}")
	def randomBytes(self, request: HTTPRequest, numbytes: str) -> HTTPResponse:
		length = integer(numbytes, 0, "number of bytes")
		if length < 0:
			raise HTTPRequestError(f"Invalid number of bytes: {numbytes}", status=400)
		seed = seeded(request)
		rng = random.Random(seed) if seed is not None else self.random
		return request.respond(
			rng.randbytes(min(length, self.maxBytes)),
			contentType="application/octet-stream",
		)

	@on(GET="/stream/{count:segment}")
	def stream(self, request: HTTPRequest, count: str) -> HTTPResponse:
		n = max(0, min(STREAM_MAX, integer(count, 0, "count")))
		# The inspection is done once, before the request goes away
		item: dict[str, Any] = self.inspect(request)

		def objects():
			for i in range(n):
				yield {"id": i} | item
				yield "\n"
				yield FLUSH_STREAM

		return request.respond(objects(), contentType="application/json")

	@expose(GET="/uuid")
	def uuid4(self) -> dict[str, str]:
		return {"uuid": str(uuid.uuid4())}

	@expose(GET="/base64/{value:segment}", raw=True, contentType="text/plain")
	def decoded(self, value: str) -> bytes:
		return decodeBase64(value)

	@on(GET=("/links/{count:segment}", "/links/{count:segment}/{offset:segment}"))
	def links(
		self, request: HTTPRequest, count: str, offset: str | None = None
	) -> HTTPResponse:
		n = max(1, min(LINKS_MAX, integer(count, 1, "count")))
		current = integer(offset, 0, "offset")
		items: list[Node | str] = []
		for i in range(n):
			items.append(
				str(i) if i == current else H.a(str(i), href=f"/links/{n}/{i}")
			)
			items.append(" ")
		return request.respondHTML(
			html(H.html(H.head(H.title("Links")), H.body(*items)))
		)

	# =========================================================================
	# COOKIES
	# =========================================================================

	@on(GET="/cookies")
	def cookies(self, request: HTTPRequest) -> HTTPResponse:
		return request.returns(
			{"cookies": {_: request.cookie(_).value for _ in request.cookies()}}
		)

	def setCookies(
		self, request: HTTPRequest, cookies: dict[str, str], maxAge: int | None = None
	) -> HTTPResponse:
		"""Redirects to `/cookies`, setting the given cookies on the way."""
		res = request.redirect("/cookies")
		for name, value in cookies.items():
			try:
				res.setCookie(name, value, maxAge=maxAge)
			except CookieError as e:
				raise HTTPRequestError(f"Invalid cookie name: {name}", status=400) from e
		return res

	@on(GET="/cookies/set")
	def setQueryCookies(self, request: HTTPRequest) -> HTTPResponse:
		return self.setCookies(request, request.query)

	@on(GET="/cookies/set/{name:segment}/{value:segment}")
	def setCookie(self, request: HTTPRequest, name: str, value: str) -> HTTPResponse:
		return self.setCookies(request, {unquote(name): unquote(value)})

	@on(GET="/cookies/delete")
	def deleteCookies(self, request: HTTPRequest) -> HTTPResponse:
		# Only the cookies the client has are expired
		existing = set(request.cookies())
		return self.setCookies(
			request, {_: "" for _ in request.query if _ in existing}, maxAge=-1
		)

	# =========================================================================
	# RESPONSE FORMATS
	# =========================================================================

	@on(GET="/robots.txt")
	def robots(self, request: HTTPRequest) -> HTTPResponse:
		return request.respondText(ROBOTS_TXT)

	@on(GET="/deny")
	def deny(self, request: HTTPRequest) -> HTTPResponse:
		return request.respondText(DENY_TXT)

	@on(GET="/")
	def index(self, request: HTTPRequest) -> HTTPResponse:
		entries: list[Node] = []
		for path, description in ENDPOINTS:
			entries.append(H.dt(H.a(H.code(path), href=quote(path, safe="/?=&"))))
			entries.append(H.dd(description))
		return request.respondHTML(
			html(
				H.html(
					H.head(
						H.meta(charset="utf-8"),
						H.title("httpmirror"),
						H.style(INDEX_CSS),
					),
					H.body(
						H.h1("httpmirror"),
						H.p("An HTTP request and response service."),
						H.dl(*entries),
					),
				)
			)
		)

	@on(priority=-1, OPTIONS="/{path:any}")
	def preflight(self, request: HTTPRequest, path: str) -> HTTPResponse:
		# Answers CORS preflights for any path, `@cors` adding the headers
		return request.empty()


# EOF
