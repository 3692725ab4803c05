import re
from inspect import isawaitable
from typing import Any, Callable, ClassVar, Iterator, NamedTuple, Pattern

from .decorators import Expose, Extra, Transform
from .http.model import HTTPRequest, HTTPRequestError, HTTPResponse, Middleware
from .utils.logging import debug, logged


class Parameter(NamedTuple):
	"""A `{name:kind}` route parameter, matched by `expr` and converted
	by `parse`."""

	name: str
	expr: str
	parse: Callable[[str], Any]


# Parameter kinds. Numeric values are best matched as segments and parsed
# by the handler, so that a malformed value is a 400 rather than a 404.
KINDS: dict[str, tuple[str, Callable[[str], Any]]] = {
	"id": (r"[A-Za-z0-9\-_]+", str),
	"segment": (r"[^/]+", str),
	"digits": (r"\d+", int),
	"int": (r"-?\d+", int),
	"any": (r".*", str),
}


class Route:
	"""A path template like `/links/{count:segment}/{offset:int}`, where
	parameters without a kind match a path segment."""

	RE_PARAMETER: ClassVar[Pattern[str]] = re.compile(
		r"\{(?P<name>[A-Za-z_]\w*)(?::(?P<kind>[^}]+))?\}"
	)

	@classmethod
	def Parse(cls, template: str) -> Iterator[str | Parameter]:
		"""Yields the escaped text and the parameters of the template."""
		offset: int = 0
		for match in cls.RE_PARAMETER.finditer(template):
			yield re.escape(template[offset : match.start()])
			name, kind = match.group("name"), (match.group("kind") or "segment")
			if kind not in KINDS:
				raise ValueError(
					f"Unknown route parameter kind '{kind}' in {template!r}, "
					f"expected one of: {', '.join(KINDS)}"
				)
			yield Parameter(name, *KINDS[kind])
			offset = match.end()
		yield re.escape(template[offset:])

	def __init__(self, template: str, handler: "Handler | None" = None) -> None:
		self.template: str = template
		self.handler: Handler | None = handler
		parts = list(self.Parse(template))
		self.params: dict[str, Parameter] = {
			_.name: _ for _ in parts if isinstance(_, Parameter)
		}
		self.pattern: str = "".join(
			f"(?P<{_.name}>{_.expr})" if isinstance(_, Parameter) else _
			for _ in parts
		)
		self.regexp: Pattern[str] = re.compile(f"^{self.pattern}$")

	@property
	def priority(self) -> int:
		return self.handler.priority if self.handler else 0

	def match(self, path: str) -> dict[str, Any] | None:
		if not (m := self.regexp.match(path)):
			return None
		return {k: p.parse(m.group(k)) for k, p in self.params.items()}

	def __repr__(self) -> str:
		return f"(Route {self.template!r} {self.priority})"


class Handler:
	"""Binds a decorated service method to the HTTP methods and route
	templates it answers, along with its priority, its `around` middlewares
	and its `post` transforms."""

	@staticmethod
	def Annotation(value: Any, key: str) -> Any:
		meta = Extra.Annotations.get(id(value))
		if meta is not None:
			return meta.get(key)
		return getattr(value, key, None)

	@classmethod
	def Get(
		cls, value: Any, extra: dict[str, Any] | None = None, scope: Any = None
	) -> "Handler | None":
		"""Returns the handler of `value` when it is decorated with `@on`,
		the class-level annotations in `extra` applying before its own."""
		methods = cls.Annotation(value, Extra.ON)
		if not methods:
			return None
		extra = extra or {}
		middlewares: list[Middleware] = []
		for name in cls.Annotation(value, Extra.AROUND) or ():
			middleware = getattr(scope, name, None)
			if not isinstance(middleware, Middleware):
				raise RuntimeError(
					f"Handler {value} expects a middleware in attribute '{name}' of: {scope}"
				)
			middlewares.append(middleware)
		priority = cls.Annotation(value, Extra.ON_PRIORITY)
		return cls(
			functor=value,
			methods=methods,
			priority=extra.get(Extra.ON_PRIORITY, 0) if priority is None else priority,
			expose=cls.Annotation(value, Extra.EXPOSE),
			post=list(extra.get(Extra.POST, ()))
			+ list(cls.Annotation(value, Extra.POST) or ()),
			middlewares=middlewares,
		)

	def __init__(
		self,
		functor: Callable[..., Any],
		methods: list[tuple[str, str]],
		priority: int = 0,
		expose: Expose | None = None,
		post: list[Transform] | None = None,
		middlewares: list[Middleware] | None = None,
	) -> None:
		self.functor = functor
		self.methods: dict[str, list[str]] = {}
		for method, template in methods:
			self.methods.setdefault(method, []).append(template)
		self.priority: int = priority
		self.expose: Expose | None = expose
		self.post: list[Transform] = post or []
		self.middlewares: list[Middleware] = middlewares or []

	async def invoke(self, request: HTTPRequest, params: dict[str, Any]) -> Any:
		if self.expose:
			value = self.functor(**params)
			value = await value if isawaitable(value) else value
			contentType = self.expose.contentType or "application/json"
			if self.expose.raw:
				return request.respond(value, contentType=contentType)
			return request.returns(value, contentType=contentType)
		res = self.functor(request, **params)
		return await res if isawaitable(res) else res

	async def __call__(
		self, request: HTTPRequest, params: dict[str, Any]
	) -> HTTPResponse | None:
		try:
			response = await self.invoke(request, params)
		except HTTPRequestError as e:
			status: int = e.status or 500
			logged(debug) and debug(
				"Request failed", Path=request.path, Status=status, Reason=e.message
			)
			if e.payload is not None:
				response = request.returns(e.payload, headers=e.headers, status=status)
			else:
				response = request.error(
					status,
					e.message,
					contentType=e.contentType or "text/plain",
					headers=e.headers,
				)
		if isinstance(response, HTTPResponse):
			for t in self.post:
				t.transform(request, response, *t.args, **t.kwargs)
		return response

	def __repr__(self) -> str:
		methods = " ".join(f"{k}={v}" for k, v in self.methods.items())
		return f"(Handler {getattr(self.functor, '__name__', self.functor)} {methods} {self.priority})"


class Dispatcher:
	"""Matches requests to the routes registered for their method. The
	route with the highest priority wins, ties going to the first route in
	template order."""

	def __init__(self) -> None:
		self.routes: dict[str, list[Route]] = {}
		self.isPrepared: bool = True

	def register(self, handler: Handler, prefix: str | None = None) -> "Dispatcher":
		for method, templates in handler.methods.items():
			for template in templates:
				path = f"{prefix or ''}{template}"
				path = path if path.startswith("/") else f"/{path}"
				logged(debug) and debug("Registered route", Method=method, Path=path)
				self.routes.setdefault(method, []).append(Route(path, handler))
		self.isPrepared = False
		return self

	def prepare(self) -> "Dispatcher":
		for routes in self.routes.values():
			routes.sort(key=lambda _: (-_.priority, _.pattern))
		self.isPrepared = True
		return self

	def match(
		self, method: str, path: str
	) -> tuple[Route | None, dict[str, Any] | None]:
		"""Returns the matching route and its extracted parameters."""
		if not self.isPrepared:
			self.prepare()
		for route in self.routes.get(method, ()):
			if (params := route.match(path)) is not None:
				return route, params
		return None, None


# EOF
