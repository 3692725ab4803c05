from contextlib import AsyncExitStack
from typing import ClassVar, Iterator

from .decorators import Extra
from .http.model import HTTPBodyWriter, HTTPRequest, HTTPResponse
from .routing import Dispatcher, Handler
from .utils.logging import debug, logged


class Service:
	"""Groups request handlers, the methods decorated with `@on` or
	`@expose`. Services are mounted in an application, under their
	prefix."""

	PREFIX: ClassVar[str] = ""
	# Attributes that are never looked up for handlers
	RESERVED: ClassVar[frozenset[str]] = frozenset(
		("app", "handlers", "isMounted", "name", "prefix", "start", "stop")
	)

	def __init__(self, name: str | None = None, *, prefix: str | None = None) -> None:
		self.name: str = name or self.__class__.__name__
		self.prefix: str = prefix or self.PREFIX
		self.app: Application | None = None
		self._handlers: list[Handler] | None = None

	async def start(self) -> None:
		pass

	async def stop(self) -> None:
		pass

	@property
	def isMounted(self) -> bool:
		return self.app is not None

	@property
	def handlers(self) -> list[Handler]:
		if self._handlers is None:
			self._handlers = list(self.iterHandlers())
		return self._handlers

	def iterHandlers(self) -> Iterator[Handler]:
		extra = Extra.Meta(self.__class__)
		for name in dir(self):
			if name in self.RESERVED or name.startswith("__"):
				continue
			if handler := Handler.Get(getattr(self, name), extra=extra, scope=self):
				yield handler

	def __repr__(self) -> str:
		return f"(Service {self.name}{' :mounted' if self.isMounted else ''})"


class Application:
	"""Dispatches requests to the handlers of its mounted services."""

	def __init__(self, services: list[Service] | None = None) -> None:
		self.dispatcher: Dispatcher = Dispatcher()
		self.services: list[Service] = []
		for service in services or ():
			self.mount(service)

	def mount(self, service: Service, prefix: str | None = None) -> Service:
		if service.isMounted:
			raise RuntimeError(f"Service is already mounted: {service}")
		for handler in service.handlers:
			self.dispatcher.register(handler, prefix or service.prefix)
		service.app = self
		self.services.append(service)
		return service

	async def start(self) -> "Application":
		self.dispatcher.prepare()
		for service in self.services:
			await service.start()
		return self

	async def stop(self) -> "Application":
		for service in self.services:
			await service.stop()
		return self

	async def process(
		self, request: HTTPRequest, writer: HTTPBodyWriter
	) -> HTTPResponse | None:
		"""Routes the request and writes the handler's response. Handlers
		run, along with the writing of their response, within their
		middlewares, which may substitute the writer."""
		route, params = self.dispatcher.match(request.method, request.path)
		handler = route.handler if route else None
		if handler is None:
			logged(debug) and debug(
				"No route found", Method=request.method, Path=request.path
			)
			res: HTTPResponse | None = request.notFound()
			await writer.writeResponse(res)
			return res
		async with AsyncExitStack() as stack:
			for middleware in handler.middlewares:
				writer = await stack.enter_async_context(middleware.engage(request, writer))
			res = await handler(request, params or {})
			if res is not None:
				await writer.writeResponse(res)
		return res


def mount(*components: Application | Service) -> Application:
	"""Mounts the services in the first given application, or in a new
	one."""
	app: Application | None = None
	for item in components:
		if isinstance(item, Application):
			app = app or item
		elif not isinstance(item, Service):
			raise RuntimeError(f"Unsupported component type {type(item)}: {item}")
	app = app or Application()
	for item in components:
		if isinstance(item, Service):
			app.mount(item)
	return app


# EOF
