from typing import Any, Callable, ClassVar, NamedTuple, TypeVar, cast

from .http.model import HTTPRequest, HTTPResponse

T = TypeVar("T")


class Transform(NamedTuple):
	"""A post-processing step applied to the responses of a handler."""

	transform: Callable[..., Any]
	args: tuple[Any, ...] = ()
	kwargs: dict[str, Any] = {}


class Expose(NamedTuple):
	raw: bool = False
	contentType: str | None = None


class Extra:
	"""Names the annotations the decorators put on handlers."""

	ON: ClassVar[str] = "_extra_on"
	ON_PRIORITY: ClassVar[str] = "_extra_on_priority"
	EXPOSE: ClassVar[str] = "_extra_expose"
	POST: ClassVar[str] = "_extra_post"
	AROUND: ClassVar[str] = "_extra_around"
	# Annotations of values that can't hold attributes, by object id
	Annotations: ClassVar[dict[int, dict[str, Any]]] = {}

	@staticmethod
	def Meta(scope: Any) -> dict[str, Any]:
		"""Returns where the annotations of `scope` are stored. Classes get
		their own `__extra__`, so that subclasses don't share it."""
		if isinstance(scope, type):
			if "__extra__" not in scope.__dict__:
				setattr(scope, "__extra__", {})
			return cast(dict[str, Any], scope.__dict__["__extra__"])
		elif hasattr(scope, "__dict__"):
			return cast(dict[str, Any], scope.__dict__)
		else:
			return Extra.Annotations.setdefault(id(scope), {})


def on(priority: int = 0, **methods: str | list[str] | tuple[str, ...]) -> Callable[[T], T]:
	"""Marks the decorated method as a request handler. Keywords are HTTP
	methods joined by `_`, their values one or more route templates:

	>    @on(GET_POST="/status/{codes:segment}")
	>    def status(self, request, codes):
	>        ...

	The method is given the request and the route parameters. Amongst the
	routes matching a request, the one of highest priority wins."""

	def decorator(function: T) -> T:
		meta = Extra.Meta(function)
		routes: list[tuple[str, str]] = meta.setdefault(Extra.ON, [])
		meta.setdefault(Extra.ON_PRIORITY, priority)
		for names, templates in methods.items():
			for name in names.upper().split("_"):
				routes.extend(
					(name, _)
					for _ in ((templates,) if isinstance(templates, str) else templates)
				)
		return function

	return decorator


def expose(
	priority: int = 0, contentType: str | None = None, raw: bool = False, **methods: str
) -> Callable[[T], T]:
	"""Like `@on`, for methods that only take the route parameters. What
	they return is sent as JSON, or as is when `raw`."""

	def decorator(function: T) -> T:
		on(priority, **methods)(function)
		Extra.Meta(function)[Extra.EXPOSE] = Expose(raw, contentType)
		return function

	return decorator


def around(*middlewares: str) -> Callable[[T], T]:
	"""Runs the handler, and the writing of its response, within the given
	middlewares, named after the service attributes holding them."""

	def decorator(function: T) -> T:
		Extra.Meta(function).setdefault(Extra.AROUND, []).extend(middlewares)
		return function

	return decorator


def post(
	transform: Callable[[HTTPRequest, HTTPResponse], HTTPResponse]
) -> Callable[[T], T]:
	"""Applies `transform` to the responses of the decorated handler, or of
	every handler when decorating a service class."""

	def decorator(function: T) -> T:
		Extra.Meta(function).setdefault(Extra.POST, []).append(Transform(transform))
		return function

	return decorator


# EOF
