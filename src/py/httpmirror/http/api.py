from abc import ABC, abstractmethod
from typing import Any, Generic, Iterator, TypeVar

from ..utils.json import json
from .status import HTTP_STATUS

T = TypeVar("T")

TText = str | bytes | Iterator[str | bytes]


class ResponseFactory(ABC, Generic[T]):
	"""Shorthands to create the responses handlers return, built on the
	single `respond` primitive."""

	@abstractmethod
	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> T: ...

	def empty(self, status: int = 200, headers: dict[str, str] | None = None) -> T:
		return self.respond(b"", status=status, headers=headers)

	def returns(
		self,
		value: Any,
		headers: dict[str, str] | None = None,
		*,
		status: int = 200,
		contentType: str = "application/json",
	) -> T:
		"""Responds with the value serialized as JSON."""
		return self.respond(
			json(value), contentType=contentType, status=status, headers=headers
		)

	def respondText(
		self,
		content: TText,
		contentType: str = "text/plain; charset=utf-8",
		status: int = 200,
	) -> T:
		return self.respond(content, contentType=contentType, status=status)

	def respondHTML(self, html: TText, status: int = 200) -> T:
		return self.respondText(html, "text/html; charset=utf-8", status)

	def error(
		self,
		status: int,
		content: str | None = None,
		contentType: str = "text/plain",
		headers: dict[str, str] | None = None,
	) -> T:
		"""Responds with the error status, the body defaulting to its
		reason phrase."""
		reason: str = HTTP_STATUS.get(status, "Error")
		return self.respond(
			reason if content is None else content,
			contentType=contentType,
			status=status,
			headers=headers,
			message=reason,
		)

	def notFound(self, content: str = "Not Found") -> T:
		return self.error(404, content)

	def redirect(
		self, url: str, permanent: bool = False, headers: dict[str, str] | None = None
	) -> T:
		# SEE: https://developer.mozilla.org/en-US/docs/Web/HTTP/Redirections
		return self.empty(
			301 if permanent else 302, {"Location": url} | (headers or {})
		)


# EOF
