import sys
import time
from contextvars import ContextVar
from enum import IntEnum
from os import environ, getenv
from typing import Any, Callable, NamedTuple

from .primitives import TPrimitive

ERR = sys.stderr

# SEE: https://no-color.org/
COLOR: bool = "FORCE_COLOR" in environ or (
	"NO_COLOR" not in environ and ERR.isatty()
)

BOLD: str = "\033[1m" if COLOR else ""
RESET: str = "\033[0m" if COLOR else ""

LogOrigin: ContextVar[str] = ContextVar("LogOrigin", default="httpmirror")


class LogLevel(IntEnum):
	Debug = 0
	Info = 10
	Warning = 30
	Error = 40
	Exception = 50


# 256 colors palette entries
LEVEL_COLOR: dict[LogLevel, int] = {
	LogLevel.Debug: 31,
	LogLevel.Info: 75,
	LogLevel.Warning: 202,
	LogLevel.Error: 160,
	LogLevel.Exception: 124,
}

LOG_LEVEL: LogLevel = {_.name.lower(): _ for _ in LogLevel}.get(
	getenv("HTTPMIRROR_LOG_LEVEL", "info").lower(), LogLevel.Info
)


def color(level: LogLevel) -> str:
	return f"\033[0;38;5;{LEVEL_COLOR[level]}m" if COLOR else ""


class LogEntry(NamedTuple):
	"""A log entry is either a message or a named event (a request being
	served), with a free-form context."""

	origin: str
	time: float
	level: LogLevel
	message: str
	context: dict[str, Any]
	isEvent: bool = False
	value: Any = None


def formatValue(value: Any) -> str:
	if value is None or value in ((), [], {}):
		return "◌"
	elif isinstance(value, bool):
		return "✓" if value else "✗"
	elif isinstance(value, float):
		return f"{value:0.2f}"
	elif isinstance(value, str):
		return repr(value) if " " in value else value
	elif isinstance(value, (list, tuple)):
		return ",".join(formatValue(_) for _ in value)
	elif isinstance(value, dict):
		return formatContext(value)
	else:
		return str(value)


def formatContext(context: dict[str, Any]) -> str:
	return " ".join(f"{BOLD}{k}{RESET}={formatValue(v)}" for k, v in context.items())


def send(entry: LogEntry) -> LogEntry:
	"""Writes the entry to stderr, unless it's below the `LOG_LEVEL`."""
	if entry.level < LOG_LEVEL:
		return entry
	head = f"{color(entry.level)}{BOLD}[{entry.origin}]"
	if entry.isEvent:
		line = f"{head} {entry.message}{RESET} {formatValue(entry.value)}"
	else:
		line = f"{head}{RESET} {entry.message}"
	if entry.context:
		line = f"{line} {formatContext(entry.context)}"
	ERR.write(f"{line}{RESET}\n")
	ERR.flush()
	return entry


def log(
	level: LogLevel,
	message: str,
	context: dict[str, Any],
	*,
	origin: str | None = None,
	isEvent: bool = False,
	value: Any = None,
) -> LogEntry:
	return send(
		LogEntry(
			origin=origin or LogOrigin.get(),
			time=time.time(),
			level=level,
			message=message,
			context=context,
			isEvent=isEvent,
			value=value,
		)
	)


def debug(message: str, *, origin: str | None = None, **context: TPrimitive) -> LogEntry:
	return log(LogLevel.Debug, message, context, origin=origin)


def info(message: str, *, origin: str | None = None, **context: TPrimitive) -> LogEntry:
	return log(LogLevel.Info, message, context, origin=origin)


def warning(
	message: str, *, origin: str | None = None, **context: TPrimitive
) -> LogEntry:
	return log(LogLevel.Warning, message, context, origin=origin)


def error(
	message: str,
	code: int | str | None = None,
	*,
	origin: str | None = None,
	**context: TPrimitive,
) -> LogEntry:
	"""Logs a managed error, the optional `code` identifying its kind."""
	return log(
		LogLevel.Error, message, context | {"Code": code} if code else context, origin=origin
	)


def event(
	name: str, value: Any = None, *, origin: str | None = None, **context: TPrimitive
) -> LogEntry:
	return log(LogLevel.Info, name, context, origin=origin, isEvent=True, value=value)


def exception(error: BaseException, message: str | None = None) -> BaseException:
	"""Logs the exception with its traceback, and returns it so that it
	can be used as `raise exception(e)`."""
	summary = f"[{error.__class__.__name__}] {error}"
	lines: list[str] = [f"!!! EXCP {f'{message}: {summary}' if message else summary}"]
	tb = error.__traceback__
	while tb:
		code = tb.tb_frame.f_code
		lines.append(f"... in {code.co_name:15s} at {tb.tb_lineno:4d} in {code.co_filename}")
		tb = tb.tb_next
	try:
		ERR.write("\n".join(lines) + "\n")
		ERR.flush()
	except OSError:  # nosec: B110
		pass
	return error


LOGGER_LEVEL: dict[Callable[..., Any], LogLevel] = {
	debug: LogLevel.Debug,
	info: LogLevel.Info,
	event: LogLevel.Info,
	warning: LogLevel.Warning,
	error: LogLevel.Error,
}


def logged(logger: Callable[..., Any]) -> bool:
	"""Tells if the given logging function currently emits anything, so
	that `logged(debug) and debug(...)` skips building the entry."""
	return LOGGER_LEVEL.get(logger, LogLevel.Exception) >= LOG_LEVEL


# EOF
