import resource
from typing import NamedTuple

from .logging import debug, logged, warning

# Each connection holds a socket, and slow responses (drip, delay) keep
# them open for a while.
FILES_LIMIT: int = 100 * 1024


class Limit(NamedTuple):
	soft: int
	hard: int


def filesLimit() -> Limit:
	return Limit(*resource.getrlimit(resource.RLIMIT_NOFILE))


def raiseFilesLimit(maximum: int = FILES_LIMIT) -> int | None:
	"""Raises the soft limit of open files up to the hard limit, capped to
	`maximum` as some systems report an unlimited hard limit that
	`setrlimit` rejects. Returns the new soft limit, or `None` when it could
	not be changed."""
	current = filesLimit()
	if current.soft == resource.RLIM_INFINITY:
		return current.soft
	hard = maximum if current.hard == resource.RLIM_INFINITY else current.hard
	target = max(current.soft, min(maximum, hard))
	try:
		resource.setrlimit(resource.RLIMIT_NOFILE, (target, current.hard))
	except (ValueError, OSError) as e:
		warning("Could not raise the open files limit", Soft=current.soft, Reason=str(e))
		return None
	logged(debug) and debug("Open files limit", Soft=target, Hard=current.hard)
	return target


# EOF
