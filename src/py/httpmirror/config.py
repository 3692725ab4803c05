from os import getenv
from .utils.io import DEFAULT_ENCODING  # NOQA: F401

PORT: int = int(getenv("PORT", 8000))

# The mirror is meant to be reachable by the clients under test, wherever they run
HOST: str = getenv("HOST", "0.0.0.0")  # nosec: B104

LOG_REQUESTS: bool = getenv("HTTPMIRROR_LOG_REQUESTS", "1") == "1"

# Compression level shared by the `gzip` and `deflate` codecs, -1 is zlib's default
COMPRESSION_LEVEL: int = int(getenv("HTTPMIRROR_COMPRESSION_LEVEL", -1))

# Maximum number of idle compressors kept per encoding, 0 means unbounded
POOL_CAPACITY: int = int(getenv("HTTPMIRROR_POOL_CAPACITY", 0))

# Upper bound for the synthesized payloads (`/bytes`, `/range`, `/stream-bytes`, `/drip`)
MAX_BYTES: int = int(getenv("HTTPMIRROR_MAX_BYTES", 100 * 1024))

# Upper bound in seconds for the delays and durations requested by clients
MAX_DELAY: float = float(getenv("HTTPMIRROR_MAX_DELAY", 10))

# Seeds the shared random generator, so that weighted status codes are reproducible
SEED: int | None = (
	int(getenv("HTTPMIRROR_SEED", "")) if getenv("HTTPMIRROR_SEED") else None
)

# EOF
