from .http.model import (
    HTTPRequest,
    HTTPResponse,
    HTTPRequestError,
)  # NOQA: F401
from .decorators import on, expose, around, post  # NOQA: F401
from .server import run  # NOQA: F401
from .model import Service, Application, mount  # NOQA: F401
from .services.mirror import MirrorService  # NOQA: F401

__version__: str = "0.1.0"

# EOF
