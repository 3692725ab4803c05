from ..http.model import HTTPRequest, HTTPResponse
from ..decorators import post

# SEE: https://developer.mozilla.org/en-US/docs/Web/HTTP/CORS

CORS_METHODS: str = "GET, POST, PUT, DELETE, PATCH, OPTIONS"


def setCORSHeaders(request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
	"""Allows any origin to read the response, credentials included, which
	is what a mirror used from browsers needs. Preflight requests also get
	the allowed methods and headers."""
	origin: str | None = request.getHeader("Origin")
	response.setHeaders(
		{
			"Access-Control-Allow-Origin": origin or "*",
			"Access-Control-Allow-Credentials": "true",
		}
	)
	if request.method == "OPTIONS":
		response.setHeaders(
			{
				"Access-Control-Allow-Methods": CORS_METHODS,
				"Access-Control-Max-Age": "3600",
				"Access-Control-Allow-Headers": request.getHeader(
					"Access-Control-Request-Headers"
				),
			}
		)
	return response


# Post-processing decorator, for handlers or whole services
cors = post(setCORSHeaders)

# EOF
