import asyncio
from typing import Literal, NamedTuple, Optional

from ..http.model import HTTPBodyReader, HTTPBodyWriter, HTTPRequest, headername
from ..http.parser import HTTPParser
from ..model import Application, Service, mount
from ..server import sendResponse

# --
# The bridge runs requests through an application without going through a
# socket, which is what the tests and embedding code use.


class BufferedBodyWriter(HTTPBodyWriter):
    """Collects the written response in memory, recording the offsets at
    which the body was flushed."""

    __slots__ = ["data", "flushes"]

    def __init__(self) -> None:
        super().__init__(None)
        self.data: bytearray = bytearray()
        self.flushes: list[int] = []

    async def _writeBytes(
        self, chunk: bytes | None | Literal[False], more: bool = False
    ) -> bool:
        if chunk:
            self.data += chunk
        return True

    async def _flush(self) -> bool:
        self.flushes.append(len(self.data))
        return True


class EmptyBodyReader(HTTPBodyReader):
    """The bridge is given whole requests, there's nothing more to read."""

    async def read(
        self, timeout: float = 1.0, size: int | None = None
    ) -> bytes | None:
        return None


class BridgeResponse(NamedTuple):
    status: int
    headers: dict[str, str]
    body: bytes
    # Offsets in the body at which it was flushed
    flushes: tuple[int, ...] = ()
    # The `Set-Cookie` values, which the headers only keep the last of
    cookies: tuple[str, ...] = ()

    @staticmethod
    def Parse(raw: bytes, flushes: list[int] | None = None) -> "BridgeResponse":
        """Parses a raw HTTP response, the body being everything after the
        head."""
        head, sep, body = bytes(raw).partition(b"\r\n\r\n")
        if not sep:
            raise ValueError(f"Response has no complete head: {raw[:100]!r}")
        lines = head.decode("latin-1").split("\r\n")
        _, status, *_ = lines[0].split(" ", 2)
        headers: dict[str, str] = {}
        cookies: list[str] = []
        for line in lines[1:]:
            name, _, value = line.partition(":")
            key = headername(name.strip())
            headers[key] = value.strip()
            if key == "Set-Cookie":
                cookies.append(value.strip())
        offset = len(head) + len(sep)
        return BridgeResponse(
            status=int(status),
            headers=headers,
            body=body,
            flushes=tuple(max(0, _ - offset) for _ in flushes or ()),
            cookies=tuple(cookies),
        )

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(headername(name))


class Bridge:
    def __init__(self, application: Application):
        self.application: Application = application
        if not self.application:
            raise ValueError("Bridge has not been given an application")
        self.isStarted: bool = False

    async def request(
        self, payload: bytes, peer: str = "127.0.0.1"
    ) -> BridgeResponse:
        """Processes the raw HTTP request given as `payload` and returns the
        response that the application wrote."""
        if not self.isStarted:
            await self.application.start()
            self.isStarted = True
        requests = [_ for _ in HTTPParser().feed(payload) if isinstance(_, HTTPRequest)]
        if not requests:
            raise ValueError(f"Payload is not a complete request: {payload[:100]!r}")
        request = requests[0]
        request.peer = peer
        request._reader = EmptyBodyReader()
        writer = BufferedBodyWriter()
        await sendResponse(request, self.application, writer)
        return BridgeResponse.Parse(writer.data, writer.flushes)


def request(
    *components: Application | Service, payload: bytes, peer: str = "127.0.0.1"
) -> BridgeResponse:
    """Runs a single raw request through the given components, outside of
    any running event loop."""
    return asyncio.run(Bridge(mount(*components)).request(payload, peer))


# EOF
