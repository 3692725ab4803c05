import asyncio
import socket
import threading
from signal import SIGINT, SIGTERM
from typing import Callable, Literal, NamedTuple

from .config import HOST, LOG_REQUESTS, PORT
from .http.model import HTTPBodyReader, HTTPBodyWriter, HTTPRequest, HTTPResponse
from .http.parser import HTTPParser
from .model import Application, Service, mount
from .utils.limits import raiseFilesLimit
from .utils.logging import debug, error, event, exception, info, logged, warning


class ServerOptions(NamedTuple):
	host: str = "0.0.0.0"  # nosec: B104
	port: int = 8000
	backlog: int = 10_000
	# How often the accept loop checks if it should stop
	polling: float = 1.0
	readsize: int = 4_096
	# Idle time after which a kept-alive connection is closed
	keepalive: float = 60.0
	logRequests: bool = True
	condition: Callable[[], bool] | None = None
	stopSignals: bool = True


OPTIONS: ServerOptions = ServerOptions()

NO_RESPONSE: bytes = b"HTTP/1.1 204 No Content\r\nConnection: close\r\n\r\n"
INTERNAL_ERROR: bytes = (
	b"HTTP/1.1 500 Internal Server Error\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 21\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Internal Server Error"
)

# Errors raised when the client went away while we were writing
DISCONNECTED = (BrokenPipeError, ConnectionResetError)


class SocketBodyReader(HTTPBodyReader):
	"""Reads the rest of a request body from the client socket."""

	__slots__ = ["client", "loop", "size"]

	def __init__(
		self, client: socket.socket, loop: asyncio.AbstractEventLoop, size: int = 64_000
	) -> None:
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop
		self.size: int = size

	async def read(
		self, timeout: float = 1.0, size: int | None = None
	) -> bytes | None:
		return await asyncio.wait_for(
			self.loop.sock_recv(self.client, size or self.size), timeout=timeout
		)


class SocketBodyWriter(HTTPBodyWriter):
	"""Sends the response to the client socket as it is written."""

	__slots__ = ["client", "loop", "isHijacked"]

	def __init__(self, client: socket.socket, loop: asyncio.AbstractEventLoop) -> None:
		super().__init__(None)
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop
		self.isHijacked: bool = False

	def hijack(self) -> socket.socket:
		"""Hands the socket over to the caller, the server won't use or
		close it anymore."""
		self.isHijacked = True
		self.shouldClose = True
		return self.client

	async def _writeBytes(
		self, chunk: bytes | None | Literal[False], more: bool = False
	) -> bool:
		if self.isHijacked:
			raise RuntimeError("Cannot write to a hijacked connection")
		if chunk:
			await self.loop.sock_sendall(self.client, chunk)
		return True


async def sendResponse(
	request: HTTPRequest, app: Application, writer: HTTPBodyWriter
) -> HTTPResponse | None:
	"""Has the application process the request and write its response. A
	failure before anything was written is answered with a 500, otherwise
	the connection is closed as the response can't be completed."""
	writer.reset()
	try:
		res = await app.process(request, writer)
	except DISCONNECTED:
		warning("Client disconnected", Method=request.method, Path=request.path)
		writer.shouldClose = True
		return None
	except Exception as e:
		exception(e, f"Failed processing {request.method} {request.path}")
		writer.shouldClose = True
		if not writer.wroteHead:
			try:
				await writer.write(INTERNAL_ERROR)
			except DISCONNECTED:
				pass
		return None
	if res is None and not writer.wroteHead:
		warning("No response", Method=request.method, Path=request.path)
		writer.shouldClose = True
		await writer.write(NO_RESPONSE)
	return res


def keepsAlive(request: HTTPRequest, response: HTTPResponse | None) -> bool:
	if request.protocol == "HTTP/1.0":
		return False
	elif (request.header("Connection") or "").lower() == "close":
		return False
	else:
		return not (response and response.shouldClose)


async def serveClient(
	app: Application,
	client: socket.socket,
	loop: asyncio.AbstractEventLoop,
	options: ServerOptions,
) -> None:
	"""Serves the requests sent on the client connection, which may be
	pipelined, until the client or a response closes it."""
	buffer = bytearray(options.readsize)
	parser = HTTPParser()
	reader = SocketBodyReader(client, loop)
	writer = SocketBodyWriter(client, loop)
	requests: int = 0
	responses: int = 0
	try:
		try:
			peer: str | None = client.getpeername()[0]
		except (OSError, IndexError, TypeError):
			peer = None
		isOpen: bool = True
		while isOpen:
			try:
				n = await asyncio.wait_for(
					loop.sock_recv_into(client, buffer), timeout=options.keepalive
				)
			except asyncio.TimeoutError:
				if requests != responses:
					warning("Client timed out", Client=peer, Requests=requests)
				break
			if not n:
				if requests and not responses:
					warning("Client sent an incomplete request", Client=peer)
				break
			for atom in parser.feed(bytes(buffer[:n])):
				if not isinstance(atom, HTTPRequest):
					continue
				atom.peer = peer
				atom._reader = reader
				requests += 1
				options.logRequests and event(atom.method, atom.path, Client=peer)
				res = await sendResponse(atom, app, writer)
				responses += 1
				if writer.shouldClose or not keepsAlive(atom, res):
					isOpen = False
					break
		logged(debug) and debug(
			"Connection closed", Client=peer, Requests=requests, Responses=responses
		)
	except Exception as e:
		exception(e)
	finally:
		if not writer.isHijacked:
			client.close()


def listen(options: ServerOptions) -> socket.socket:
	server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
	server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
	server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
	try:
		server.bind((options.host, options.port))
	except OSError as e:
		error(f"Unable to bind to {options.host}:{options.port}", "HOSTPORTERR")
		raise e
	server.listen(options.backlog)
	server.setblocking(False)
	return server


async def serve(app: Application, options: ServerOptions = OPTIONS) -> None:
	"""Accepts connections and serves each of them in its own task, until
	stopped by a signal or the `condition` option."""
	server = listen(options)
	loop = asyncio.get_running_loop()
	stopped = asyncio.Event()
	if options.stopSignals and threading.current_thread() is threading.main_thread():
		for sig in (SIGINT, SIGTERM):
			loop.add_signal_handler(sig, stopped.set)
	tasks: set[asyncio.Task[None]] = set()
	await app.start()
	info("HTTP mirror listening", Host=options.host, Port=options.port)
	try:
		while not stopped.is_set():
			if options.condition and not options.condition():
				break
			try:
				client, _ = await asyncio.wait_for(
					loop.sock_accept(server), timeout=options.polling or 1.0
				)
			except asyncio.TimeoutError:
				continue
			except OSError as e:
				# EMFILE, connections need to close before we accept more
				if e.errno == 24:
					await asyncio.sleep(0.1)
				else:
					exception(e)
				continue
			task = loop.create_task(serveClient(app, client, loop, options))
			tasks.add(task)
			task.add_done_callback(tasks.discard)
	finally:
		info("Server stopping", Connections=len(tasks))
		server.close()
		for task in tasks:
			task.cancel()
		await asyncio.gather(*tasks, return_exceptions=True)
		await app.stop()


def run(
	*components: Application | Service,
	host: str = HOST,
	port: int = PORT,
	condition: Callable[[], bool] | None = None,
	logRequests: bool = LOG_REQUESTS,
	keepalive: float = OPTIONS.keepalive,
) -> None:
	"""Mounts the components and serves them until interrupted."""
	raiseFilesLimit()
	options = OPTIONS._replace(
		host=host,
		port=port,
		condition=condition,
		logRequests=logRequests,
		keepalive=keepalive,
	)
	try:
		asyncio.run(serve(mount(*components), options))
	except KeyboardInterrupt:
		event("Interrupted")


# EOF
