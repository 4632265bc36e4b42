import asyncio
import socket
import threading
from dataclasses import dataclass
from signal import SIGINT, SIGTERM
from typing import Any, Callable, Literal, NamedTuple, TypeAlias

from .app import THandler, TryFiles, TryFilesOptions
from .config import HOST, PORT, LOG_REQUESTS
from .http.model import (
	HTTPBodyBlob,
	HTTPBodyReader,
	HTTPBodyWriter,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPResponse,
)
from .http.parser import HTTPParser
from .http.status import NO_BODY_STATUS
from .utils.limits import LimitType, unlimit
from .utils.logging import debug, event, exception, info, logged, warning, error


@dataclass(slots=True)
class ServerState:
	isRunning: bool = True
	# The port the server is bound to, once it is listening
	port: int | None = None

	def stop(self) -> None:
		info("Server stopping…")
		self.isRunning = False

	def onException(
		self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
	) -> None:
		e = context.get("exception")
		if e:
			exception(e)


class ServerOptions(NamedTuple):
	host: str = "0.0.0.0"  # nosec: B104
	port: int = 8080
	backlog: int = 10_000
	# Timeout when reading the rest of a request body
	timeout: float = 10.0
	# This is the polling timeout for accepting new requests. Every second is
	# good
	polling: float = 1.0
	readsize: int = 64_000
	# How long an idle connection is kept open
	keepalive: float = 3_600
	logRequests: bool = True
	condition: Callable[[], bool] | None = None
	stopSignals: bool = True
	# The most connections served at once, further ones wait in the backlog
	maxConnections: int = 10_000
	# How long in-flight connections have to complete on shutdown, before
	# they are cancelled.
	drain: float = 5.0


OPTIONS: ServerOptions = ServerOptions()


class AIOSocketBodyReader(HTTPBodyReader):
	"""Specialized body reader to work with AIO sockets."""

	__slots__ = ["socket", "loop", "size"]

	def __init__(
		self,
		socket: "socket.socket",
		loop: asyncio.AbstractEventLoop,
		size: int = 64_000,
	) -> None:
		super().__init__()
		self.socket = socket
		self.loop = loop
		self.size: int = size

	async def _read(
		self, timeout: float = 1.0, size: int | None = None
	) -> bytes | None:
		logged(debug) and debug(
			"Reading Body",
			Client=f"{id(self.socket):x}",
			Size=size or self.size,
			Timeout=timeout,
		)
		return await asyncio.wait_for(
			self.loop.sock_recv(self.socket, min(size or self.size, self.size)),
			timeout=timeout,
		)


class AIOSocketBodyWriter(HTTPBodyWriter):
	"""Specialized body writer to work with AIO sockets."""

	def __init__(
		self,
		client: "socket.socket",
		loop: asyncio.AbstractEventLoop,
	) -> None:
		super().__init__()
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop

	async def _writeBytes(
		self, chunk: bytes | None | Literal[False], more: bool = False
	) -> bool:
		if chunk:
			await self.loop.sock_sendall(self.client, chunk)
		return True


# Queued responses, in the order the requests were received
TResponseQueue: TypeAlias = (
	"asyncio.Queue[tuple[HTTPRequest, asyncio.Task[HTTPResponse]] | None]"
)


class AIOSocketServer:
	"""AsyncIO backend using sockets directly."""

	@classmethod
	async def OnRequest(
		cls,
		app: TryFiles,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
		options: ServerOptions,
	) -> None:
		"""Asynchronous worker, processing the requests of a client socket.
		Each request is processed in its own task, so that a slow request
		does not hold the ones after it. Responses are still written back
		in the order of the requests, as HTTP/1.1 requires."""
		parser: HTTPParser = HTTPParser()
		reader: AIOSocketBodyReader = AIOSocketBodyReader(
			client, loop, options.readsize
		)
		writer: AIOSocketBodyWriter = AIOSocketBodyWriter(client, loop)
		responses: TResponseQueue = asyncio.Queue()
		sender = loop.create_task(cls.SendResponses(responses, writer))
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		keep_alive: bool = True
		read_count: int = 0
		req_count: int = 0
		try:
			while keep_alive and not writer.shouldClose:
				try:
					data = await asyncio.wait_for(
						loop.sock_recv(client, options.readsize),
						timeout=options.keepalive,
					)
				except asyncio.TimeoutError:
					status = HTTPProcessingStatus.Timeout
					break
				if not data:
					# A no-data means a close
					status = HTTPProcessingStatus.NoData
					break
				read_count += len(data)
				# NOTE: With HTTP Pipelining, we may receive more than one
				# request in the same payload.
				for atom in parser.feed(data):
					if atom is HTTPProcessingStatus.BadFormat:
						warning("Malformed request", Client=f"{id(client):x}")
						keep_alive = False
						break
					elif not isinstance(atom, HTTPRequest):
						continue
					req: HTTPRequest = atom
					if req.hasRemaining:
						# The body is read before dispatching the request, so
						# that the connection has a single reader.
						await cls.LoadBody(req, reader, options)
					if options.logRequests:
						event(req.method, req.path)
					req_count += 1
					if (
						req.protocol == "HTTP/1.0"
						or (req.header("Connection") or "").lower() == "close"
					):
						keep_alive = False
					responses.put_nowait((req, loop.create_task(cls.Process(app, req))))
					if not keep_alive:
						break
			if status is HTTPProcessingStatus.NoData and req_count == 0 and read_count:
				warning(
					"Client did not feed a complete request",
					ReadCount=read_count,
					Status=status.name,
				)
		except asyncio.TimeoutError:
			warning("Request body timed out", Requests=req_count)
		except asyncio.CancelledError:
			sender.cancel()
			raise
		except Exception as e:
			exception(e)
		finally:
			responses.put_nowait(None)
			try:
				sent = await sender
				if sent != req_count:
					warning("Incomplete responses", Requests=req_count, Responses=sent)
			except asyncio.CancelledError:
				pass
			finally:
				# NOTE: The above loop takes care of keep alive, so we always close
				# the connection on exit.
				client.close()

	@staticmethod
	async def LoadBody(
		request: HTTPRequest, reader: HTTPBodyReader, options: ServerOptions
	) -> HTTPRequest:
		"""Reads the rest of the request body from the socket."""
		body: HTTPBodyBlob = request.body
		remaining: int = body.remaining or 0
		rest = await reader.load(timeout=options.timeout, size=remaining)
		request._body = HTTPBodyBlob.FromBytes(body.payload + rest)
		if len(rest) < remaining:
			warning(
				"Request body is incomplete",
				Path=request.path,
				Expected=remaining,
				Read=len(rest),
			)
		return request

	@staticmethod
	async def Process(app: TryFiles, request: HTTPRequest) -> HTTPResponse:
		"""Processes the request within the application, errors being
		turned into a response for that request only."""
		try:
			return await app.process(request)
		except Exception as e:
			return app.error(request, e)

	@classmethod
	async def SendResponses(
		cls, responses: TResponseQueue, writer: HTTPBodyWriter
	) -> int:
		"""Writes the responses in order as they complete, until the queue
		yields `None`. Returns how many were sent."""
		sent: int = 0
		try:
			while (item := await responses.get()) is not None:
				req, task = item
				res: HTTPResponse = await task
				if writer.shouldClose:
					continue
				elif await cls.SendResponse(req, res, writer):
					sent += 1
				else:
					writer.shouldClose = True
		except asyncio.CancelledError:
			while not responses.empty():
				if (item := responses.get_nowait()) is not None:
					item[1].cancel()
			raise
		return sent

	@staticmethod
	async def SendResponse(
		request: HTTPRequest,
		response: HTTPResponse,
		writer: HTTPBodyWriter,
	) -> bool:
		"""Sends the response using the given writer. HEAD responses and
		statuses without content are sent without a body."""
		sent: bool = False
		try:
			await writer.write(response.head())
			if request.method != "HEAD" and response.status not in NO_BODY_STATUS:
				await writer.write(response.body)
			sent = True
		except (BrokenPipeError, ConnectionResetError):
			# Client did an early close
			logged(debug) and debug("Client closed early", Path=request.path)
		except Exception as e:
			exception(e)
		return sent

	@classmethod
	async def Serve(
		cls,
		app: TryFiles,
		options: ServerOptions = ServerOptions(),
		state: ServerState | None = None,
	) -> None:
		"""Main server coroutine."""
		server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
		server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
		server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		try:
			server.bind((options.host, options.port))
		except OSError:
			error(
				f"Unable to bind to {options.host}:{options.port}, aborting.",
				"HOSTPORTERR",
			)
			server.close()
			raise

		# The argument is the backlog of connections that will be accepted before
		# they are refused.
		server.listen(options.backlog)
		# This is what we need to use it with asyncio
		server.setblocking(False)

		tasks: set[asyncio.Task[None]] = set()
		loop = asyncio.get_running_loop()

		# Manage server state
		state = state or ServerState()
		state.port = server.getsockname()[1]
		# Registers handlers for signals and exception (so that we log them). Note
		# that we'll get a `set_wakeup_fd only works in main thread of the main interpreter`
		# when this is not run out of the main thread.
		if (
			options.stopSignals
			and threading.current_thread() is threading.main_thread()
		):
			loop.add_signal_handler(SIGINT, state.stop)
			loop.add_signal_handler(SIGTERM, state.stop)
		loop.set_exception_handler(state.onException)

		# Bounds the connections served at once
		slots = asyncio.Semaphore(max(1, options.maxConnections))

		def release(task: "asyncio.Task[None]") -> None:
			tasks.discard(task)
			slots.release()

		await app.start()
		info(
			"TryFiles AIO Server listening",
			icon="🚀",
			Host=options.host,
			Port=state.port,
		)

		try:
			while state.isRunning:
				if options.condition and not options.condition():
					break
				# Waiting for a slot polls too, so that a stop is noticed when
				# all connections are busy.
				try:
					await asyncio.wait_for(
						slots.acquire(), timeout=options.polling or 1.0
					)
				except asyncio.TimeoutError:
					continue
				try:
					client, _ = await asyncio.wait_for(
						loop.sock_accept(server), timeout=options.polling or 1.0
					)
				except asyncio.TimeoutError:
					slots.release()
					continue
				except OSError as e:
					slots.release()
					# This can be: [OSError] [Errno 24] Too many open files
					if e.errno == 24:
						await asyncio.sleep(0.1)  # Short delay before retrying
					else:
						exception(e)
					continue
				task = loop.create_task(
					cls.OnRequest(app, client, loop=loop, options=options)
				)
				tasks.add(task)
				task.add_done_callback(release)
		finally:
			if options.stopSignals and threading.current_thread() is threading.main_thread():
				loop.remove_signal_handler(SIGINT)
				loop.remove_signal_handler(SIGTERM)
			try:
				await app.stop()
			except Exception as e:
				exception(e, "Error from beforeClose()")
			server.close()
			info("Server closed", Connections=len(tasks))
			if tasks:
				_, pending = await asyncio.wait(tasks, timeout=options.drain)
				for task in pending:
					task.cancel()
				await asyncio.gather(*pending, return_exceptions=True)


def run(
	app: TryFiles | THandler | None = None,
	*,
	host: str = HOST,
	port: int = PORT,
	backlog: int = OPTIONS.backlog,
	condition: Callable[[], bool] | None = None,
	timeout: float = OPTIONS.timeout,
	polling: float = OPTIONS.polling,
	logRequests: bool = LOG_REQUESTS,
	keepalive: float = OPTIONS.keepalive,
	maxConnections: int = OPTIONS.maxConnections,
	drain: float = OPTIONS.drain,
	**tryFilesOptions: Any,
) -> None:
	"""High level function to run the server. The application is either a
	`TryFiles` instance, or a fallback handler for which one is created with
	the remaining options (see `TryFilesOptions`)."""
	unlimit(LimitType.Files)
	options = ServerOptions(
		host=host,
		port=port,
		backlog=backlog,
		condition=condition,
		timeout=timeout,
		polling=polling,
		logRequests=logRequests,
		keepalive=keepalive,
		maxConnections=maxConnections,
		drain=drain,
	)
	application: TryFiles = (
		app
		if isinstance(app, TryFiles)
		else (
			TryFiles(app, TryFilesOptions(**tryFilesOptions))
			if app
			else TryFiles(options=TryFilesOptions(**tryFilesOptions))
		)
	)
	try:
		asyncio.run(AIOSocketServer.Serve(application, options))
	except KeyboardInterrupt:
		event("ManualShutdown")
	event("EOK")


# EOF
