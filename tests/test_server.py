import asyncio
import socket
from typing import Any, Awaitable, Callable

import pytest

from tryfiles.app import TryFiles, tryFiles
from tryfiles.http.model import HTTPRequest, HTTPResponse
from tryfiles.server import AIOSocketServer, ServerOptions, ServerState


async def fallback(request: HTTPRequest) -> HTTPResponse:
	if request.path == "/slow":
		await asyncio.sleep(0.3)
		return request.respondText("slow")
	elif request.path == "/boom":
		raise RuntimeError("boom")
	elif request.path == "/echo":
		return request.respondText(request.body.payload)
	else:
		return request.respondText(f"app:{request.path}")


def get(path: str, close: bool = True, method: str = "GET") -> bytes:
	connection: str = "Connection: close\r\n" if close else ""
	return f"{method} {path} HTTP/1.1\r\nHost: localhost\r\n{connection}\r\n".encode(
		"latin-1"
	)


async def fetch(port: int, *chunks: bytes, delay: float = 0.0) -> bytes:
	"""Sends the chunks and reads the responses until the server closes
	the connection."""
	reader, writer = await asyncio.open_connection("127.0.0.1", port)
	try:
		for i, chunk in enumerate(chunks):
			if i and delay:
				await asyncio.sleep(delay)
			writer.write(chunk)
			await writer.drain()
		return await asyncio.wait_for(reader.read(), timeout=5)
	finally:
		writer.close()


def serve(
	app: TryFiles,
	scenario: Callable[[ServerState], Awaitable[None]],
	**overrides: Any,
) -> None:
	"""Runs the server on an available port for the duration of the
	scenario."""

	async def main() -> None:
		state = ServerState()
		options = ServerOptions(
			host="127.0.0.1",
			port=0,
			polling=0.05,
			stopSignals=False,
			logRequests=False,
			drain=2.0,
		)._replace(**overrides)
		server = asyncio.create_task(AIOSocketServer.Serve(app, options, state))
		while state.port is None:
			await asyncio.sleep(0.01)
		try:
			await scenario(state)
		finally:
			state.stop()
			await asyncio.wait_for(server, timeout=5)

	asyncio.run(main())


def body(response: bytes) -> bytes:
	return response.split(b"\r\n\r\n", 1)[1]


def test_static_and_fallback(public):
	async def scenario(state: ServerState) -> None:
		assert state.port
		res = await fetch(state.port, get("/"))
		assert res.startswith(b"HTTP/1.1 200 OK\r\n")
		assert b"Content-Type: text/html\r\n" in res
		assert body(res) == b"index page"
		res = await fetch(state.port, get("/missing"))
		assert body(res) == b"app:/missing"

	serve(tryFiles(fallback, filesDir=public), scenario)


def test_head_has_no_body(public):
	async def scenario(state: ServerState) -> None:
		res = await fetch(state.port, get("/data.bin", method="HEAD"))
		assert res.startswith(b"HTTP/1.1 204 No Content\r\n")
		assert b"Content-Length: 100\r\n" in res
		assert body(res) == b""

	serve(tryFiles(fallback, filesDir=public), scenario)


def test_pipelined_responses_in_order(public):
	async def scenario(state: ServerState) -> None:
		res = await fetch(state.port, get("/slow", False) + get("/fast"))
		assert res.count(b"HTTP/1.1 200 OK") == 2
		assert 0 < res.index(b"slow") < res.index(b"app:/fast")

	serve(tryFiles(fallback, filesDir=public), scenario)


def test_error_is_isolated(public):
	async def scenario(state: ServerState) -> None:
		res = await fetch(state.port, get("/boom", False) + get("/after"))
		assert res.startswith(b"HTTP/1.1 500 Internal Server Error\r\n")
		assert b"Server Error" in res
		assert res.endswith(b"app:/after")
		# The server keeps serving other connections
		assert body(await fetch(state.port, get("/a.txt"))) == b""

	serve(tryFiles(fallback, filesDir=public), scenario)


def test_concurrent_connections(public):
	async def scenario(state: ServerState) -> None:
		responses = await asyncio.gather(
			*(fetch(state.port, get("/slow")) for _ in range(5)),
			fetch(state.port, get("/")),
		)
		assert [body(_) for _ in responses] == [b"slow"] * 5 + [b"index page"]

	serve(tryFiles(fallback, filesDir=public), scenario)


def test_request_body_in_parts(public):
	async def scenario(state: ServerState) -> None:
		head = (
			b"POST /echo HTTP/1.1\r\nHost: localhost\r\n"
			b"Content-Length: 10\r\nConnection: close\r\n\r\nhello"
		)
		res = await fetch(state.port, head, b"world", delay=0.05)
		assert body(res) == b"helloworld"

	serve(tryFiles(fallback, filesDir=public), scenario)


def test_http10_closes(public):
	async def scenario(state: ServerState) -> None:
		res = await fetch(state.port, b"GET / HTTP/1.0\r\n\r\n")
		assert res.startswith(b"HTTP/1.0 200 OK\r\n")
		assert body(res) == b"index page"

	serve(tryFiles(fallback, filesDir=public), scenario)


def test_graceful_shutdown(public):
	calls: list[str] = []
	port: list[int] = []

	async def beforeClose() -> None:
		calls.append("close")

	async def scenario(state: ServerState) -> None:
		assert state.port
		port.append(state.port)
		inflight = asyncio.create_task(fetch(state.port, get("/slow")))
		await asyncio.sleep(0.1)
		state.stop()
		# In-flight requests complete
		assert body(await inflight) == b"slow"

	serve(tryFiles(fallback, filesDir=public, beforeClose=beforeClose), scenario)
	assert calls == ["close"]

	async def connect() -> None:
		await asyncio.open_connection("127.0.0.1", port[0])

	with pytest.raises(OSError):
		asyncio.run(connect())


def test_stop_with_all_slots_busy(public):
	async def scenario(state: ServerState) -> None:
		# An idle connection holds the only slot
		reader, writer = await asyncio.open_connection("127.0.0.1", state.port)
		await asyncio.sleep(0.2)
		try:
			state.stop()
			# The server notices the stop and closes the idle connection
			# once the drain delay is over.
			assert await asyncio.wait_for(reader.read(), timeout=3) == b""
		finally:
			writer.close()

	serve(tryFiles(fallback, filesDir=public), scenario, maxConnections=1, drain=0.2)


def test_port_taken_raises(public):
	taken = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
	try:
		taken.bind(("127.0.0.1", 0))
		taken.listen(1)
		options = ServerOptions(
			host="127.0.0.1",
			port=taken.getsockname()[1],
			stopSignals=False,
			logRequests=False,
		)
		with pytest.raises(OSError):
			asyncio.run(AIOSocketServer.Serve(tryFiles(filesDir=public), options))
	finally:
		taken.close()


# EOF
