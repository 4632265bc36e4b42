from abc import ABC, abstractmethod
from enum import Enum
from functools import lru_cache
from typing import (
	Any,
	Literal,
	NamedTuple,
	TypeAlias,
	Union,
)

from ..utils.io import DEFAULT_ENCODING
from .api import ResponseFactory
from .status import HTTP_STATUS, NO_BODY_STATUS

# -----------------------------------------------------------------------------
#
# HELPERS
#
# -----------------------------------------------------------------------------

# Header names come from clients, so only the most recent ones are memoized.
HEADERNAME_CACHE: int = 512


@lru_cache(maxsize=HEADERNAME_CACHE)
def headername(name: str) -> str:
	"""Normalizes the header name as `Kebab-Case`."""
	return "-".join(_.capitalize() for _ in name.split("-"))


# -----------------------------------------------------------------------------
#
# DATA MODEL
#
# -----------------------------------------------------------------------------


class HTTPRequestLine(NamedTuple):
	"""Represents a request status line"""

	method: str
	path: str
	query: str
	protocol: str


class HTTPHeaders(NamedTuple):
	"""Wraps HTTP headers, keeping key information for response/request processing.
	Header names are normalized with `headername`, and the dictionary
	preserves insertion order."""

	headers: dict[str, str]
	contentType: str | None = None
	contentLength: int | None = None


class HTTPProcessingStatus(Enum):
	"""Internal parser/processor state management"""

	Processing = 0
	Body = 1
	Complete = 2
	Timeout = 10
	NoData = 11
	BadFormat = 12


# Type alias for the parser would produce
HTTPAtom: TypeAlias = Union[
	HTTPRequestLine,
	HTTPHeaders,
	HTTPProcessingStatus,
	"HTTPBodyBlob",
	"HTTPRequest",
]

# -----------------------------------------------------------------------------
#
# ERRORS
#
# -----------------------------------------------------------------------------


class HTTPRequestError(Exception):
	"""To be raised by handlers to generate an error response, 500 unless
	a status is given."""

	def __init__(
		self,
		message: str,
		status: int | None = None,
		contentType: str | None = None,
	):
		super().__init__(message)
		self.message: str = message
		self.status: int | None = status
		self.contentType: str | None = contentType


# -----------------------------------------------------------------------------
#
# BODY
#
# -----------------------------------------------------------------------------


BODY_READER_TIMEOUT: float = 1.0


class HTTPBodyBlob(NamedTuple):
	"""Represents a part (or a whole) body as bytes."""

	payload: bytes = b""
	length: int = 0
	# NOTE: We don't know how many is remaining
	remaining: int | None = None

	@staticmethod
	def FromBytes(data: bytes) -> "HTTPBodyBlob":
		return HTTPBodyBlob(payload=data, length=len(data))


class HTTPBodyReader(ABC):
	"""A base class for being able to read a request body, typically from a
	socket."""

	async def read(
		self, timeout: float = BODY_READER_TIMEOUT, size: int | None = None
	) -> bytes | None:
		return await self._read(timeout=timeout, size=size)

	@abstractmethod
	async def _read(
		self, timeout: float = BODY_READER_TIMEOUT, size: int | None = None
	) -> bytes | None: ...

	async def load(
		self, timeout: float = BODY_READER_TIMEOUT, size: int | None = None
	) -> bytes:
		"""Loads the body into a bytes array, up to `size` bytes when given."""
		data = bytearray()
		left = size
		while left is None or left > 0:
			chunk = await self.read(timeout=timeout, size=left)
			if not chunk:
				break
			data += chunk
			if left is not None:
				left -= len(chunk)
		return bytes(data)


class HTTPBodyWriter(ABC):
	"""A generic writer for response heads and bodies."""

	__slots__ = ["shouldClose"]

	def __init__(self) -> None:
		self.shouldClose: bool = False

	async def write(self, body: HTTPBodyBlob | bytes | None) -> bool:
		if isinstance(body, bytes):
			return await self._writeBytes(body)
		elif isinstance(body, HTTPBodyBlob):
			return await self._writeBytes(body.payload)
		elif body is None:
			return True
		else:
			raise ValueError(f"Unsupported body format: {body}")

	@abstractmethod
	async def _writeBytes(
		self, chunk: bytes | None | Literal[False], more: bool = False
	) -> bool: ...


# -----------------------------------------------------------------------------
#
# REQUESTS
#
# -----------------------------------------------------------------------------


class HTTPRequest(ResponseFactory["HTTPResponse"]):
	"""Represents an HTTP requests, which also acts as a factory for
	responses."""

	__slots__ = [
		"protocol",
		"method",
		"path",
		"query",
		"queryString",
		"_headers",
		"_body",
	]

	def __init__(
		self,
		method: str,
		path: str,
		query: dict[str, str] | None,
		headers: HTTPHeaders,
		body: HTTPBodyBlob | None = None,
		protocol: str = "HTTP/1.1",
		queryString: str = "",
	):
		super().__init__()
		self.method: str = method
		# The raw (percent-encoded) path, without the query string
		self.path: str = path
		self.query: dict[str, str] | None = query
		self.queryString: str = queryString
		self.protocol: str = protocol
		self._headers: HTTPHeaders = headers
		self._body: HTTPBodyBlob | None = body

	@property
	def headers(self) -> dict[str, str]:
		return self._headers.headers

	def header(self, name: str) -> str | None:
		return self._headers.headers.get(headername(name))

	def param(self, name: str, default: str | None = None) -> str | None:
		return self.query.get(name, default) if self.query else default

	@property
	def contentType(self) -> str | None:
		return self._headers.contentType

	@property
	def contentLength(self) -> int | None:
		return self._headers.contentLength

	@property
	def body(self) -> HTTPBodyBlob:
		return HTTPBodyBlob() if self._body is None else self._body

	@property
	def hasRemaining(self) -> bool:
		"""Tells if the body has not been completely received yet."""
		return bool(self._body and self._body.remaining)

	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> "HTTPResponse":
		return HTTPResponse.Create(
			status=status,
			message=message,
			content=content,
			contentType=contentType,
			contentLength=contentLength,
			protocol=self.protocol,
			headers=headers,
		)

	def __str__(self) -> str:
		return f"Request({self.method} {self.path}{f'?{self.queryString}' if self.queryString else ''} {self.headers})"


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class HTTPResponse:
	"""An HTTP response, with its body held in memory."""

	@staticmethod
	def Create(
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		headers: dict[str, str] | None = None,
		status: int = 200,
		message: str | None = None,
		protocol: str = "HTTP/1.1",
	) -> "HTTPResponse":
		"""Factory method to create HTTP response objects. The given headers
		keep their order, and `Content-Type`/`Content-Length` are only
		added when missing or different."""
		base_headers: dict[str, str] = (
			{headername(k): v for k, v in headers.items()} if headers else {}
		)
		updated_headers: dict[str, str] = {}

		body: HTTPBodyBlob | None = None
		if content is None:
			pass
		elif isinstance(content, str):
			body = HTTPBodyBlob.FromBytes(content.encode(DEFAULT_ENCODING))
		elif isinstance(content, (bytes, bytearray, memoryview)):
			body = HTTPBodyBlob.FromBytes(bytes(content))
		else:
			raise ValueError(f"Unsupported content {type(content)}:{content}")
		if body is not None:
			contentLength = body.length
		# Content Type
		content_type: str | None = base_headers.get("Content-Type")
		if contentType is not None and contentType != content_type:
			updated_headers["Content-Type"] = contentType
			content_type = contentType
		# Content Length
		content_length_str: str | None = base_headers.get("Content-Length")
		if (
			contentLength is not None
			and (t := str(contentLength)) != content_length_str
		):
			updated_headers["Content-Length"] = t
		elif contentLength is None and content_length_str is not None:
			contentLength = int(content_length_str)

		return HTTPResponse(
			status=status,
			message=message or HTTP_STATUS.get(status, "Unknown status"),
			headers=HTTPHeaders(
				base_headers | updated_headers,
				contentType=content_type,
				contentLength=contentLength,
			),
			body=body,
			protocol=protocol,
		)

	__slots__ = [
		"protocol",
		"status",
		"message",
		"headers",
		"body",
	]

	def __init__(
		self,
		protocol: str,
		status: int,
		message: str | None,
		headers: HTTPHeaders,
		body: HTTPBodyBlob | None = None,
	):
		super().__init__()
		self.protocol: str = protocol
		self.status: int = status
		self.message: str | None = message
		self.headers: HTTPHeaders = headers
		self.body: HTTPBodyBlob | None = body

	def getHeader(self, name: str) -> str | None:
		return self.headers.headers.get(headername(name))

	@property
	def payload(self) -> bytes | None:
		return self.body.payload if self.body else None

	def head(self) -> bytes:
		"""Serializes the head as a payload."""
		status: int = self.status
		message: str = self.message or HTTP_STATUS.get(status, "Unknown status")
		headers: dict[str, str] = self.headers.headers
		lines: list[str] = [f"{headername(k)}: {v}" for k, v in headers.items()]
		# A keep-alive client needs to know where an empty body ends
		if (
			self.body is None
			and status not in NO_BODY_STATUS
			and "Content-Length" not in headers
		):
			lines.append("Content-Length: 0")
		lines.insert(0, f"{self.protocol} {status} {message}")
		lines.append("")
		lines.append("")
		return "\r\n".join(lines).encode("latin-1")

	def __str__(self) -> str:
		return f"Response({self.protocol} {self.status} {self.message} {self.headers} {self.body})"


# EOF
