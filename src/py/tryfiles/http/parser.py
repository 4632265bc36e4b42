from typing import Iterator, ClassVar, Literal
from urllib.parse import unquote_plus
from ..utils.io import LineParser
from .model import (
	HTTPRequest,
	HTTPRequestLine,
	HTTPHeaders,
	HTTPBodyBlob,
	HTTPAtom,
	HTTPProcessingStatus,
	headername,
)


class MessageParser:
	"""Parses an HTTP request line, skipping TLS handshakes."""

	__slots__ = ["line", "value", "skipping"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.value: HTTPRequestLine | None = None
		self.skipping: int = 0

	def flush(self) -> "HTTPRequestLine | None":
		res = self.value
		self.reset()
		return res

	def reset(self) -> "MessageParser":
		self.line.reset()
		self.value = None
		self.skipping = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		n = len(chunk)
		available = n - start
		# NOTE: Browsers may try a TLS handshake on a plain HTTP port, which
		# we skip.
		if self.skipping:
			# We have remaining data to read/skip, so we do that
			read = min(available, self.skipping)
			self.skipping -= read
			return None, read
		elif available >= 5 and chunk[start] == 0x16:
			# This is a TLS Handshake, we parse the length
			size = 5 + (chunk[start + 3] << 8) + chunk[start + 4]
			if available >= size:
				return None, size
			else:
				self.skipping = size - available
				return None, available
		else:
			line, read = self.line.feed(chunk, start)
			if line:
				ln = line.decode("latin-1")
				parts: list[str] = ln.split(" ")
				if len(parts) == 3:
					target: list[str] = parts[1].split("?", 1)
					self.value = HTTPRequestLine(
						parts[0], target[0], target[1] if len(target) > 1 else "", parts[2]
					)
				# A malformed line is flushed as `None`
				return True, read
			else:
				# Either an incomplete or an empty line (tolerated between
				# pipelined requests)
				return None, read

	def __str__(self) -> str:
		return f"MessageParser({self.value})"


class HeadersParser:
	__slots__ = ["headers", "contentType", "contentLength", "line"]

	def __init__(self) -> None:
		super().__init__()
		self.line: LineParser = LineParser()
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None

	def flush(self) -> "HTTPHeaders":
		res = HTTPHeaders(self.headers, self.contentType, self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[str | Literal[False] | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns
		a value and the next start offset. When the value is `None`, no
		header has been extracted, when the value is `False` it's an empty
		line, and when the value is a string, the header of that name
		was added."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif line:
			# Headers are expected to be in ASCII format
			ln: str = line.decode("latin-1")
			i = ln.find(":")
			if i != -1:
				h = ln[:i].lower().strip()
				v = ln[i + 1 :].strip()
				if h == "content-length":
					try:
						self.contentLength = int(v)
					except ValueError:
						self.contentLength = None
				elif h == "content-type":
					self.contentType = v
				n: str = headername(h)
				self.headers[n] = v
				return n, read
			else:
				return None, read
		else:
			# An empty line denotes the end of headers
			return False, read

	def __str__(self) -> str:
		return f"HeadersParser({self.headers})"


class BodyRestParser:
	"""Consumes everything that is given to it."""

	__slots__ = ["buffer"]

	def __init__(self) -> None:
		self.buffer: bytearray = bytearray()

	def flush(self) -> HTTPBodyBlob:
		res: HTTPBodyBlob = HTTPBodyBlob(
			bytes(self.buffer),
			len(self.buffer),
		)
		self.reset()
		return res

	def reset(self) -> "BodyRestParser":
		self.buffer.clear()
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		self.buffer += chunk[start:]
		return True, len(chunk) - start


class BodyLengthParser:
	"""Parses the body of a request with ContentLength set"""

	__slots__ = ["expected", "read", "data"]

	def __init__(self) -> None:
		self.expected: int | None = None
		self.read: int = 0
		self.data: list[bytes] = []

	def flush(self) -> HTTPBodyBlob:
		res = HTTPBodyBlob(
			b"".join(self.data),
			self.read,
			0 if self.expected is None else self.expected - self.read,
		)
		self.reset()
		return res

	def reset(self, length: int | None = None) -> "BodyLengthParser":
		self.expected = length
		self.read = 0
		self.data.clear()
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool, int]:
		"""Reads up to the expected length. The flag tells if the body
		ends within this chunk."""
		left: int = len(chunk) - start
		to_read: int = min(
			left, left if self.expected is None else self.expected - self.read
		)
		self.data.append(chunk[start : start + to_read])
		self.read += to_read
		return to_read < left, to_read


class HTTPParser:
	"""A stateful HTTP parser, fed with chunks and producing atoms. A
	request is produced as soon as its head is parsed (or its body
	is complete in the chunk). Bodies that span more than the chunk produce
	a request with a `remaining` count, the rest being for the caller to
	read."""

	METHOD_HAS_BODY: ClassVar[set[str]] = {"POST", "PUT", "PATCH"}

	def __init__(self) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser()
		self.bodyLength: BodyLengthParser = BodyLengthParser()
		self.bodyRest: BodyRestParser = BodyRestParser()
		self.parser: (
			MessageParser | HeadersParser | BodyLengthParser | BodyRestParser
		) = self.message
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None

	def reset(self) -> "HTTPParser":
		self.message.reset()
		self.headers.reset()
		self.parser = self.message
		self.requestLine = None
		self.requestHeaders = None
		return self

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			# The expectation here is that when we feed a chunk and it's
			# partially read, we don't need to re-feed it again. The underlying
			# parser will keep a buffer up until it is flushed.
			ln, read = self.parser.feed(chunk, offset)
			offset += read
			if ln is None:
				continue
			elif self.parser is self.message:
				# We've parsed a request line
				line = self.message.flush()
				self.requestLine = line
				self.requestHeaders = None
				if line is None:
					yield HTTPProcessingStatus.BadFormat
				else:
					yield line
					self.parser = self.headers
			elif self.parser is self.headers:
				if ln is not False:
					# `ln` is the header name there
					continue
				headers = self.headers.flush()
				self.requestHeaders = headers
				yield headers
				line = self.requestLine
				if line is not None and (
					line.method not in self.METHOD_HAS_BODY
					or headers.contentLength == 0
				):
					# That's an early exit, there's no body to parse
					yield self.request(line, headers, HTTPBodyBlob(b"", 0))
					self.parser = self.message.reset()
				elif headers.contentLength is None:
					self.parser = self.bodyRest.reset()
					yield HTTPProcessingStatus.Body
				else:
					self.parser = self.bodyLength.reset(headers.contentLength)
					yield HTTPProcessingStatus.Body
			elif self.requestLine is None or self.requestHeaders is None:
				yield HTTPProcessingStatus.BadFormat
				self.parser = self.message.reset()
			else:
				body: HTTPBodyBlob = (
					self.bodyRest.flush()
					if self.parser is self.bodyRest
					else self.bodyLength.flush()
				)
				yield self.request(self.requestLine, self.requestHeaders, body)
				self.parser = self.message.reset()

	@staticmethod
	def request(
		line: HTTPRequestLine, headers: HTTPHeaders, body: HTTPBodyBlob
	) -> HTTPRequest:
		return HTTPRequest(
			method=line.method,
			path=line.path,
			query=parseQuery(line.query),
			queryString=line.query,
			headers=headers,
			protocol=line.protocol,
			body=body,
		)


def parseQuery(text: str) -> dict[str, str]:
	res: dict[str, str] = {}
	for item in text.split("&"):
		if not item:
			continue
		kv = item.split("=", 1)
		if len(kv) == 1:
			res[unquote_plus(item)] = ""
		else:
			res[unquote_plus(kv[0])] = unquote_plus(kv[1])
	return res


# EOF
