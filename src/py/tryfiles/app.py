from pathlib import Path
from typing import Any, Awaitable, Callable, NamedTuple, TypeAlias

from .features.cors import CORSPolicy, TCORSMatch
from .http.model import HTTPRequest, HTTPRequestError, HTTPResponse
from .services.files import DEFAULT_RANGE_CHUNK, StaticResolver
from .utils import awaited
from .utils.cache import MemoryCache
from .utils.files import Storage
from .utils.logging import event, exception

# The application handler that answers whatever is not a static file.
THandler: TypeAlias = Callable[[HTTPRequest], HTTPResponse | Awaitable[HTTPResponse]]


async def noop() -> None:
	pass


def notFound(request: HTTPRequest) -> HTTPResponse:
	return request.notFound()


class TryFilesOptions(NamedTuple):
	filesDir: str | Path = "public"
	index: str = "index.html"
	# `None` disables CORS, `*` allows any origin, anything else is a
	# regular expression that origins must match.
	cors: TCORSMatch | CORSPolicy = None
	memoryCache: bool = False
	byteRangeChunk: int = DEFAULT_RANGE_CHUNK
	beforeClose: Callable[[], Awaitable[None] | None] = noop
	# Uses the RFC 7232 `If-Modified-Since` comparison
	strictModifiedSince: bool = False


OPTIONS: TryFilesOptions = TryFilesOptions()


class TryFiles:
	"""Tries to answer each request with a static file, and otherwise hands
	it to the fallback handler. OPTIONS requests are answered directly with
	the CORS headers, and every response gets them."""

	def __init__(
		self,
		fallback: THandler = notFound,
		options: TryFilesOptions = OPTIONS,
		*,
		storage: Storage | None = None,
	) -> None:
		self.fallback: THandler = fallback
		self.options: TryFilesOptions = options
		self.cors: CORSPolicy = CORSPolicy.Make(options.cors)
		# The cache is owned by the application, so that each server has
		# its own.
		self.cache: MemoryCache | None = MemoryCache() if options.memoryCache else None
		self.resolver: StaticResolver = StaticResolver(
			options.filesDir,
			index=options.index,
			cors=self.cors,
			cache=self.cache,
			byteRangeChunk=options.byteRangeChunk,
			storage=storage,
			strictModifiedSince=options.strictModifiedSince,
		)
		self.isClosed: bool = False

	async def start(self) -> "TryFiles":
		event(
			"TryFiles",
			str(self.resolver.root),
			Index=self.options.index,
			CORS=self.cors.__class__.__name__,
			Cache=self.cache is not None,
		)
		return self

	async def stop(self) -> "TryFiles":
		"""Runs the `beforeClose` hook, once."""
		if not self.isClosed:
			self.isClosed = True
			await awaited(self.options.beforeClose())
		return self

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		if request.method == "OPTIONS":
			return request.empty(204, self.cors.apply(request, {}))
		elif request.method in ("GET", "HEAD"):
			response = await self.resolver.resolve(request)
			if response is not None:
				return response
		response = await awaited(self.fallback(request))
		self.cors.apply(request, response.headers.headers)
		return response

	def error(self, request: HTTPRequest, error: Exception) -> HTTPResponse:
		"""Turns an exception raised while processing the request into
		an error response, with CORS headers."""
		if isinstance(error, HTTPRequestError):
			response = request.error(
				error.status or 500,
				error.message,
				contentType=error.contentType or "text/plain",
			)
		else:
			exception(error, f"Error processing {request.method} {request.path}")
			response = request.fail("Server Error")
		self.cors.apply(request, response.headers.headers)
		return response

	def __repr__(self) -> str:
		return f"TryFiles({self.resolver.root}, fallback={getattr(self.fallback, '__name__', self.fallback)})"


def tryFiles(fallback: THandler = notFound, **options: Any) -> TryFiles:
	"""Creates a `TryFiles` application from keyword options."""
	return TryFiles(fallback, TryFilesOptions(**options))


# EOF
