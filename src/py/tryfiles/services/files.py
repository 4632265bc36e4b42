import os
import re
from datetime import timezone
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import NamedTuple, Pattern
from urllib.parse import unquote

from ..features.cors import CORSPolicy, NoCORS
from ..http.model import HTTPRequest, HTTPResponse
from ..utils.cache import MemoryCache
from ..utils.etag import matches, tag
from ..utils.files import FileInfo, LocalStorage, Storage, contentType, extension
from ..utils.logging import debug, logged, warning

# Static assets with an extension are assumed to be immutable for a given
# deployment, index documents always have to be revalidated.
CACHE_IMMUTABLE: str = "public, max-age=31536000"
CACHE_REVALIDATE: str = "no-cache"

DEFAULT_RANGE_CHUNK: int = 256 * 1024

RE_RANGE: Pattern[str] = re.compile(r"bytes=(\d+)-(\d+)?")

# -----------------------------------------------------------------------------
#
# DATA MODEL
#
# -----------------------------------------------------------------------------


class ResolvedAsset(NamedTuple):
	"""The file that answers a request path, `isIndex` being set when
	it is the index document of a directory."""

	path: Path
	info: FileInfo
	isIndex: bool = False


class RangeSpec(NamedTuple):
	"""A window of bytes in an asset, both ends included."""

	start: int
	end: int
	isPartial: bool = False

	@property
	def length(self) -> int:
		return self.end - self.start + 1

	@staticmethod
	def Full(size: int) -> "RangeSpec":
		return RangeSpec(0, size - 1, False)

	@staticmethod
	def Parse(header: str | None, size: int, chunk: int) -> "RangeSpec":
		"""Parses a `Range: bytes=START-END?` header. Unparsed starts default
		to 0, open ends are capped so that at most `chunk` bytes are
		returned, and ends past the file are clamped. A start past the end
		of the file ignores the range altogether."""
		match = RE_RANGE.search(header) if header else None
		start: int = int(match.group(1)) if match else 0
		end: int = (
			int(match.group(2))
			if match and match.group(2) is not None
			else (start + chunk - 1 if chunk > 0 else size - 1)
		)
		end = min(end, size - 1)
		if start >= size or start > end:
			return RangeSpec.Full(size)
		return RangeSpec(start, end, start > 0 or (end - start + 1) < size)


class Found(NamedTuple):
	asset: ResolvedAsset


class Missing(NamedTuple):
	path: Path | None


class Failed(NamedTuple):
	path: Path
	error: Exception


TLookup = Found | Missing | Failed

# -----------------------------------------------------------------------------
#
# RESOLVER
#
# -----------------------------------------------------------------------------


def normalizePath(path: str) -> str:
	"""Strips one trailing slash, unless the path is the root."""
	return path[:-1] if len(path) > 1 and path.endswith("/") else path


class StaticResolver:
	"""Answers GET and HEAD requests from a directory of static files,
	with conditional requests, byte ranges and an optional memory cache.
	`resolve` returns `None` when there is no file to serve, so that the
	request can fall through to the application."""

	def __init__(
		self,
		root: str | Path = "public",
		*,
		index: str = "index.html",
		cors: CORSPolicy | None = None,
		cache: MemoryCache | None = None,
		byteRangeChunk: int = DEFAULT_RANGE_CHUNK,
		storage: Storage | None = None,
		strictModifiedSince: bool = False,
	):
		self.root: Path = Path(os.path.abspath(root))
		self.index: str = index
		self.cors: CORSPolicy = cors or NoCORS()
		self.cache: MemoryCache | None = cache
		self.byteRangeChunk: int = byteRangeChunk
		self.storage: Storage = storage or LocalStorage()
		self.strictModifiedSince: bool = strictModifiedSince

	# =========================================================================
	# LOOKUP
	# =========================================================================

	def localPath(self, path: str) -> Path | None:
		"""Maps the (percent-encoded) URL path to a path within the root,
		returning `None` if it would escape it."""
		root = str(self.root)
		local = os.path.normpath(os.path.join(root, unquote(path).lstrip("/")))
		if local == root or local.startswith(root.rstrip(os.sep) + os.sep):
			return Path(local)
		else:
			return None

	async def stat(self, path: Path) -> FileInfo | Missing | Failed:
		try:
			return await self.storage.stat(path)
		except (FileNotFoundError, NotADirectoryError):
			return Missing(path)
		except (OSError, ValueError) as e:
			return Failed(path, e)

	async def lookup(self, path: str) -> TLookup:
		"""Looks for the file that answers the given URL path, which is
		either the file itself or the index of a directory."""
		local = self.localPath(path)
		if local is None:
			return Missing(None)
		info = await self.stat(local)
		if not isinstance(info, FileInfo):
			return info
		elif info.isFile:
			return Found(ResolvedAsset(local, info))
		elif info.isDirectory:
			index_path = local / self.index
			index_info = await self.stat(index_path)
			if not isinstance(index_info, FileInfo):
				return index_info
			elif index_info.isFile:
				return Found(ResolvedAsset(index_path, index_info, True))
			else:
				return Missing(index_path)
		else:
			return Missing(local)

	# =========================================================================
	# RESPONSE
	# =========================================================================

	async def resolve(self, request: HTTPRequest) -> HTTPResponse | None:
		if request.method not in ("GET", "HEAD"):
			return None
		path: str = normalizePath(request.path)
		match await self.lookup(path):
			case Found(asset=asset):
				try:
					return await self.respond(request, path, asset)
				except OSError as e:
					warning(
						"Could not read static file",
						Path=str(asset.path),
						Error=f"{e.__class__.__name__}: {e}",
					)
					return None
			case Failed(path=local, error=e):
				warning(
					"Could not stat static file",
					Path=str(local),
					Error=f"{e.__class__.__name__}: {e}",
				)
				return None
			case _:
				return None

	async def respond(
		self, request: HTTPRequest, path: str, asset: ResolvedAsset
	) -> HTTPResponse:
		"""Builds the response serving the given asset. Headers are added
		in order, the CORS ones last."""
		info: FileInfo = asset.info
		ext: str | None = extension(asset.path)
		headers: dict[str, str] = {}

		# Last modification, possibly a 304
		if info.modifiedTime is not None:
			headers["Last-Modified"] = formatdate(info.modifiedTime, usegmt=True)
			if self.isNotModified(info.modifiedTime, request.header("If-Modified-Since")):
				return self.notModified(request, headers)

		# Byte ranges, never for index documents
		headers["Accept-Ranges"] = "bytes"
		window: RangeSpec = RangeSpec.Full(info.size)
		range_header: str | None = request.header("Range")
		if range_header and not asset.isIndex:
			window = RangeSpec.Parse(range_header, info.size, self.byteRangeChunk)
			if window.isPartial:
				headers["Content-Range"] = (
					f"bytes {window.start}-{window.end}/{info.size}"
				)
		headers["Content-Length"] = str(window.length)

		# The tag is only worth its hashing when the client asks for it, or
		# when there is no modification time to validate with.
		if_none_match: str | None = request.header("If-None-Match")
		needs_tag: bool = (
			info.modifiedTime is None or bool(if_none_match) or window.length == 0
		)
		data: bytes | None = None
		if request.method == "GET" or needs_tag:
			data = (
				await self.read(request, path, asset, window)
				if window.length > 0
				else b""
			)
		if needs_tag:
			etag: str = tag(data or b"")
			headers["Etag"] = etag
			if matches(if_none_match, etag):
				return self.notModified(request, headers)

		headers["Cache-Control"] = (
			CACHE_IMMUTABLE if ext and not asset.isIndex else CACHE_REVALIDATE
		)
		headers["Content-Type"] = contentType(ext)
		self.cors.apply(request, headers)

		logged(debug) and debug(
			"Serving static file",
			Path=path,
			File=str(asset.path),
			Start=window.start,
			Length=window.length,
		)
		if request.method == "GET":
			return request.respond(
				content=data,
				headers=headers,
				status=206 if window.isPartial else 200,
			)
		else:
			# HEAD requests get the headers of a full GET, without any body
			# and never as partial content.
			return request.respond(headers=headers, status=204)

	def isNotModified(self, modifiedTime: float, header: str | None) -> bool:
		"""Tells if the `If-Modified-Since` header lets us answer with a 304.
		By default, the file is considered unchanged when its modification
		time is after the given date. The strict mode uses the RFC 7232
		comparison instead, at a one second precision."""
		if not header:
			return False
		try:
			since = parsedate_to_datetime(header)
		except (TypeError, ValueError, IndexError):
			return False
		if since.tzinfo is None:
			since = since.replace(tzinfo=timezone.utc)
		timestamp: float = since.timestamp()
		if self.strictModifiedSince:
			return int(modifiedTime) <= timestamp
		else:
			return modifiedTime > timestamp

	def notModified(
		self, request: HTTPRequest, headers: dict[str, str]
	) -> HTTPResponse:
		return request.notModified(self.cors.apply(request, headers))

	async def read(
		self,
		request: HTTPRequest,
		path: str,
		asset: ResolvedAsset,
		window: RangeSpec,
	) -> bytes:
		"""Reads the window of the asset. Cached assets are read whole and
		sliced. Otherwise only the window is read when the storage can seek."""
		end: int = window.start + window.length
		if self.cache is not None and not asset.isIndex:
			content = await self.cache.load(
				path, request.queryString, lambda: self.storage.read(asset.path)
			)
			return content[window.start : end]
		elif self.storage.canSeek:
			return await self.storage.readRange(asset.path, window.start, window.length)
		else:
			content = await self.storage.read(asset.path)
			return content[window.start : end]


# EOF
