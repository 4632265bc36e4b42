import asyncio
import os
import re
import stat
from abc import ABC, abstractmethod
from io import UnsupportedOperation
from pathlib import Path
from typing import ClassVar, NamedTuple, Pattern

# -----------------------------------------------------------------------------
#
# MIME TYPES
#
# -----------------------------------------------------------------------------

# Handles the most common assets, anything else is served as
# `application/octet-stream`.
MIME_TYPES: dict[str, str] = {
	# Scripts & styles
	"css": "text/css",
	"js": "text/javascript",
	"map": "text/plain",
	# Text
	"txt": "text/plain",
	"htm": "text/html",
	"html": "text/html",
	"xml": "text/xml",
	"ini": "text/plain",
	"conf": "text/plain",
	"yaml": "text/yaml",
	"yml": "text/yaml",
	# Images
	"jpeg": "image/jpeg",
	"jpg": "image/jpeg",
	"bmp": "image/bmp",
	"png": "image/png",
	"apng": "image/apng",
	"webp": "image/webp",
	"avif": "image/avif",
	"gif": "image/gif",
	"ico": "image/ico",
	"svg": "image/svg+xml",
	# Audio
	"mp3": "audio/mp3",
	"wav": "audio/wav",
	"ogg": "audio/ogg",
	"aac": "audio/x-aac",
	"m4a": "audio/x-m4a",
	"aiff": "audio/x-aiff",
	"flac": "audio/x-flac",
	"weba": "audio/webm",
	"midi": "audio/midi",
	# Video
	"mp4": "video/mp4",
	"mpeg": "video/mpeg",
	"mpg": "video/mpeg",
	"webm": "video/webm",
	"avi": "video/x-msvideo",
	"3gp": "video/3gpp",
	"mov": "video/quicktime",
	"mkv": "video/x-matroska",
	"flv": "video/x-flv",
	# Fonts
	"otf": "font/otf",
	"ttf": "font/ttf",
	"woff": "font/woff",
	"woff2": "font/woff2",
	# Applications
	"json": "application/json",
	"pdf": "application/pdf",
	"zip": "application/zip",
	"gz": "application/gzip",
}

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

RE_EXTENSION: Pattern[str] = re.compile(r"^.+\.(\w+)$")


def extension(path: Path | str) -> str | None:
	"""Returns the lowercase extension of the given path, which is the last
	word segment following a dot, or `None`."""
	match = RE_EXTENSION.match(str(path).lower())
	return match.group(1) if match else None


def contentType(ext: str | None) -> str:
	"""Returns the content type for the given extension (as returned
	by `extension`)."""
	return (MIME_TYPES.get(ext) if ext else None) or DEFAULT_CONTENT_TYPE


# -----------------------------------------------------------------------------
#
# FILE INFO
#
# -----------------------------------------------------------------------------


class FileInfo(NamedTuple):
	"""The metadata of a path, as given by a storage `stat`."""

	isFile: bool
	isDirectory: bool
	size: int
	# Seconds since the epoch, `None` when the storage does not know
	modifiedTime: float | None = None

	@staticmethod
	def FromStat(stats: os.stat_result) -> "FileInfo":
		return FileInfo(
			isFile=stat.S_ISREG(stats.st_mode),
			isDirectory=stat.S_ISDIR(stats.st_mode),
			size=stats.st_size,
			modifiedTime=stats.st_mtime,
		)


# -----------------------------------------------------------------------------
#
# STORAGE
#
# -----------------------------------------------------------------------------


class Storage(ABC):
	"""The file I/O capabilities the static resolver consumes. Errors are
	raised as `OSError`, with `FileNotFoundError` for missing paths."""

	# Tells if `readRange` is supported, otherwise ranges are sliced
	# out of a whole read.
	canSeek: ClassVar[bool] = True

	@abstractmethod
	async def stat(self, path: Path) -> FileInfo: ...

	@abstractmethod
	async def read(self, path: Path) -> bytes: ...

	async def readRange(self, path: Path, start: int, length: int) -> bytes:
		raise UnsupportedOperation(f"Storage cannot seek: {self}")


class LocalStorage(Storage):
	"""Storage backed by the local filesystem. Every blocking call runs in a
	worker thread so that it never blocks the event loop."""

	def __init__(self, *, chunk: int = 64_000) -> None:
		self.chunk: int = chunk

	async def stat(self, path: Path) -> FileInfo:
		return FileInfo.FromStat(await asyncio.to_thread(os.stat, path))

	async def read(self, path: Path) -> bytes:
		return await asyncio.to_thread(path.read_bytes)

	async def readRange(self, path: Path, start: int, length: int) -> bytes:
		return await asyncio.to_thread(self._readRange, path, start, length)

	def _readRange(self, path: Path, start: int, length: int) -> bytes:
		data = bytearray()
		with open(path, "rb") as f:
			f.seek(start)
			# Reads may be short, we loop until we have the window or EOF
			while len(data) < length:
				chunk = f.read(min(self.chunk, length - len(data)))
				if not chunk:
					break
				data += chunk
		return bytes(data)


# EOF
