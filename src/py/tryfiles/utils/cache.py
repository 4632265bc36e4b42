from typing import Awaitable, Callable, NamedTuple

from .logging import debug, logged


class CacheEntry(NamedTuple):
	data: bytes
	# The query string of the request that populated the entry
	version: str


class MemoryCache:
	"""Caches the content of static files in memory, keyed by URL path. An
	entry is only valid for the version (query string) it was read with,
	so `?v=2` forces a reread. Entries never expire otherwise.

	The cache is not locked: concurrent requests for a stale path may
	both reread the file, and the last one to finish wins."""

	__slots__ = ["entries"]

	def __init__(self) -> None:
		self.entries: dict[str, CacheEntry] = {}

	def get(self, path: str, version: str) -> bytes | None:
		entry = self.entries.get(path)
		return entry.data if entry and entry.version == version else None

	def set(self, path: str, version: str, data: bytes) -> bytes:
		self.entries[path] = CacheEntry(data, version)
		return data

	async def load(
		self, path: str, version: str, loader: Callable[[], Awaitable[bytes]]
	) -> bytes:
		"""Returns the cached data for the path and version, calling the
		loader and storing its result on a miss."""
		data = self.get(path, version)
		if data is None:
			logged(debug) and debug("Cache miss", Path=path, Version=version)
			data = self.set(path, version, await loader())
		return data

	def clear(self) -> None:
		self.entries.clear()

	def __len__(self) -> int:
		return len(self.entries)


# EOF
