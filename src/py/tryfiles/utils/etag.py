import os
from base64 import b64encode
from hashlib import sha1

from .files import FileInfo
from .io import DEFAULT_ENCODING

# The tag of an empty body, which is base64(sha1(b"")) in full.
EMPTY_TAG: str = '"0-2jmj7l5rSw0yVb/vlWAYkK/YBwk="'


def statTag(info: FileInfo | os.stat_result) -> str:
	"""Calculates a tag from the size and modification time of a file."""
	if isinstance(info, os.stat_result):
		size: int = info.st_size
		mtime: float | None = info.st_mtime
	else:
		size = info.size
		mtime = info.modifiedTime
	return f'"{size:x}-{"0" if mtime is None else f"{int(mtime * 1000):x}"}"'


def contentTag(content: bytes | str) -> str:
	"""Calculates a tag from the SHA-1 of the given content."""
	if not content:
		return EMPTY_TAG
	data: bytes = (
		content.encode(DEFAULT_ENCODING) if isinstance(content, str) else content
	)
	# NOTE: SHA-1 is used as a fingerprint here, not for security
	digest: str = b64encode(sha1(data).digest()).decode("ascii")[:27]  # nosec: B324
	return f'"{len(data):x}-{digest}"'


def tag(
	entity: FileInfo | os.stat_result | bytes | str, weak: bool = True
) -> str:
	"""Returns the entity tag for the given file metadata or content, as a
	weak validator unless `weak` is false."""
	res: str = (
		statTag(entity)
		if isinstance(entity, (FileInfo, os.stat_result))
		else contentTag(entity)
	)
	return f"W/{res}" if weak else res


def matches(header: str | None, etag: str) -> bool:
	"""Tells if the given `If-None-Match` header value lists the tag."""
	return bool(header) and etag in (header or "")


# EOF
