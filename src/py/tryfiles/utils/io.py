DEFAULT_ENCODING: str = "utf8"
EOL: bytes = b"\r\n"


class LineParser:
	"""Accumulates chunks until a CRLF-terminated line is complete. `feed`
	returns the line without its delimiter (`None` while incomplete) and how
	many bytes of the chunk were consumed."""

	__slots__ = ["pending", "scanned"]

	def __init__(self) -> None:
		self.pending: bytearray = bytearray()
		# How much of `pending` is known not to hold a delimiter
		self.scanned: int = 0

	def reset(self) -> "LineParser":
		self.pending.clear()
		self.scanned = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bytes | None, int]:
		before: int = len(self.pending)
		self.pending += chunk[start:]
		end: int = self.pending.find(EOL, self.scanned)
		if end == -1:
			# The delimiter may straddle two chunks
			self.scanned = max(0, len(self.pending) - len(EOL) + 1)
			return None, len(chunk) - start
		line: bytes = bytes(self.pending[:end])
		self.reset()
		return line, end + len(EOL) - before


# EOF
