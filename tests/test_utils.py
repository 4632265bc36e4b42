import asyncio

from tryfiles.utils import awaited
from tryfiles.utils.io import LineParser
from tryfiles.utils.limits import LimitType, limit, unlimit


def test_line_parser():
	parser = LineParser()
	lines: list[bytes] = []
	for chunk in [
		b"GET /time/5 HTTP/1.1\r\nHost: 127.0.0.1\r\nConnection: close",
		b"\r\n\r",
		b"\n",
	]:
		offset: int = 0
		while True:
			line, read = parser.feed(chunk, offset)
			offset += read
			if line is None:
				break
			lines.append(line)
	assert lines == [
		b"GET /time/5 HTTP/1.1",
		b"Host: 127.0.0.1",
		b"Connection: close",
		b"",
	]


def test_awaited():
	async def value() -> int:
		return 1

	async def main() -> list[int]:
		return [await awaited(value()), await awaited(2)]

	assert asyncio.run(main()) == [1, 2]


def test_unlimit_keeps_hard_limit():
	before = limit(LimitType.Files)
	unlimit(LimitType.Files)
	after = limit(LimitType.Files)
	assert after.hard == before.hard
	assert after.soft >= before.soft


# EOF
