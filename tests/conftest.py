import os
import sys
from pathlib import Path
from typing import Callable

import pytest

# Tests run against the sources, whether the package is installed or not
sys.path.insert(0, str(Path(__file__).parent.parent / "src" / "py"))

from tryfiles.http.model import HTTPRequest  # NOQA: E402
from tryfiles.http.parser import HTTPParser  # NOQA: E402

# A fixed modification time for the fixture files, 2023-11-14T22:13:20Z
MTIME: float = 1_700_000_000.0

TRequestFactory = Callable[..., HTTPRequest]


def makeRequest(
	method: str = "GET",
	path: str = "/",
	headers: dict[str, str] | None = None,
	body: bytes = b"",
	protocol: str = "HTTP/1.1",
) -> HTTPRequest:
	"""Builds a request by parsing its raw bytes, the way the server does."""
	lines = [f"{method} {path} {protocol}", "Host: localhost"]
	lines += [f"{k}: {v}" for k, v in (headers or {}).items()]
	if body:
		lines.append(f"Content-Length: {len(body)}")
	raw: bytes = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body
	for atom in HTTPParser().feed(raw):
		if isinstance(atom, HTTPRequest):
			return atom
	raise ValueError(f"Could not parse request: {raw!r}")


@pytest.fixture
def request_factory() -> TRequestFactory:
	return makeRequest


@pytest.fixture
def mtime() -> float:
	return MTIME


@pytest.fixture
def public(tmp_path: Path) -> Path:
	"""A directory of static files:

	- `index.html`, 10 bytes
	- `a.txt`, empty
	- `data.bin`, the bytes 0 to 99
	- `sub/index.html` and `sub/page.html`
	- `empty/`, a directory without index

	and a `secret.txt` next to it, which must never be served."""
	root = tmp_path / "public"
	root.mkdir()
	(root / "index.html").write_bytes(b"index page")
	(root / "a.txt").write_bytes(b"")
	(root / "data.bin").write_bytes(bytes(range(100)))
	(root / "sub").mkdir()
	(root / "sub" / "index.html").write_bytes(b"<p>sub</p>")
	(root / "sub" / "page.html").write_bytes(b"<p>page</p>")
	(root / "empty").mkdir()
	(tmp_path / "secret.txt").write_bytes(b"secret")
	for path in root.rglob("*"):
		os.utime(path, (MTIME, MTIME))
	return root


# EOF
