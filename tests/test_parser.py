from tryfiles.http.model import (
	HEADERNAME_CACHE,
	HTTPHeaders,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPRequestLine,
	headername,
)
from tryfiles.http.parser import HTTPParser, parseQuery


def requests(parser: HTTPParser, *chunks: bytes) -> list[HTTPRequest]:
	return [
		atom
		for chunk in chunks
		for atom in parser.feed(chunk)
		if isinstance(atom, HTTPRequest)
	]


def test_parser_chunked_head():
	parser = HTTPParser()
	atoms = []
	for chunk in [
		b"GET /time/5 ",
		b"HTTP/1.1\r\nHost: ",
		b"127.0.0.1\r",
		b"\nConn",
		b"ection: close\r\n",
		b"\r",
		b"\n",
	]:
		atoms += list(parser.feed(chunk))
	assert atoms[0] == HTTPRequestLine("GET", "/time/5", "", "HTTP/1.1")
	assert isinstance(atoms[1], HTTPHeaders)
	assert atoms[1].headers == {"Host": "127.0.0.1", "Connection": "close"}
	req = atoms[2]
	assert isinstance(req, HTTPRequest)
	assert req.header("connection") == "close"
	assert req.body.payload == b""


def test_parser_query():
	(req,) = requests(
		HTTPParser(), b"GET /a%20b.txt?v=2&name=a+b&flag HTTP/1.1\r\n\r\n"
	)
	# The path is kept percent-encoded, the query is decoded
	assert req.path == "/a%20b.txt"
	assert req.queryString == "v=2&name=a+b&flag"
	assert req.query == {"v": "2", "name": "a b", "flag": ""}
	assert req.param("v") == "2"
	assert parseQuery("") == {}


def test_parser_pipelined():
	reqs = requests(
		HTTPParser(),
		b"GET /one HTTP/1.1\r\nHost: a\r\n\r\nHEAD /two HTTP/1.1\r\nHost: a\r\n\r\n",
	)
	assert [(_.method, _.path) for _ in reqs] == [("GET", "/one"), ("HEAD", "/two")]


def test_parser_body_complete():
	(req,) = requests(
		HTTPParser(),
		b"POST /echo HTTP/1.1\r\nContent-Length: 5\r\nContent-Type: text/plain\r\n\r\nhello",
	)
	assert req.contentLength == 5
	assert req.contentType == "text/plain"
	assert req.body.payload == b"hello"
	assert not req.hasRemaining


def test_parser_body_partial():
	parser = HTTPParser()
	(req,) = requests(
		parser, b"POST /echo HTTP/1.1\r\nContent-Length: 10\r\n\r\nhello"
	)
	assert req.body.payload == b"hello"
	assert req.body.remaining == 5
	assert req.hasRemaining
	# The parser is ready for the next request once the rest is read
	(nxt,) = requests(parser, b"GET / HTTP/1.1\r\n\r\n")
	assert nxt.path == "/"


def test_parser_skips_tls_handshake():
	handshake = bytes([0x16, 0x03, 0x01, 0x00, 0x02, 0xAA, 0xBB])
	reqs = requests(HTTPParser(), handshake + b"GET / HTTP/1.1\r\n\r\n")
	assert [_.path for _ in reqs] == ["/"]


def test_parser_body_status():
	atoms = list(
		HTTPParser().feed(b"POST /echo HTTP/1.1\r\nContent-Length: 3\r\n\r\n")
	)
	assert atoms[-1] is HTTPProcessingStatus.Body


def test_header_names_are_bounded():
	headername.cache_clear()
	parser = HTTPParser()
	for i in range(HEADERNAME_CACHE * 4):
		(req,) = requests(parser, f"GET / HTTP/1.1\r\nX-Junk-{i}: 1\r\n\r\n".encode())
		assert req.header(f"x-junk-{i}") == "1"
	assert headername.cache_info().currsize <= HEADERNAME_CACHE
	assert headername("content-TYPE") == "Content-Type"


def test_parser_malformed_line():
	atoms = list(HTTPParser().feed(b"NONSENSE\r\n"))
	assert atoms == [HTTPProcessingStatus.BadFormat]


# EOF
