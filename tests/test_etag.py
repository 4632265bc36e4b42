import os
from base64 import b64encode
from hashlib import sha1

from tryfiles.utils.etag import EMPTY_TAG, contentTag, matches, statTag, tag
from tryfiles.utils.files import FileInfo


def test_tag_empty_content():
	assert tag(b"") == 'W/"0-2jmj7l5rSw0yVb/vlWAYkK/YBwk="'
	assert tag("") == f"W/{EMPTY_TAG}"
	assert contentTag(b"") == EMPTY_TAG


def test_tag_content():
	data = b"index page"
	digest = b64encode(sha1(data).digest()).decode("ascii")[:27]
	assert tag(data) == f'W/"a-{digest}"'
	assert tag(data, weak=False) == f'"a-{digest}"'
	# Strings are encoded as UTF-8
	assert tag("index page") == tag(data)
	assert tag(data) == tag(bytes(data))
	assert tag(data) != tag(b"index pagf")


def test_tag_metadata():
	info = FileInfo(True, False, 255, 1.5)
	assert statTag(info) == '"ff-5dc"'
	assert tag(info) == 'W/"ff-5dc"'
	assert statTag(FileInfo(True, False, 16)) == '"10-0"'


def test_tag_stat_result(public):
	stats = os.stat(public / "data.bin")
	assert tag(stats) == tag(FileInfo.FromStat(stats))


def test_matches():
	etag = tag(b"")
	assert matches(etag, etag)
	assert matches(f'W/"1-abc", {etag}', etag)
	assert not matches('W/"1-abc"', etag)
	assert not matches(None, etag)
	assert not matches("", etag)


# EOF
