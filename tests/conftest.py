import threading

import pytest

from hls_grabber.modules.errors import FetchError
from hls_grabber.modules.parser import parse


class FakeCore:
    """Answers fetch() from a dict of url -> str/bytes and records every request."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.headers = {}
        self.lock = threading.Lock()

    def fetch(self, url, get_bytes=False, headers=None, timeout=None):
        with self.lock:
            self.calls.append(url)
            self.headers[url] = headers

        if url not in self.responses:
            raise FetchError(f"HTTP error: status code 404 for {url}", url=url, status_code=404)

        body = self.responses[url]
        if isinstance(body, Exception):
            raise body

        if get_bytes:
            return body if isinstance(body, bytes) else body.encode()
        return body if isinstance(body, str) else body.decode()


def media_playlist(count, prefix="seg", key_line=None):
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:10"]
    if key_line:
        lines.append(key_line)
    for i in range(count):
        lines.append("#EXTINF:9.009,")
        lines.append(f"{prefix}{i}.ts")
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


@pytest.fixture
def fake_core():
    return FakeCore()


@pytest.fixture
def five_segments():
    return parse(media_playlist(5))


@pytest.fixture
def make_playlist():
    return media_playlist
