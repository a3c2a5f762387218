from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from hls_grabber.base import BaseCore, Downloader
from hls_grabber.modules import crypto
from hls_grabber.modules.config import RuntimeConfig
from hls_grabber.modules.errors import ConfigurationError, FetchError, ManifestError
from hls_grabber.modules.download import SegmentProcessor
from hls_grabber.modules.models import AcquisitionTask, ResolvedPlaylist
from hls_grabber.modules.parser import parse
from hls_grabber.modules.progress_bars import Callback

KEY = b"0123456789abcdef"
IV = bytes(range(16))


def _config(**overrides):
    config = RuntimeConfig()
    config.max_retries = 1
    config.retry_backoff = 0
    config.concurrency = 4
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


def _segment(index):
    return b"\x47" + bytes([index]) * 187


class Server:
    """httpx.MockTransport handler serving a master playlist, a media playlist, a key and 6 segments."""

    def __init__(self, encrypted=True, broken=()):
        self.encrypted = encrypted
        self.broken = set(broken)
        self.requests = []
        self.failures = {}

    def media(self):
        lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:10", "#EXT-X-PLAYLIST-TYPE:VOD"]
        if self.encrypted:
            lines.append('#EXT-X-KEY:METHOD=AES-128,URI="/keys/k.bin",IV=0x000102030405060708090a0b0c0d0e0f')
        for i in range(6):
            lines += ["#EXTINF:4.0,", f"seg{i}.ts"]
        lines.append("#EXT-X-ENDLIST")
        return "\n".join(lines)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)

        if path == "/master.m3u8":
            return httpx.Response(200, text="#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=800000\nhd/index.m3u8\n")
        if path == "/hd/index.m3u8":
            return httpx.Response(200, text=self.media())
        if path == "/keys/k.bin":
            return httpx.Response(200, content=KEY)
        if path.startswith("/hd/seg"):
            index = int(path[len("/hd/seg"):-len(".ts")])
            if index in self.broken:
                self.failures[index] = self.failures.get(index, 0) + 1
                if self.failures[index] == 1:
                    return httpx.Response(503)
            body = _segment(index)
            if self.encrypted:
                body = crypto.encrypt(body, KEY, IV)
            return httpx.Response(200, content=body)
        return httpx.Response(404)


def _downloader(server, **overrides):
    config = _config(**overrides)
    core = BaseCore(config=config, transport=httpx.MockTransport(server))
    return Downloader(core=core, config=config, reporter=Callback.silent)


def test_fetch_text_and_bytes():
    core = BaseCore(config=_config(), transport=httpx.MockTransport(Server()))
    assert core.fetch("https://cdn.example.com/master.m3u8").startswith("#EXTM3U")
    assert core.fetch("https://cdn.example.com/keys/k.bin", get_bytes=True) == KEY
    assert core.total_requests == 2


def test_fetch_raises_on_status():
    core = BaseCore(config=_config(), transport=httpx.MockTransport(Server()))
    with pytest.raises(FetchError) as exc_info:
        core.fetch("https://cdn.example.com/nope")
    assert exc_info.value.status_code == 404


def test_fetch_retries_server_errors(monkeypatch):
    monkeypatch.setattr("hls_grabber.base.time.sleep", lambda seconds: None)
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500 if len(calls) == 1 else 200, content=b"ok")

    core = BaseCore(config=_config(max_retries=3), transport=httpx.MockTransport(handler))
    assert core.fetch("https://cdn.example.com/x", get_bytes=True) == b"ok"
    assert len(calls) == 2


def test_fetch_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    core = BaseCore(config=_config(), transport=httpx.MockTransport(handler))
    with pytest.raises(FetchError) as exc_info:
        core.fetch("https://cdn.example.com/x")
    assert exc_info.value.status_code is None


def test_download_encrypted_stream(tmp_path):
    server = Server(encrypted=True, broken={3})
    downloader = _downloader(server)

    result = downloader.start(AcquisitionTask(url="https://cdn.example.com/master.m3u8", output_dir=str(tmp_path),
                                              output_file_name="movie"))

    output = tmp_path / "movie.mp4"
    assert result.output_path == str(output)
    assert result.complete
    assert output.read_bytes() == b"".join(_segment(i) for i in range(6))
    assert not (tmp_path / "ts_segments").exists()
    assert server.requests.count("/keys/k.bin") == 1
    assert server.requests.count("/hd/seg3.ts") == 2


def test_download_keeps_given_extension(tmp_path):
    downloader = _downloader(Server(encrypted=False))
    result = downloader.start(AcquisitionTask(url="https://cdn.example.com/hd/index.m3u8", output_dir=str(tmp_path),
                                              output_file_name="clip.ts"))

    assert result.output_path == str(tmp_path / "clip.ts")
    assert (tmp_path / "clip.ts").read_bytes() == b"".join(_segment(i) for i in range(6))


def test_existing_segments_are_not_downloaded_again(tmp_path):
    temp_dir = tmp_path / "ts_segments"
    temp_dir.mkdir()
    (temp_dir / "0.ts").write_bytes(_segment(0))
    server = Server(encrypted=False)

    _downloader(server).start(AcquisitionTask(url="https://cdn.example.com/hd/index.m3u8", output_dir=str(tmp_path)))

    assert "/hd/seg0.ts" not in server.requests
    assert (tmp_path / "output.mp4").read_bytes() == b"".join(_segment(i) for i in range(6))


def test_segment_that_never_works_is_missing_from_output(tmp_path):
    class AlwaysBroken(Server):
        def __call__(self, request):
            if request.url.path == "/hd/seg2.ts":
                return httpx.Response(404)
            return super().__call__(request)

    downloader = _downloader(AlwaysBroken(encrypted=False), max_segment_attempts=2)
    result = downloader.start(AcquisitionTask(url="https://cdn.example.com/hd/index.m3u8", output_dir=str(tmp_path)))

    assert result.missing == [2]
    assert result.merged == 5
    assert (tmp_path / "output.mp4").read_bytes() == b"".join(_segment(i) for i in (0, 1, 3, 4, 5))


def test_manifest_errors_abort_before_download(tmp_path):
    def handler(request):
        return httpx.Response(200, text="not a playlist")

    config = _config()
    downloader = Downloader(core=BaseCore(config=config, transport=httpx.MockTransport(handler)), config=config,
                            reporter=Callback.silent)
    with pytest.raises(ManifestError):
        downloader.start(AcquisitionTask(url="https://cdn.example.com/x.m3u8", output_dir=str(tmp_path)))
    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize("task", [
    AcquisitionTask(url=""),
    AcquisitionTask(url="https://cdn.example.com/x.m3u8", concurrency=0),
])
def test_invalid_tasks(task):
    with pytest.raises(ConfigurationError):
        _downloader(Server()).start(task)


def test_default_output_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    downloader = _downloader(Server())

    output_dir, file_name, temp_dir = downloader.setup_output_paths(AcquisitionTask(url="x"))

    assert output_dir == str(tmp_path / "Downloads")
    assert file_name == "output.mp4"
    assert temp_dir == str(tmp_path / "Downloads" / "ts_segments")


def _range_ignoring_core(body, calls):
    def handler(request):
        calls.append(request.headers.get("Range"))
        return httpx.Response(200, content=body)

    return BaseCore(config=_config(), transport=httpx.MockTransport(handler))


def test_full_response_to_range_request_is_sliced():
    calls = []
    body = bytes(range(200))
    core = _range_ignoring_core(body, calls)

    assert core.fetch("https://cdn.example.com/all.ts", get_bytes=True, headers={"Range": "bytes=10-19"}) == body[10:20]
    assert core.fetch("https://cdn.example.com/all.ts", get_bytes=True) == body
    assert calls == ["bytes=10-19", None]


def test_byte_range_segments_from_server_without_range_support(tmp_path):
    text = "\n".join([
        "#EXTM3U",
        "#EXTINF:1,",
        "#EXT-X-BYTERANGE:50@0",
        "all.ts",
        "#EXTINF:1,",
        "#EXT-X-BYTERANGE:10",
        "all.ts",
    ])
    playlist = ResolvedPlaylist(url="https://cdn.example.com/v/index.m3u8", document=parse(text))
    body = b"\x47" + bytes(range(1, 200))
    core = _range_ignoring_core(body, [])

    processor = SegmentProcessor(core, playlist, str(tmp_path))
    processor.process(0)
    processor.process(1)

    assert (tmp_path / "0.ts").read_bytes() == body[:50]
    assert (tmp_path / "1.ts").read_bytes() == body[50:60]


def test_request_counter_is_thread_safe():
    core = BaseCore(config=_config(), transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda i: core.fetch(f"https://cdn.example.com/{i}.ts", get_bytes=True), range(200)))

    assert core.total_requests == 200


def test_text_progress_bar_gets_divider_lines(tmp_path, capsys):
    config = _config()
    core = BaseCore(config=config, transport=httpx.MockTransport(Server(encrypted=False)))
    downloader = Downloader(core=core, config=config)

    downloader.start(AcquisitionTask(url="https://cdn.example.com/hd/index.m3u8", output_dir=str(tmp_path)))

    out = capsys.readouterr().out
    assert "\n" in out[out.rindex("[downloading]"):out.index("[merging]")]
    assert out.endswith("\n")
