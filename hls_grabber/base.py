import os
import ssl
import time
import httpx
import random
import certifi
import logging
import threading

from typing import Dict, Optional, Union

from .modules.errors import ConfigurationError, FetchError, StorageError
from .modules.config import config
from .modules.logger import setup_logger
from .modules.models import AcquisitionTask, MergeResult, ResolvedPlaylist, RunState
from .modules.progress_bars import Callback
from .modules.resolver import ManifestResolver
from .modules.download import SegmentScheduler, SegmentProcessor, Merger


class BaseCore:
    """
    Does every HTTP request hls_grabber makes (playlists, keys and segments). The httpx client is thread safe and
    shared between all segment workers.
    """
    def __init__(self, config=config, transport: Optional[httpx.BaseTransport] = None):
        self.session: Optional[httpx.Client] = None
        self.total_requests = 0  # Tracks how many requests have been made
        self._lock = threading.Lock()  # segment workers share one core
        self.config = config
        self.transport = transport
        self.logger = setup_logger("HLS - [BaseCore]", log_file=False, level=logging.ERROR)
        self.default_headers = {
            "User-Agent": self.config.user_agent,
            "Accept-Encoding": "gzip, deflate",
        }

    def enable_logging(self, log_file=None, level=logging.DEBUG):
        """Enables logging dynamically for this module."""
        self.logger = setup_logger(name="HLS - [BaseCore]", log_file=log_file, level=level)

    def initialize_session(self):
        ctx = ssl.create_default_context(cafile=certifi.where())
        if not self.config.verify_ssl:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE

        kwargs = {}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        else:
            kwargs["http2"] = self.config.use_http2

        self.session = httpx.Client(
            proxy=self.config.proxy,
            timeout=self.config.timeout,
            verify=ctx,
            follow_redirects=True,
            headers=self.default_headers,
            **kwargs,
        )

    def close(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def slice_range(self, content: bytes, range_header: str, url: str) -> bytes:
        """Cuts "bytes=start-end" out of a full 200 response from a server that ignored the Range header."""
        try:
            start, _, end = range_header.split("=", 1)[1].partition("-")
            start, end = int(start), (int(end) + 1 if end.strip() else None)
        except (IndexError, ValueError) as e:
            raise FetchError(f"Invalid Range header {range_header!r} for {url}", url=url) from e

        self.logger.warning(f"Server ignored Range {range_header} for {url}, slicing the full response")
        return content[start:end]

    def fetch(self, url: str, get_bytes: bool = False, headers: Optional[Dict[str, str]] = None,
              timeout: Optional[float] = None) -> Union[bytes, str]:
        """
        GET a URL and return its body.

        Returns:
            - bytes if get_bytes=True
            - str (text) otherwise

        Raises:
            - FetchError for non-success statuses (after retrying 5xx) and transport errors (after retrying)
        """
        if self.session is None:
            self.initialize_session()

        req_timeout = timeout or self.config.timeout
        max_retries = max(1, int(self.config.max_retries))
        last_error: Optional[FetchError] = None

        for attempt in range(max_retries):
            if attempt >= 1:
                # capped exponential backoff with jitter
                base = min(5.0, 0.5 * (2 ** attempt))
                jitter = random.random() * 0.25  # 0-250ms
                time.sleep(base + jitter)

            try:
                response = self.session.get(url, headers=headers, timeout=req_timeout)

            except httpx.TimeoutException as e:
                self.logger.error(f"Attempt {attempt}: Timeout for URL {url}: {e}. "
                                  f"Consider increasing the timeout or check your connection.")
                last_error = FetchError(f"Timeout for {url}: {e}", url=url)
                continue

            except httpx.RequestError as e:
                self.logger.error(f"Attempt {attempt}: Request error for URL {url}: {e}")
                last_error = FetchError(f"Request error for {url}: {e}", url=url)
                continue

            with self._lock:
                self.total_requests += 1

            status = response.status_code

            # A Range request is answered with 206
            if status in (200, 206):
                self.logger.debug(f"Attempt {attempt}: Successfully fetched URL: {url}")
                content = response.content
                if status == 200 and headers and "Range" in headers:
                    content = self.slice_range(content, headers["Range"], url)

                if get_bytes:
                    return content

                # Prefer server-provided/guessed encoding; fallback to latin-1
                enc = response.encoding or "utf-8"
                try:
                    return content.decode(enc, errors="strict")
                except (UnicodeDecodeError, LookupError):
                    self.logger.warning(f"Content could not be decoded as {enc} ({url}), decoding in 'latin1' instead!")
                    return content.decode("latin1", errors="replace")

            last_error = FetchError(f"HTTP error: status code {status} for {url}", url=url, status_code=status)
            if 500 <= status < 600:
                self.logger.warning(f"Server error {status} on {url}. Retrying ({attempt + 1}/{max_retries})...")
                continue

            # 4xx and friends won't get better by asking again
            self.logger.error(last_error.message)
            raise last_error

        self.logger.error(f"Failed to fetch URL {url} after {max_retries} attempts.")
        raise last_error


class Downloader:
    """
    Runs a whole task: resolve the playlist, download every segment into a temporary folder next to the output
    file and merge them into the output file.

    >>> downloader = Downloader()
    >>> downloader.start(AcquisitionTask(url="https://example.com/video.m3u8", output_dir="videos"))
    """
    def __init__(self, core: Optional[BaseCore] = None, config=config, reporter=None):
        self.config = config
        self.core = core or BaseCore(config=config)
        self.reporter = reporter or Callback.text_progress_bar
        self.logger = setup_logger("HLS - [Downloader]", level=logging.WARNING)
        self.resolver = ManifestResolver(self.core, config=config)
        self.merger = Merger(reporter=self.reporter)

    def enable_logging(self, log_file=None, level=logging.DEBUG):
        """Enables logging dynamically for every component."""
        for name in ("Downloader", "BaseCore", "Parser", "Resolver", "Processor", "Scheduler", "Merger"):
            setup_logger(name=f"HLS - [{name}]", log_file=log_file, level=level)

    def setup_output_paths(self, task: AcquisitionTask):
        """Returns (output directory, output file name, temporary segment folder) and creates the folders."""
        output_dir = task.output_dir or os.path.join(os.path.expanduser("~"), "Downloads")
        file_name = task.output_file_name or self.config.default_file_name

        if not os.path.splitext(file_name)[1]:
            file_name = file_name + self.config.default_extension

        temp_dir = os.path.join(output_dir, self.config.temp_folder_name)
        try:
            os.makedirs(temp_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Create storage folder failed: {temp_dir}: {e}") from e

        return output_dir, file_name, temp_dir

    def resolve(self, url: str) -> ResolvedPlaylist:
        return self.resolver.resolve(url)

    def start(self, task: AcquisitionTask) -> MergeResult:
        if not task.url:
            raise ConfigurationError("A playlist URL is required")

        concurrency = task.concurrency if task.concurrency is not None else self.config.concurrency
        if concurrency <= 0:
            raise ConfigurationError(f"Concurrency must be >= 1, got {concurrency}")

        playlist = self.resolve(task.url)
        output_dir, file_name, temp_dir = self.setup_output_paths(task)
        self.logger.info(f"Saving {len(playlist)} segments to {temp_dir}")

        state = RunState(total=len(playlist), temp_dir=temp_dir, playlist=playlist)
        processor = SegmentProcessor(self.core, playlist, temp_dir)
        scheduler = SegmentScheduler(
            processor,
            concurrency=concurrency,
            max_attempts=self.config.max_segment_attempts,
            retry_backoff=self.config.retry_backoff,
            max_backoff=self.config.max_backoff,
            reporter=self.reporter,
        )
        scheduler.run(state)

        # bound classmethods compare equal, they are never identical
        if self.reporter == Callback.text_progress_bar:
            print()  # divider for downloading and merging

        result = self.merger.merge(playlist.document, temp_dir, os.path.join(output_dir, file_name))

        if self.reporter == Callback.text_progress_bar:
            print()

        return result
