"""
Segment acquisition: the scheduler hands segment indices to a bounded pool of workers, each worker runs the
processor (fetch -> decrypt -> trim -> save) and the merger glues the saved segments together in index order.

Segments are written to <temp_dir>/<index>.ts. A segment file that already exists is never downloaded again,
so running the same task twice continues where the first run stopped.
"""

import os
import time
import shutil
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from . import crypto
from .config import config as default_config
from .errors import ConfigurationError, StorageError, SegmentError
from .logger import setup_logger
from .models import Document, MergeResult, ResolvedPlaylist, RunState, segment_path
from .progress_bars import Callback

ReporterType = Callable[[str, float, str], None]

SYNC_BYTE = 0x47  # MPEG-TS packets always start with 0x47
TEMP_SUFFIX = ".tmp"


def trim_to_sync_byte(data: bytes) -> bytes:
    """Drops everything before the first MPEG-TS sync byte. Data without one is returned as it is."""
    position = data.find(bytes([SYNC_BYTE]))
    if position <= 0:
        return data
    return data[position:]


class SegmentProcessor:
    """
    Downloads one segment and saves it crash safe: the bytes go into <index>.ts.tmp first and are renamed to
    <index>.ts afterwards, so a segment file with its final name is always complete.
    """
    def __init__(self, core, playlist: ResolvedPlaylist, temp_dir: str, logger: Optional[logging.Logger] = None):
        self.core = core
        self.playlist = playlist
        self.temp_dir = temp_dir
        self.logger = logger or setup_logger("HLS - [Processor]")

    def __call__(self, index: int):
        self.process(index)

    def process(self, index: int):
        path = segment_path(self.temp_dir, index)
        if os.path.exists(path):
            self.logger.debug(f"Segment {index} already exists, skipping: {path}")
            return

        url = self.playlist.segment_url(index)
        headers = None
        byte_range = self.playlist.byte_range(index)
        if byte_range is not None:
            headers = {"Range": f"bytes={byte_range[0]}-{byte_range[1]}"}

        data = self.core.fetch(url, get_bytes=True, headers=headers)
        data = self.decrypt(index, data)
        self.save(path, trim_to_sync_byte(data))

    def decrypt(self, index: int, data: bytes) -> bytes:
        key = self.playlist.key_for(index)
        if key is None:
            return data

        key_bytes, iv = key
        return crypto.decrypt(data, key_bytes, iv)

    def save(self, path: str, data: bytes):
        temp_path = path + TEMP_SUFFIX
        try:
            with open(temp_path, "wb") as file:
                file.write(data)
            os.replace(temp_path, path)

        except OSError as e:
            try:
                os.remove(temp_path)
            except OSError:
                pass
            raise StorageError(f"Couldn't save segment to {path}: {e}") from e


class SegmentScheduler:
    """
    Runs the processor once per segment index with at most `concurrency` segments in flight.

    Failed indices go back to the end of the queue. Without `max_attempts` a segment that keeps failing is
    retried forever, with it the segment is given up after that many attempts and shows up as missing when
    merging. Errors raised by the processor never leave `run()`.
    """
    def __init__(self, processor: Callable[[int], None], concurrency: int = None, max_attempts: Optional[int] = None,
                 retry_backoff: float = 0.0, max_backoff: float = None, reporter: Optional[ReporterType] = None,
                 logger: Optional[logging.Logger] = None, config=default_config):
        self.processor = processor
        self.concurrency = concurrency if concurrency is not None else config.concurrency
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.max_backoff = max_backoff if max_backoff is not None else config.max_backoff
        self.reporter = reporter or Callback.silent
        self.logger = logger or setup_logger("HLS - [Scheduler]")

        if self.concurrency is None or self.concurrency <= 0:
            raise ConfigurationError(f"Concurrency must be >= 1, got {self.concurrency}")

        if self.max_attempts is not None and self.max_attempts <= 0:
            raise ConfigurationError(f"max_attempts must be >= 1 or None, got {self.max_attempts}")

    def run(self, state: RunState) -> RunState:
        state.seed()
        if state.total == 0:
            return state

        workers = max(1, min(self.concurrency, state.total))
        slots = threading.BoundedSemaphore(workers)
        self.logger.info(f"Downloading {state.total} segments with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="segment") as executor:
            while True:
                index = state.next_index()
                if index is None:
                    break

                slots.acquire()
                executor.submit(self._work, state, index, slots)

        if state.failed:
            self.logger.warning(f"{len(state.failed)} segments failed permanently: {sorted(state.failed)}")

        return state

    def _work(self, state: RunState, index: int, slots: threading.BoundedSemaphore):
        try:
            self.processor(index)

        except Exception as e:
            self.logger.error(f"[failed] segment {index} (attempt {state.attempt(index)}): {e}")
            self._retry_or_give_up(state, index)

        else:
            completed = state.complete(index)
            self.reporter("downloading", completed / state.total, "complete")

        finally:
            slots.release()

    def _retry_or_give_up(self, state: RunState, index: int):
        attempts = state.attempt(index)
        if self.max_attempts is not None and attempts >= self.max_attempts:
            error = SegmentError(f"Segment {index} failed {attempts} times, giving up", index=index)
            self.logger.error(error.message)
            state.give_up(index)
            return

        if self.retry_backoff > 0:
            time.sleep(min(self.max_backoff, self.retry_backoff * (2 ** (attempts - 1))))

        state.requeue(index)


class Merger:
    """
    Concatenates <temp_dir>/<index>.ts for every index into the output file, then removes temp_dir.
    Missing or unreadable segments are skipped with a warning, they never fail the merge.
    """
    def __init__(self, reporter: Optional[ReporterType] = None, logger: Optional[logging.Logger] = None,
                 buffer_size: int = 1024 * 1024):
        self.reporter = reporter or Callback.silent
        self.logger = logger or setup_logger("HLS - [Merger]")
        self.buffer_size = buffer_size

    def merge(self, document: Document, temp_dir: str, output_path: str) -> MergeResult:
        total = len(document.segments)
        result = MergeResult(output_path=output_path, total=total)

        result.missing = [index for index in range(total) if not os.path.exists(segment_path(temp_dir, index))]
        if result.missing:
            self.logger.warning(f"[warning] {len(result.missing)} files missing: {result.missing}")

        try:
            output = open(output_path, "wb", buffering=self.buffer_size)
        except OSError as e:
            raise StorageError(f"Create main TS file failed: {output_path}: {e}") from e

        with output:
            for index in range(total):
                path = segment_path(temp_dir, index)
                try:
                    with open(path, "rb") as segment:
                        data = segment.read()
                except OSError as e:
                    self.logger.warning(f"Failed to read file {os.path.basename(path)}: {e}")
                    continue

                try:
                    output.write(data)
                except OSError as e:
                    self.logger.warning(f"Failed to write segment {index} to {output_path}: {e}")
                    continue

                result.merged += 1
                self.reporter("merging", result.merged / total, "complete")

        try:
            shutil.rmtree(temp_dir)
        except OSError as e:
            self.logger.warning(f"[warning] Failed to remove temporary folder {temp_dir}: {e}")

        if result.merged != total:
            self.logger.warning(f"[warning] {total - result.merged} files merge failed")

        self.logger.info(f"[output] {output_path}")
        return result
