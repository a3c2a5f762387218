"""
Data models for hls_grabber.

A playlist is parsed into a `Document`, resolved into a `ResolvedPlaylist` (document + base URL + key material)
and then downloaded through a `RunState` which is the only object shared between the download workers.
"""

import os
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Set, Tuple

from .urls import resolve_url


class PlaylistType(str, Enum):
    UNSET = ""
    VOD = "VOD"
    EVENT = "EVENT"


class CryptMethod(str, Enum):
    NONE = "NONE"
    AES_128 = "AES-128"


@dataclass(frozen=True)
class Segment:
    """One media segment. `key_index` 0 means the segment isn't encrypted."""
    uri: str
    duration: float
    title: str = ""
    key_index: int = 0
    length: Optional[int] = None  # #EXT-X-BYTERANGE: length[@offset]
    offset: Optional[int] = None

    @property
    def has_byte_range(self) -> bool:
        return self.length is not None


@dataclass
class EncryptionKey:
    """An #EXT-X-KEY declaration. `iv` is kept exactly as written in the playlist."""
    method: CryptMethod
    uri: str = ""
    iv: str = ""

    def iv_bytes(self, sequence: int) -> bytes:
        """
        Returns the IV used to decrypt the segment with the given media sequence number.

        A hex IV (0x...) is decoded, a missing IV falls back to the sequence number as a 128-bit big-endian
        integer. Anything else is used as raw bytes, so a wrong length is reported by the decryptor.
        """
        if not self.iv:
            return sequence.to_bytes(16, "big")

        if self.iv[:2] in ("0x", "0X"):
            try:
                return bytes.fromhex(self.iv[2:])
            except ValueError:
                pass

        return self.iv.encode("latin-1", errors="replace")


@dataclass
class VariantReference:
    """#EXT-X-STREAM-INF:PROGRAM-ID=1,BANDWIDTH=240000,RESOLUTION=416x234,CODECS="avc1.42e00a,mp4a.40.2" """
    uri: str = ""
    bandwidth: int = 0
    resolution: str = ""
    codecs: str = ""
    program_id: int = 0


@dataclass
class Document:
    version: int = 0
    media_sequence: int = 0
    target_duration: float = 0.0
    playlist_type: PlaylistType = PlaylistType.UNSET
    end_list: bool = False
    segments: List[Segment] = field(default_factory=list)
    keys: Dict[int, EncryptionKey] = field(default_factory=dict)  # 1-based key index
    variants: List[VariantReference] = field(default_factory=list)

    @property
    def is_master(self) -> bool:
        return len(self.variants) > 0


@dataclass
class ResolvedPlaylist:
    """A media playlist bound to the URL it was fetched from, together with the fetched key material."""
    url: str
    document: Document
    keys: Dict[int, bytes] = field(default_factory=dict)

    def __len__(self):
        return len(self.document.segments)

    def segment_url(self, index: int) -> str:
        return resolve_url(self.url, self.document.segments[index].uri)

    def key_for(self, index: int) -> Optional[Tuple[bytes, bytes]]:
        """Returns (key, iv) for the segment, or None if it must not be decrypted."""
        segment = self.document.segments[index]
        if segment.key_index == 0:
            return None

        key = self.keys.get(segment.key_index)
        if not key:
            return None

        declaration = self.document.keys[segment.key_index]
        return key, declaration.iv_bytes(self.document.media_sequence + index)

    def byte_range(self, index: int) -> Optional[Tuple[int, int]]:
        """
        Returns the inclusive (start, end) byte range of a sub-range segment. A missing offset continues
        right after the previous segment if that one used the same URI.
        """
        segments = self.document.segments
        segment = segments[index]
        if not segment.has_byte_range:
            return None

        # Walk back to the nearest sub-range with an explicit offset, then add up the lengths
        first = index
        while (segments[first].offset is None and first > 0
               and segments[first - 1].uri == segment.uri and segments[first - 1].has_byte_range):
            first -= 1

        start = segments[first].offset or 0
        for previous in segments[first:index]:
            start += previous.length

        return start, start + segment.length - 1


@dataclass(frozen=True)
class AcquisitionTask:
    url: str
    output_dir: Optional[str] = None
    output_file_name: Optional[str] = None
    concurrency: Optional[int] = None


@dataclass
class RunState:
    """
    Everything a single run shares between the dispatch loop and its workers.

    The pending queue, the completed count and the failed set are only touched while holding `condition`,
    every change notifies waiters so the dispatch loop can sleep instead of polling.
    """
    total: int
    temp_dir: str = ""
    playlist: Optional[ResolvedPlaylist] = None
    queue: Deque[int] = field(default_factory=deque)
    completed: int = 0
    failed: Set[int] = field(default_factory=set)
    attempts: Dict[int, int] = field(default_factory=dict)
    condition: threading.Condition = field(default_factory=threading.Condition, repr=False)

    def seed(self):
        with self.condition:
            self.queue.clear()
            self.queue.extend(range(self.total))
            self.completed = 0
            self.failed.clear()
            self.attempts.clear()

    @property
    def settled(self) -> int:
        return self.completed + len(self.failed)

    def next_index(self) -> Optional[int]:
        """
        Pops the next pending index. Blocks while the queue is empty but some indices are still being
        worked on, returns None once every index is either completed or failed.
        """
        with self.condition:
            while not self.queue:
                if self.settled >= self.total:
                    return None
                self.condition.wait()

            index = self.queue.popleft()
            self.attempts[index] = self.attempts.get(index, 0) + 1
            return index

    def attempt(self, index: int) -> int:
        """How many times the index has been handed out so far."""
        with self.condition:
            return self.attempts.get(index, 0)

    def complete(self, index: int) -> int:
        with self.condition:
            if self.completed < self.total:
                self.completed += 1
            self.condition.notify_all()
            return self.completed

    def requeue(self, index: int):
        if index < 0 or index >= self.total:
            raise IndexError(f"Invalid segment index: {index}")

        with self.condition:
            self.queue.append(index)
            self.condition.notify_all()

    def give_up(self, index: int):
        with self.condition:
            self.failed.add(index)
            self.condition.notify_all()


@dataclass
class MergeResult:
    output_path: str
    total: int
    merged: int = 0
    missing: List[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.merged == self.total


def segment_path(temp_dir: str, index: int) -> str:
    return os.path.join(temp_dir, f"{index}.ts")
