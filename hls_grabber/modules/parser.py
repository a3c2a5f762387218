"""
Line based parser for HLS playlists (master and media).

The parser never touches the network, it only turns playlist text into a `Document`. Every tag is validated on
its own and errors carry the (1-based) line number they were found on.
"""

import re
import logging
from typing import Dict, List, Optional

from .errors import (MissingHeaderError, DuplicateTagError, InvalidTagValueError,
                     ManifestFormatError, InvalidLineError, MissingVariantURIError, UnsupportedMethodError)
from .logger import setup_logger
from .models import Document, Segment, EncryptionKey, VariantReference, PlaylistType, CryptMethod

EXT_M3U = "#EXTM3U"
EXT_INF = "#EXTINF:"
EXT_BYTE_RANGE = "#EXT-X-BYTERANGE:"
EXT_KEY = "#EXT-X-KEY"
EXT_STREAM_INF = "#EXT-X-STREAM-INF:"
EXT_END_LIST = "#EXT-X-ENDLIST"
EXT_PLAYLIST_TYPE = "#EXT-X-PLAYLIST-TYPE:"
EXT_TARGET_DURATION = "#EXT-X-TARGETDURATION:"
EXT_MEDIA_SEQUENCE = "#EXT-X-MEDIA-SEQUENCE:"
EXT_VERSION = "#EXT-X-VERSION:"

ATTRIBUTE_PATTERN = re.compile(r'\s*(?P<key>[A-Za-z0-9-]+)=(?P<value>"[^"]*"|[^,]*)\s*(?:,|$)')


def parse_attributes(value: str) -> Dict[str, str]:
    """
    Parses an attribute list like METHOD=AES-128,URI="key.key",IV=0x1234. Quoted values may contain commas,
    the quotes themselves are stripped.
    """
    attributes = {}
    for match in ATTRIBUTE_PATTERN.finditer(value):
        attributes[match.group("key").upper()] = match.group("value").strip().strip('"')

    return attributes


def _tag_value(line: str, tag: str) -> str:
    return line[len(tag):].strip()


def _to_int(value: str, tag: str, line_number: int, minimum: Optional[int] = None) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ManifestFormatError(f"Invalid {tag} value: {value!r}, line: {line_number}", line=line_number)

    if minimum is not None and number < minimum:
        raise ManifestFormatError(f"Invalid {tag} value: {value!r}, line: {line_number}", line=line_number)

    return number


def _to_float(value: str, tag: str, line_number: int) -> float:
    try:
        return float(value)
    except ValueError:
        raise ManifestFormatError(f"Invalid {tag} value: {value!r}, line: {line_number}", line=line_number)


class _PendingSegment:
    """Collects the tags of a segment until its URI line shows up."""

    def __init__(self):
        self.has_inf = False
        self.has_byte_range = False
        self.duration = 0.0
        self.title = ""
        self.key_index = 0
        self.length = None
        self.offset = None

    def build(self, uri: str) -> Segment:
        return Segment(uri=uri, duration=self.duration, title=self.title, key_index=self.key_index,
                       length=self.length, offset=self.offset)


class ManifestParser:
    """
    Turns playlist text into a `Document`.

    >>> doc = ManifestParser().parse("#EXTM3U\\n#EXTINF:9.009,\\nseg0.ts\\n#EXT-X-ENDLIST\\n")
    >>> doc.segments[0].uri
    'seg0.ts'
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or setup_logger("HLS - [Parser]")

    def parse(self, text: str) -> Document:
        lines = text.lstrip("\ufeff").splitlines()
        if not lines or lines[0].strip() != EXT_M3U:
            raise MissingHeaderError(f"Invalid m3u8, missing {EXT_M3U} in line 1", line=1)

        document = Document()
        pending = _PendingSegment()
        key_index = 0

        i = 1
        while i < len(lines):
            line = lines[i].strip()
            line_number = i + 1
            i += 1

            if not line:
                continue

            if line.startswith(EXT_PLAYLIST_TYPE):
                self._parse_playlist_type(line, document, line_number)

            elif line.startswith(EXT_TARGET_DURATION):
                document.target_duration = _to_float(_tag_value(line, EXT_TARGET_DURATION),
                                                     "EXT-X-TARGETDURATION", line_number)

            elif line.startswith(EXT_MEDIA_SEQUENCE):
                document.media_sequence = _to_int(_tag_value(line, EXT_MEDIA_SEQUENCE),
                                                  "EXT-X-MEDIA-SEQUENCE", line_number, minimum=0)

            elif line.startswith(EXT_VERSION):
                document.version = _to_int(_tag_value(line, EXT_VERSION), "EXT-X-VERSION", line_number)

            elif line.startswith(EXT_STREAM_INF):
                variant = self._parse_stream_inf(line, line_number)
                i, variant.uri = self._variant_uri(lines, i)
                document.variants.append(variant)

            elif line.startswith(EXT_INF):
                if pending.has_inf:
                    raise DuplicateTagError(f"Duplicate EXTINF: {line}, line: {line_number}", line=line_number)

                self._parse_ext_inf(line, pending, line_number)
                pending.has_inf = True
                pending.key_index = key_index

            elif line.startswith(EXT_BYTE_RANGE):
                if pending.has_byte_range:
                    raise DuplicateTagError(f"Duplicate EXT-X-BYTERANGE: {line}, line: {line_number}",
                                            line=line_number)

                self._parse_byte_range(line, pending, line_number)
                pending.has_byte_range = True

            elif line.startswith(EXT_KEY):
                key_index += 1
                document.keys[key_index] = self._parse_key(line, line_number)

            elif line == EXT_END_LIST:
                document.end_list = True

            elif line.startswith("#"):
                # Comments and tags we don't need (EXT-X-DISCONTINUITY, EXT-X-PROGRAM-DATE-TIME, ...)
                continue

            else:
                if not pending.has_inf:
                    raise InvalidLineError(f"Invalid line: {line}, line: {line_number}", line=line_number)

                document.segments.append(pending.build(line))
                pending = _PendingSegment()

        self.logger.debug(f"Parsed playlist: {len(document.segments)} segments, {len(document.variants)} variants, "
                          f"{len(document.keys)} keys")
        return document

    @staticmethod
    def _parse_playlist_type(line: str, document: Document, line_number: int):
        value = _tag_value(line, EXT_PLAYLIST_TYPE)
        try:
            document.playlist_type = PlaylistType(value)
        except ValueError:
            raise InvalidTagValueError(f"Invalid playlist type: {value}, line: {line_number}", line=line_number)

    @staticmethod
    def _parse_stream_inf(line: str, line_number: int) -> VariantReference:
        params = parse_attributes(_tag_value(line, EXT_STREAM_INF))
        if not params:
            raise InvalidTagValueError(f"Empty EXT-X-STREAM-INF parameters, line: {line_number}", line=line_number)

        variant = VariantReference()
        if "BANDWIDTH" in params:
            variant.bandwidth = _to_int(params["BANDWIDTH"], "BANDWIDTH", line_number, minimum=0)
        if "PROGRAM-ID" in params:
            variant.program_id = _to_int(params["PROGRAM-ID"], "PROGRAM-ID", line_number, minimum=0)
        variant.resolution = params.get("RESOLUTION", "")
        variant.codecs = params.get("CODECS", "")
        return variant

    @staticmethod
    def _variant_uri(lines: List[str], i: int):
        """Returns (next line position, uri) of the URI line that must follow an EXT-X-STREAM-INF tag."""
        while i < len(lines) and not lines[i].strip():
            i += 1

        if i >= len(lines) or lines[i].strip().startswith("#"):
            raise MissingVariantURIError(f"Invalid EXT-X-STREAM-INF URI, line: {i + 1}", line=i + 1)

        return i + 1, lines[i].strip()

    @staticmethod
    def _parse_ext_inf(line: str, pending: _PendingSegment, line_number: int):
        value = _tag_value(line, EXT_INF)
        duration, _, title = value.partition(",")
        pending.duration = _to_float(duration.strip(), "EXTINF", line_number)
        pending.title = title.strip()

    @staticmethod
    def _parse_byte_range(line: str, pending: _PendingSegment, line_number: int):
        value = _tag_value(line, EXT_BYTE_RANGE)
        if not value:
            raise InvalidTagValueError(f"Invalid EXT-X-BYTERANGE, line: {line_number}", line=line_number)

        length, separator, offset = value.partition("@")
        if separator:
            pending.offset = _to_int(offset.strip(), "EXT-X-BYTERANGE offset", line_number, minimum=0)
        pending.length = _to_int(length.strip(), "EXT-X-BYTERANGE length", line_number, minimum=0)

    @staticmethod
    def _parse_key(line: str, line_number: int) -> EncryptionKey:
        value = line[len(EXT_KEY):].lstrip(":")
        params = parse_attributes(value)
        if not params:
            raise InvalidTagValueError(f"Invalid EXT-X-KEY: {line}, line: {line_number}", line=line_number)

        method = params.get("METHOD", "")
        try:
            crypt_method = CryptMethod(method)
        except ValueError:
            raise UnsupportedMethodError(f"Invalid EXT-X-KEY method: {method}, line: {line_number}",
                                         line=line_number)

        return EncryptionKey(method=crypt_method, uri=params.get("URI", ""), iv=params.get("IV", ""))


def parse(text: str) -> Document:
    """Shortcut for ManifestParser().parse(text)."""
    return ManifestParser().parse(text)


__all__ = ["ManifestParser", "parse", "parse_attributes"]
