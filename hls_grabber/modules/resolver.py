import logging
from typing import Dict, Optional

from .config import config as default_config
from .errors import ResolutionError, NoSegmentsError, UnsupportedMethodError
from .logger import setup_logger
from .models import Document, ResolvedPlaylist, CryptMethod
from .parser import ManifestParser
from .urls import resolve_url


class ManifestResolver:
    """
    Resolves a playlist URL into a media playlist with its keys.

    `core` is anything with a `fetch(url, get_bytes=False)` method (normally `hls_grabber.BaseCore`).
    Fetch errors are not caught here, a playlist or key we can't get means we can't download anything.
    """
    def __init__(self, core, config=default_config, parser: Optional[ManifestParser] = None,
                 max_depth: Optional[int] = None, logger: Optional[logging.Logger] = None):
        self.core = core
        self.config = config
        self.parser = parser or ManifestParser()
        self.max_depth = max_depth if max_depth is not None else config.max_playlist_depth
        self.logger = logger or setup_logger("HLS - [Resolver]")

    def resolve(self, url: str) -> ResolvedPlaylist:
        playlist = self._resolve_document(url, depth=0)
        self.fetch_keys(playlist)
        return playlist

    def _resolve_document(self, url: str, depth: int) -> ResolvedPlaylist:
        if depth > self.max_depth:
            raise ResolutionError(f"Gave up after following {self.max_depth} master playlists, last URL: {url}")

        self.logger.info(f"Fetching playlist: {url}")
        document: Document = self.parser.parse(self.core.fetch(url))

        if document.is_master:
            # Always the first variant, no bandwidth / resolution based selection
            variant = document.variants[0]
            variant_url = resolve_url(url, variant.uri)
            self.logger.info(f"Master playlist with {len(document.variants)} variants, "
                             f"following the first one: {variant_url}")
            return self._resolve_document(variant_url, depth + 1)

        if not document.segments:
            raise NoSegmentsError(f"No TS file description found in the M3U8 file: {url}")

        self.logger.debug(f"Media playlist {url} has {len(document.segments)} segments")
        return ResolvedPlaylist(url=url, document=document)

    def fetch_keys(self, playlist: ResolvedPlaylist):
        """Fetches the key material of every AES-128 key. Keys sharing a URI are only requested once."""
        fetched: Dict[str, bytes] = {}
        for index, key in sorted(playlist.document.keys.items()):
            if key.method in ("", CryptMethod.NONE):
                continue

            if key.method != CryptMethod.AES_128:
                raise UnsupportedMethodError(f"Unknown or unsupported encryption method: {key.method}")

            key_url = resolve_url(playlist.url, key.uri)
            if key_url not in fetched:
                self.logger.info(f"Fetching key #{index}: {key_url}")
                fetched[key_url] = self.core.fetch(key_url, get_bytes=True)

            playlist.keys[index] = fetched[key_url]
