__all__ = ["BaseCore", "Downloader", "Callback", "config", "errors", "setup_logger", "AcquisitionTask",
           "ManifestParser", "ManifestResolver", "SegmentScheduler", "SegmentProcessor", "Merger", "parse",
           "resolve_url", "trim_to_sync_byte"]

import logging

from hls_grabber.modules import errors
from hls_grabber.modules.config import config
from hls_grabber.modules.logger import setup_logger
from hls_grabber.modules.models import AcquisitionTask
from hls_grabber.modules.progress_bars import Callback
from hls_grabber.modules.parser import ManifestParser, parse
from hls_grabber.modules.resolver import ManifestResolver
from hls_grabber.modules.urls import resolve_url
from hls_grabber.modules.download import SegmentScheduler, SegmentProcessor, Merger, trim_to_sync_byte
from hls_grabber.base import BaseCore, Downloader

logging.getLogger(__name__).addHandler(logging.NullHandler())
