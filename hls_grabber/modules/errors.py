# This file contains all custom exceptions for hls_grabber. Manifest and resolution errors abort a run,
# everything raised while processing a single segment is caught by the scheduler and retried.

class HLSGrabberError(Exception):
    """
    Base class for every error raised by hls_grabber.
    """
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ConfigurationError(HLSGrabberError):
    """
    Raised when a task or component is set up with values that can't work, e.g. a concurrency of 0
    or a missing playlist URL.
    """


class ManifestError(HLSGrabberError):
    """
    Raised when the playlist text can't be parsed. `line` is the 1-based line number of the offending
    line, if there is one.
    """
    def __init__(self, message, line=None):
        super().__init__(message)
        self.line = line


class MissingHeaderError(ManifestError):
    """The first line of the playlist isn't #EXTM3U."""


class DuplicateTagError(ManifestError):
    """A per-segment tag (#EXTINF or #EXT-X-BYTERANGE) appeared twice before the segment URI."""


class InvalidTagValueError(ManifestError):
    """A tag carries a value that isn't allowed for it."""


class ManifestFormatError(ManifestError):
    """A numeric tag value couldn't be parsed."""


class InvalidLineError(ManifestError):
    """A URI line appeared without a preceding #EXTINF."""


class MissingVariantURIError(ManifestError):
    """An #EXT-X-STREAM-INF tag isn't followed by the URI of its variant."""


class UnsupportedMethodError(ManifestError):
    """An #EXT-X-KEY uses an encryption method other than NONE or AES-128."""


class ResolutionError(HLSGrabberError):
    """
    Raised when a playlist URL can't be turned into a downloadable media playlist, e.g. because the chain
    of master playlists is too deep.
    """


class NoSegmentsError(ResolutionError):
    """The playlist has neither segments nor variants."""


class FetchError(HLSGrabberError):
    """
    Raises for transport failures and non-success HTTP statuses. `status_code` is None if the server was
    never reached.
    """
    def __init__(self, message, url=None, status_code=None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class CryptoError(HLSGrabberError):
    """
    Raised for a wrong key / IV length, ciphertext that isn't block aligned or corrupt padding.
    """


class StorageError(HLSGrabberError):
    """
    Raised when a segment or the output file can't be created, written or renamed.
    """


class SegmentError(HLSGrabberError):
    """
    Raised (and logged) when a segment gave up after using all of its attempts.
    """
    def __init__(self, message, index=None):
        super().__init__(message)
        self.index = index
