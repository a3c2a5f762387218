import sys

from .config import config


class Callback:
    """
    Reporters receive (label, fraction, suffix) while segments are downloaded and merged.
    Any callable with that signature works, these are the ones shipped with hls_grabber.
    """
    @classmethod
    def text_progress_bar(cls, label, fraction, suffix="", bar_length=None):
        bar_length = bar_length or config.progress_width
        fraction = min(max(fraction, 0.0), 1.0)
        filled_length = int(fraction * bar_length)
        bar = '■' * filled_length + ' ' * (bar_length - filled_length)
        sys.stdout.write(f"\r[{label}] {bar} {fraction * 100:6.2f}% {suffix}")
        sys.stdout.flush()

    @classmethod
    def custom_callback(cls, label, fraction, suffix=""):
        """This is an example of how you can implement the custom callback"""
        print(f"{label}: {fraction * 100:.2f}% {suffix}")

    @staticmethod
    def silent(label, fraction, suffix=""):
        pass
