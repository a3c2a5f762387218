import sys
import time
import logging
import argparse

from hls_grabber.base import Downloader, BaseCore
from hls_grabber.modules.config import RuntimeConfig
from hls_grabber.modules.errors import HLSGrabberError
from hls_grabber.modules.models import AcquisitionTask
from hls_grabber.modules.progress_bars import Callback

# sample
# python -m hls_grabber -u https://example.com/842x480/video.m3u8 -o ~/Videos -n episode_01


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hls-grabber",
                                     description="Download an HLS (m3u8) stream into a single file")
    parser.add_argument("-u", "--url", default="", help="URL of the m3u8 playlist")
    parser.add_argument("-o", "--output", default=None, help="Output folder (default: ~/Downloads)")
    parser.add_argument("-n", "--name", default="output", help="File name, .mp4 is appended if it has no extension")
    parser.add_argument("-c", "--concurrency", type=int, default=None, help="Segments downloaded at the same time")
    parser.add_argument("--max-attempts", type=int, default=None,
                        help="Give a segment up after this many failed attempts (default: retry forever)")
    parser.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")
    parser.add_argument("--proxy", default=None, help="Proxy URL, e.g. socks5://127.0.0.1:9050")
    parser.add_argument("--no-verify", action="store_true", help="Don't verify TLS certificates")
    parser.add_argument("--quiet", action="store_true", help="Don't draw progress bars")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    return parser


def build_config(args) -> RuntimeConfig:
    config = RuntimeConfig()
    if args.concurrency is not None:
        config.concurrency = args.concurrency
    if args.max_attempts is not None:
        config.max_segment_attempts = args.max_attempts
    if args.timeout is not None:
        config.timeout = args.timeout
    if args.proxy:
        config.proxy = args.proxy
    if args.no_verify:
        config.verify_ssl = False
    return config


def main(argv=None, downloader=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.url:
        print("Error: parameter '-u' (M3U8 URL) is required", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    config = build_config(args)
    if downloader is None:
        reporter = Callback.silent if args.quiet else Callback.text_progress_bar
        downloader = Downloader(core=BaseCore(config=config), config=config, reporter=reporter)

    if args.verbose or args.log_file:
        downloader.enable_logging(log_file=args.log_file, level=logging.DEBUG if args.verbose else logging.INFO)

    start = time.time()
    task = AcquisitionTask(url=args.url, output_dir=args.output, output_file_name=args.name,
                           concurrency=config.concurrency)
    try:
        result = downloader.start(task)
    except HLSGrabberError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        downloader.core.close()

    if not result.complete:
        print(f"[warning] {result.total - result.merged} of {result.total} segments are missing", file=sys.stderr)

    print(f"[output] {result.output_path}")
    print(f"[elapsed] {time.time() - start:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
