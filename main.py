#!/usr/bin/env python3
"""
Command line transcript fetcher.

    python main.py https://www.youtube.com/watch?v=jNQXAC9IVRw --format srt
"""

import argparse
import os
import sys

from dotenv import load_dotenv

from error_handler import ErrorKind, TranscriptError, user_message
from logging_setup import configure_logging
from models import CancellationToken, extract_video_id
from transcript_formats import FORMATS, format_transcript

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fetch a YouTube transcript")
    parser.add_argument("video", help="YouTube URL or 11-character video ID")
    parser.add_argument("--lang", default=None, help="Language code (default: DEFAULT_LANGUAGE or en)")
    parser.add_argument("--format", choices=FORMATS, default="text", help="Output format")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Give up after this many seconds")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"),
                        help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()
    configure_logging(log_level=args.log_level, use_json=True)

    video_id = extract_video_id(args.video)
    if not video_id:
        print(f"Invalid YouTube video ID or URL: {args.video}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    # Imported late so .env settings are visible to the pipeline config
    from transcript_service import fetch_transcript

    cancel = CancellationToken(timeout=args.timeout)
    try:
        transcript = fetch_transcript(video_id, args.lang, cancel)
    except TranscriptError as e:
        print(user_message(e, video_id, args.lang), file=sys.stderr)
        return EXIT_INVALID_INPUT if e.kind is ErrorKind.INVALID_INPUT else EXIT_FAILURE
    except KeyboardInterrupt:
        cancel.cancel()
        print("Cancelled", file=sys.stderr)
        return EXIT_FAILURE

    print(format_transcript(transcript, args.format))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
