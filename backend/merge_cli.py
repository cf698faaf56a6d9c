#!/usr/bin/env python3
import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from models.merge_models import MergeRequest
from operators.merge_operator import MergePipeline
from utils.errors import PipelineError, ValidationError
from utils.service_config import MergeServiceConfig


logger = logging.getLogger("merge-cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Merge one audio and one video input and upload the result to Dropbox"
    )
    audio = parser.add_mutually_exclusive_group()
    audio.add_argument("--audio-url", help="Direct or shared link to the audio input")
    audio.add_argument("--audio-path", help="Dropbox path of the audio input")
    video = parser.add_mutually_exclusive_group()
    video.add_argument("--video-url", help="Direct or shared link to the video input")
    video.add_argument("--video-path", help="Dropbox path of the video input")
    parser.add_argument(
        "--out-path",
        help="Dropbox destination path for the merged file",
    )
    parser.add_argument(
        "--audio-offset-sec",
        type=float,
        default=0.0,
        help="Delay audio (+) or video (-) by this many seconds",
    )
    parser.add_argument(
        "--no-trim",
        action="store_true",
        help="Keep going until the longer input ends",
    )
    parser.add_argument(
        "--reencode-video",
        action="store_true",
        help="Re-encode video with libx264 instead of copying it",
    )
    parser.add_argument("--audio-bitrate", default="192k", help="AAC bitrate")
    parser.add_argument("--log-level", default=None, help="Log level (e.g. INFO, DEBUG)")
    return parser.parse_args(argv)


def build_request(args: argparse.Namespace) -> MergeRequest:
    return MergeRequest(
        audio_url=args.audio_url,
        audio_path=args.audio_path,
        video_url=args.video_url,
        video_path=args.video_path,
        out_path=args.out_path,
        audio_offset_sec=args.audio_offset_sec,
        trim_to_shortest=not args.no_trim,
        reencode_video=args.reencode_video,
        audio_bitrate=args.audio_bitrate,
    )


def main(argv: list[str] | None = None) -> int:
    load_dotenv(Path(__file__).resolve().parents[1] / ".env")
    args = parse_args(argv)
    config = MergeServiceConfig.from_env()

    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    pipeline = MergePipeline.from_config(config)

    def progress_callback(progress: dict[str, str]) -> None:
        logger.info(
            "Merging: out_time=%s speed=%s",
            progress.get("out_time"),
            progress.get("speed"),
        )

    try:
        result = pipeline.run(build_request(args), progress_callback=progress_callback)
    except ValidationError as e:
        logger.error(f"Invalid request: {e}")
        return 2
    except PipelineError as e:
        logger.error(f"Merge failed: {e}")
        return 1
    finally:
        pipeline.close()

    print(json.dumps(result.model_dump(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
