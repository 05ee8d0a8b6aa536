#!/usr/bin/env python3
"""funnel - ファイルを素早く AWS S3 に保存するツール"""
import argparse
import signal
import sys
import threading
from typing import List, Optional

from funnel import Funnel, __version__
from funnel.errors import FunnelError, PipelineCancelledError
from funnel.models.config import Config


def build_parser() -> argparse.ArgumentParser:
    """コマンドライン引数の定義"""
    parser = argparse.ArgumentParser(
        prog="funnel",
        usage="funnel [OPTIONS] [PATHS]",
        description="Funnel is a tool for quickly saving files to AWS S3.",
        epilog="Example: funnel --region=us-east-1 --bucket=some-cool-bucket /some/directory",
    )
    parser.add_argument("paths", nargs="*", help="Files or directories to upload")
    parser.add_argument("-r", "--region", help='The AWS region your S3 bucket is in, eg. "us-east-1"')
    parser.add_argument("-b", "--bucket", help="The AWS S3 bucket you want to save files to")
    parser.add_argument("-w", "--watch", action="store_true", default=None,
                        help="Whether to watch a path for changes")
    parser.add_argument("-d", "--delete", dest="delete_after_upload", action="store_true", default=None,
                        help="Delete each local file after it has been uploaded")
    parser.add_argument("-c", "--concurrency", type=int,
                        help="Number of concurrent uploads (1-100, default 10)")
    parser.add_argument("-k", "--key-template", dest="key_template",
                        help='Template for object keys, eg. "{{ dateWithFormat \\"2006-01-02\\" }}/{{ fileName }}"')
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument("--profile", help="AWS profile to use")
    parser.add_argument("--endpoint-url", dest="endpoint_url", help="Custom S3 endpoint URL")
    parser.add_argument("--log-level", dest="level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", default=None,
                        help="Log what would be uploaded without uploading")
    parser.add_argument("--fail-on-error", dest="fail_on_job_failure", action="store_true", default=None,
                        help="Exit non-zero if any file failed to upload")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(args: argparse.Namespace) -> Config:
    """設定ファイルと引数から設定を作成（引数が優先）"""
    config = Config.from_file(args.config) if args.config else Config()
    overrides = {k: v for k, v in vars(args).items() if k != "config"}
    return config.with_overrides(**overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """メイン関数"""
    args = build_parser().parse_args(argv)
    cancel_event = threading.Event()

    # SIGTERM で監視モードを含む実行を停止する
    previous_handler = signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())

    try:
        config = load_config(args)
        uploader = Funnel(config)
        uploader.run(cancel_event=cancel_event)
    except (KeyboardInterrupt, PipelineCancelledError):
        print("Upload cancelled")
        return 130
    except (FunnelError, OSError) as e:
        print(f"Upload failed: {e}")
        return 1
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)

    return 0


if __name__ == "__main__":
    sys.exit(main())
