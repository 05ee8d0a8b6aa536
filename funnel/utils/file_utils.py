"""ファイル操作関連のユーティリティ"""
import fnmatch
import os
import stat
import threading
from typing import Callable, Generator, Iterable, List, Optional

from ..errors import (
    EnumerationError,
    MultiPathWatchUnsupportedError,
    NoPathsProvidedError,
    PipelineCancelledError,
)
from ..models.job import UploadJob
from .logger import LoggerManager


class PathEnumerator:
    """パスをアップロードジョブに展開する

    submit はパイプラインへの投入関数。ワーカーが空くまでブロックする
    （バックプレッシャー）。
    """

    def __init__(
        self,
        submit: Callable[[UploadJob], None],
        poll_interval: float = 1.0,
        exclude_patterns: Iterable[str] = (),
        cancel_event: Optional[threading.Event] = None,
    ):
        self.submit = submit
        self.poll_interval = poll_interval
        self.exclude_patterns = list(exclude_patterns)
        self.cancel_event = cancel_event or threading.Event()
        self.logger = LoggerManager.get_logger(__name__)

    def should_exclude(self, file_path: str) -> bool:
        """ファイルが除外パターンに一致するかチェック"""
        file_name = os.path.basename(file_path)

        for pattern in self.exclude_patterns:
            # ファイル名でのマッチ
            if fnmatch.fnmatch(file_name, pattern):
                return True
            # パス全体でのマッチ
            if fnmatch.fnmatch(file_path, f"*{pattern}*"):
                return True

        return False

    def enumerate(self, paths: List[str], watch: bool = False) -> int:
        """全パスを列挙してジョブを投入し、投入数を返す

        watch が有効な場合はキャンセルされるまで戻らない。
        """
        if not paths:
            raise NoPathsProvidedError()

        if len(paths) == 1:
            return self._process_single_path(paths[0], watch)

        if watch:
            raise MultiPathWatchUnsupportedError()

        count = 0
        for path in paths:
            count += self._process_single_path(path, watch=False)
        return count

    def iter_files(self, directory: str) -> Generator[str, None, None]:
        """ディレクトリを再帰的に走査し、通常ファイルのみを返す

        FIFO・ソケット・リンク切れのシンボリックリンクなどは対象外。
        """
        def on_error(error: OSError) -> None:
            # 走査中に消えたエントリは無視
            if isinstance(error, FileNotFoundError):
                self.logger.debug(f"Skipping path removed during walk: {error.filename}")
                return
            raise EnumerationError(f"failed to walk directory: {directory}: {error}") from error

        for root, dirs, files in os.walk(directory, onerror=on_error):
            dirs[:] = [d for d in dirs if not self.should_exclude(os.path.join(root, d))]

            for file in files:
                file_path = os.path.join(root, file)
                if self.should_exclude(file_path):
                    continue
                if not os.path.isfile(file_path):
                    self.logger.debug(f"Skipping non-regular file: {file_path}")
                    continue
                yield file_path

    def _process_single_path(self, path: str, watch: bool) -> int:
        mode = self._stat_mode(path)

        if stat.S_ISDIR(mode):
            return self._enqueue_dir(path, watch)
        if not stat.S_ISREG(mode):
            raise EnumerationError(f"not a regular file or directory: {path}")

        if not watch:
            self._enqueue(path)
            return 1

        count = 0
        while True:
            self._enqueue(path)
            count += 1
            self._sleep()

    def _enqueue_dir(self, directory: str, watch: bool) -> int:
        count = self._enqueue_dir_contents(directory)
        if not watch:
            return count

        while True:
            self._sleep()
            count += self._enqueue_dir_contents(directory)

    def _enqueue_dir_contents(self, directory: str) -> int:
        count = 0
        for file_path in self.iter_files(directory):
            self._enqueue(file_path)
            count += 1
        self.logger.debug(f"Enqueued {count} file(s) from {directory}")
        return count

    def _enqueue(self, path: str) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelledError()
        self.submit(UploadJob(path=path))

    def _sleep(self) -> None:
        if self.cancel_event.wait(self.poll_interval):
            raise PipelineCancelledError()

    @staticmethod
    def _stat_mode(path: str) -> int:
        try:
            return os.stat(path).st_mode
        except OSError as e:
            raise EnumerationError(f"failed to stat path: {path}: {e}") from e
