"""テスト用のフィクスチャ"""
import threading
from collections import defaultdict
from pathlib import Path
from typing import BinaryIO, Dict, List, Tuple

import pytest

from funnel.utils.logger import LoggerManager


class RecordingTransport:
    """アップロード内容を記録するスタブ"""

    def __init__(self):
        self.lock = threading.Lock()
        self.calls: List[Tuple[str, str]] = []
        self.bodies: Dict[str, bytes] = {}

    def put_object(self, bucket: str, key: str, body: BinaryIO) -> None:
        data = body.read()
        with self.lock:
            self.calls.append((bucket, key))
            self.bodies[key] = data


class FlakyTransport(RecordingTransport):
    """ファイルごとに指定回数だけ失敗するスタブ（-1 なら常に失敗）"""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts: Dict[str, int] = defaultdict(int)

    def put_object(self, bucket: str, key: str, body: BinaryIO) -> None:
        with self.lock:
            self.attempts[key] += 1
            attempt = self.attempts[key]
        if self.failures < 0 or attempt <= self.failures:
            raise ConnectionError(f"simulated network failure #{attempt}")
        super().put_object(bucket, key, body)


@pytest.fixture(autouse=True)
def reset_logger():
    """テストごとにロガーの状態を戻す"""
    LoggerManager.reset()
    yield
    LoggerManager.reset()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    path = tmp_path / "somefile.txt"
    path.write_text("hello funnel")
    return path


@pytest.fixture
def sample_dir(tmp_path: Path) -> Path:
    """ファイル2つだけを含むディレクトリ"""
    directory = tmp_path / "data"
    directory.mkdir()
    (directory / "a.txt").write_text("a")
    (directory / "b.log").write_text("b")
    return directory
