"""funnel で使用する例外クラス"""
from typing import Optional


class FunnelError(Exception):
    """funnel の基底例外"""


class ConfigurationError(FunnelError, ValueError):
    """設定エラー（処理は一切行わない）"""


class NoPathsProvidedError(ConfigurationError):
    """アップロード対象のパスが指定されていない"""

    def __init__(self, message: str = (
        "must provide at least one path to a file or directory to upload to AWS S3"
    )):
        super().__init__(message)


class MultiPathWatchUnsupportedError(ConfigurationError):
    """複数パスの監視は未サポート"""

    def __init__(self, message: str = "watching multiple paths not supported"):
        super().__init__(message)


class InvalidConcurrencyError(ConfigurationError):
    """並列数が範囲外"""

    def __init__(self, concurrency: int, minimum: int = 1, maximum: int = 100):
        self.concurrency = concurrency
        super().__init__(
            f"Invalid concurrency: {concurrency}. Must be between {minimum} and {maximum}"
        )


class TemplateCompileError(FunnelError):
    """キーテンプレートの構文エラー"""

    def __init__(self, message: str, position: Optional[int] = None):
        self.position = position
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)


class TemplateRenderError(FunnelError):
    """キーテンプレートの評価エラー"""


class UploadError(FunnelError):
    """1回のアップロード試行の失敗"""

    def __init__(self, path: str, key: Optional[str], message: str):
        self.path = path
        self.key = key
        super().__init__(message)


class EnumerationError(FunnelError):
    """パス列挙中の回復不能なエラー"""


class PipelineCancelledError(FunnelError):
    """パイプラインがキャンセルされた"""

    def __init__(self, message: str = "upload pipeline cancelled"):
        super().__init__(message)


class JobsFailedError(FunnelError):
    """一部のジョブが最終的に失敗した"""

    def __init__(self, result):
        self.result = result
        super().__init__(
            f"{result.failed} of {result.enqueued} file(s) failed to upload"
        )
