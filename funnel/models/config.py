"""設定管理用のデータクラス"""
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Tuple
import json
import os

from ..errors import ConfigurationError, InvalidConcurrencyError


MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 100
DEFAULT_KEY_TEMPLATE = "{{ filePath }}"


@dataclass
class LoggingConfig:
    """ロギング設定"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class AWSConfig:
    """AWS関連の設定"""
    region: str = ""
    bucket: str = ""
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None

    def __post_init__(self):
        # リージョン未指定の場合は環境変数にフォールバック
        if not (self.region or "").strip():
            self.region = os.environ.get("AWS_DEFAULT_REGION", "")

    def validate(self) -> None:
        """リージョンとバケットのバリデーション"""
        if not (self.region or "").strip():
            raise ConfigurationError("must provide an AWS region where your S3 bucket exists")
        if not (self.bucket or "").strip():
            raise ConfigurationError("must specify an AWS S3 bucket to save files in")


@dataclass(frozen=True)
class PipelineOptions:
    """アップロードパイプラインのオプション（実行中は不変）"""
    concurrency: int = 10
    watch: bool = False
    delete_after_upload: bool = False
    key_template: str = DEFAULT_KEY_TEMPLATE
    max_attempts: int = 5
    poll_interval_seconds: float = 1.0
    retry_backoff_seconds: float = 0.0
    retry_backoff_max_seconds: float = 30.0
    exclude_patterns: Tuple[str, ...] = ()
    dry_run: bool = False
    fail_on_job_failure: bool = False
    multipart_threshold: int = 8 * 1024 * 1024  # 8MB
    multipart_chunksize: int = 8 * 1024 * 1024  # 8MB
    transfer_concurrency: int = 10

    def __post_init__(self):
        # JSON から読み込んだリストをタプルに揃える
        if not isinstance(self.exclude_patterns, tuple):
            object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))

        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise InvalidConcurrencyError(self.concurrency, MIN_CONCURRENCY, MAX_CONCURRENCY)
        if not (MIN_CONCURRENCY <= self.concurrency <= MAX_CONCURRENCY):
            raise InvalidConcurrencyError(self.concurrency, MIN_CONCURRENCY, MAX_CONCURRENCY)

        if self.max_attempts < 1:
            raise ConfigurationError(
                f"Invalid max_attempts: {self.max_attempts}. Must be at least 1"
            )
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError(
                f"Invalid poll_interval_seconds: {self.poll_interval_seconds}. Must be positive"
            )
        if self.retry_backoff_seconds < 0 or self.retry_backoff_max_seconds < 0:
            raise ConfigurationError("retry backoff must not be negative")
        if self.transfer_concurrency < 1:
            raise ConfigurationError(
                f"Invalid transfer_concurrency: {self.transfer_concurrency}. Must be at least 1"
            )


@dataclass
class Config:
    """メイン設定クラス"""
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    aws: AWSConfig = field(default_factory=AWSConfig)
    options: PipelineOptions = field(default_factory=PipelineOptions)
    paths: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """辞書から設定を作成"""
        try:
            return cls(
                logging=LoggingConfig(**data.get("logging", {})),
                aws=AWSConfig(**data.get("aws", {})),
                options=PipelineOptions(**data.get("options", {})),
                paths=list(data.get("paths", [])),
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """設定ファイルから読み込み"""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file {config_path} not found.")

        try:
            with open(config_path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Error decoding JSON from {config_path}: {e}") from e

        return cls.from_dict(data)

    def with_overrides(self, **overrides: Any) -> 'Config':
        """CLI 引数などで上書きした新しい設定を返す

        None の値は無視する。キーは各セクションのフィールド名。
        """
        sections = {"logging": self.logging, "aws": self.aws, "options": self.options}
        updated = {}
        for name, section in sections.items():
            names = {f.name for f in fields(section)}
            changes = {k: v for k, v in overrides.items() if k in names and v is not None}
            updated[name] = replace(section, **changes) if changes else section

        paths = overrides.get("paths") or self.paths
        return Config(
            logging=updated["logging"],
            aws=updated["aws"],
            options=updated["options"],
            paths=list(paths),
        )
