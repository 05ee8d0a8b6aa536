"""funnel: ローカルのファイルを S3 に素早く保存するツール"""
import threading
from typing import List, Optional, Sequence

from .errors import (
    ConfigurationError,
    EnumerationError,
    FunnelError,
    InvalidConcurrencyError,
    JobsFailedError,
    MultiPathWatchUnsupportedError,
    NoPathsProvidedError,
    PipelineCancelledError,
    TemplateCompileError,
    TemplateRenderError,
    UploadError,
)
from .models.config import Config, PipelineOptions
from .models.job import JobOutcome, PipelineResult, UploadEvent, UploadJob
from .utils.logger import LoggerManager
from .utils.key_template import KeyTemplate, compile_template
from .core.s3_client import S3ClientManager, S3Transport
from .core.uploader import ObjectTransport, ObjectUploader
from .core.pipeline import EventCallback, UploadPipeline

__version__ = "0.1.0"


class Funnel:
    """funnel のメインクラス（設定から各コンポーネントを組み立てる）"""

    def __init__(self, config: Config, transport: Optional[ObjectTransport] = None,
                 on_event: Optional[EventCallback] = None):
        config.aws.validate()
        self.config = config

        # ロガーをセットアップ
        self.logger = LoggerManager.setup(self.config.logging)

        # テンプレートは起動時に一度だけコンパイル
        self.key_template = compile_template(config.options.key_template)

        if transport is None:
            client = S3ClientManager(config.aws).get_client()
            transport = S3Transport(client, config.options)

        self.uploader = ObjectUploader(
            transport, config.aws.bucket, config.options.delete_after_upload
        )
        self.pipeline = UploadPipeline(
            self.uploader, self.key_template, config.options, on_event=on_event
        )
        self.logger.info("Funnel initialized")

    def run(self, paths: Optional[Sequence[str]] = None,
            cancel_event: Optional[threading.Event] = None) -> PipelineResult:
        """アップロードを実行"""
        return self.pipeline.run(list(paths or self.config.paths), cancel_event=cancel_event)


def run_pipeline(
    paths: List[str],
    watch: bool,
    delete_after_upload: bool,
    concurrency: int,
    key_template_text: str,
    transport: ObjectTransport,
    bucket: str,
    on_event: Optional[EventCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    **options,
) -> PipelineResult:
    """設定ファイルを使わずにパイプラインを実行

    transport は呼び出し元が用意する（認証情報やセッションはここでは作らない）。
    """
    if not paths:
        raise NoPathsProvidedError()
    pipeline_options = PipelineOptions(
        concurrency=concurrency,
        watch=watch,
        delete_after_upload=delete_after_upload,
        key_template=key_template_text,
        **options,
    )
    if watch and len(paths) > 1:
        raise MultiPathWatchUnsupportedError()

    key_template = compile_template(key_template_text)
    uploader = ObjectUploader(transport, bucket, delete_after_upload)
    pipeline = UploadPipeline(uploader, key_template, pipeline_options, on_event=on_event)
    return pipeline.run(paths, cancel_event=cancel_event)


__all__ = [
    'Funnel',
    'run_pipeline',
    'Config',
    'PipelineOptions',
    'PipelineResult',
    'UploadEvent',
    'UploadJob',
    'JobOutcome',
    'KeyTemplate',
    'compile_template',
    'ObjectTransport',
    'ObjectUploader',
    'S3ClientManager',
    'S3Transport',
    'UploadPipeline',
    'FunnelError',
    'ConfigurationError',
    'NoPathsProvidedError',
    'MultiPathWatchUnsupportedError',
    'InvalidConcurrencyError',
    'TemplateCompileError',
    'TemplateRenderError',
    'UploadError',
    'EnumerationError',
    'PipelineCancelledError',
    'JobsFailedError',
]
