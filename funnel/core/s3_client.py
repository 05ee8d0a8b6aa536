"""S3クライアント管理"""
from typing import BinaryIO, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, NoCredentialsError

from ..errors import ConfigurationError
from ..models.config import AWSConfig, PipelineOptions
from ..utils.logger import LoggerManager


class S3ClientManager:
    """S3クライアントの作成と管理"""

    def __init__(self, aws_config: AWSConfig):
        self.aws_config = aws_config
        self.logger = LoggerManager.get_logger(__name__)
        self._client = None

    def get_client(self):
        """S3クライアントを取得（必要に応じて作成）"""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self):
        """S3クライアントを作成"""
        try:
            if self.aws_config.profile:
                session = boto3.Session(
                    profile_name=self.aws_config.profile,
                    region_name=self.aws_config.region,
                )
            else:
                session = boto3.Session(region_name=self.aws_config.region)

            s3_client = session.client("s3", endpoint_url=self.aws_config.endpoint_url)
            self.logger.info(f"S3 client created for region {self.aws_config.region}")
            return s3_client

        except NoCredentialsError:
            self.logger.error("AWS credentials not available.")
            raise
        except BotoCoreError as e:
            # プロファイル未定義などの設定ミス
            self.logger.error(f"Error creating S3 client: {e}")
            raise ConfigurationError(f"failed to create S3 client: {e}") from e
        except Exception as e:
            self.logger.error(f"Error creating S3 client: {e}")
            raise


def create_transfer_config(options: PipelineOptions) -> TransferConfig:
    """PipelineOptions から boto3 の TransferConfig を作成"""
    return TransferConfig(
        multipart_threshold=options.multipart_threshold,
        multipart_chunksize=options.multipart_chunksize,
        max_concurrency=options.transfer_concurrency,
        use_threads=options.transfer_concurrency > 1,
    )


class S3Transport:
    """boto3 クライアントを使った ObjectTransport 実装"""

    def __init__(self, client, options: Optional[PipelineOptions] = None):
        options = options or PipelineOptions()
        self.client = client
        self.dry_run = options.dry_run
        self.transfer_config = create_transfer_config(options)
        self.logger = LoggerManager.get_logger(__name__)

    def put_object(self, bucket: str, key: str, body: BinaryIO) -> None:
        if self.dry_run:
            self.logger.info(f"[DRY RUN]: Would upload {getattr(body, 'name', '<stream>')} to {bucket}/{key}")
            return

        # ClientError などはそのまま呼び出し元へ
        self.client.upload_fileobj(body, bucket, key, Config=self.transfer_config)
