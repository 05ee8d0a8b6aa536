"""S3 へのオブジェクトアップロード"""
import os
from typing import BinaryIO, Optional, Protocol

from ..errors import UploadError
from ..utils.logger import LoggerManager


class ObjectTransport(Protocol):
    """オブジェクトストレージへの転送インターフェース"""

    def put_object(self, bucket: str, key: str, body: BinaryIO) -> None:
        ...


class ObjectUploader:
    """ローカルファイルを1件アップロードする"""

    def __init__(self, transport: ObjectTransport, bucket: str, delete_after_upload: bool = False):
        self.transport = transport
        self.bucket = bucket
        self.delete_after_upload = delete_after_upload
        self.logger = LoggerManager.get_logger(__name__)

    def upload(self, local_path: str, key: str) -> None:
        """ファイルを bucket/key にアップロード

        失敗した場合は UploadError を送出する。成功後、設定に応じてローカルファイルを削除する。
        """
        try:
            file = open(local_path, "rb")
        except FileNotFoundError as e:
            # 他のワーカーがアップロード後に削除した可能性がある
            self.logger.warning(
                f"Tried uploading file that does not exist, did another worker upload "
                f"and then delete it?: {local_path}: {e}"
            )
            raise UploadError(local_path, key, f"file not found: {local_path}") from e
        except OSError as e:
            self.logger.error(f"Failed to open file: {local_path}: {e}")
            raise UploadError(local_path, key, f"failed to open file: {local_path}: {e}") from e

        with file:
            try:
                self.transport.put_object(self.bucket, key, file)
            except Exception as e:
                raise UploadError(
                    local_path, key,
                    f"failed to upload {local_path} to {self.bucket}/{key}: {e}",
                ) from e

        self.logger.debug(f"Uploaded {local_path} to {self.bucket}/{key}")

        if self.delete_after_upload:
            self.delete_local(local_path, key)

    def delete_local(self, local_path: str, key: Optional[str] = None) -> None:
        """アップロード済みのローカルファイルを削除"""
        try:
            os.remove(local_path)
        except FileNotFoundError as e:
            self.logger.warning(
                f"Attempted to delete a file that no longer exists, did something else "
                f"already delete it?: {local_path}: {e}"
            )
        except OSError as e:
            self.logger.error(f"Failed to delete file after upload: {local_path}: {e}")
            raise UploadError(
                local_path, key, f"failed to delete file after upload: {local_path}: {e}"
            ) from e
