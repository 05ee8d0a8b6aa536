"""funnel コアモジュール"""
from .s3_client import S3ClientManager, S3Transport
from .uploader import ObjectTransport, ObjectUploader
from .pipeline import UploadPipeline

__all__ = [
    'S3ClientManager',
    'S3Transport',
    'ObjectTransport',
    'ObjectUploader',
    'UploadPipeline'
]
