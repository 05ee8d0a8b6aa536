"""ロギング設定ユーティリティ"""
import logging
import os
from typing import List, Optional

from ..models.config import LoggingConfig


ROOT_LOGGER_NAME = "funnel"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _build_handlers(config: LoggingConfig) -> List[logging.Handler]:
    """コンソールと（指定があれば）ファイルへの出力先を作成"""
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if config.file:
        log_dir = os.path.dirname(config.file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(config.file, encoding="utf-8"))

    formatter = logging.Formatter(config.format, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


class LoggerManager:
    """funnel ロガー階層の設定と管理

    各モジュールは get_logger(__name__) で funnel.* の子ロガーを取り、
    出力先は setup() がルートの funnel ロガーにだけ付ける。
    """

    _logger: Optional[logging.Logger] = None

    @classmethod
    def setup(cls, config: LoggingConfig) -> logging.Logger:
        """ルートロガーを一度だけ設定（2回目以降は既存のものを返す）"""
        if cls._logger is None:
            logger = cls.get_logger()
            logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
            logger.handlers = _build_handlers(config)
            # アプリ側のルートロガーへ二重出力しない
            logger.propagate = False
            cls._logger = logger
        return cls._logger

    @classmethod
    def get_logger(cls, name: Optional[str] = None) -> logging.Logger:
        """funnel 配下のロガーを取得

        setup() 前でも使える（ライブラリとして組み込む場合やテスト用）。
        """
        if not name or name == ROOT_LOGGER_NAME:
            return logging.getLogger(ROOT_LOGGER_NAME)
        if not name.startswith(ROOT_LOGGER_NAME + "."):
            name = f"{ROOT_LOGGER_NAME}.{name}"
        return logging.getLogger(name)

    @classmethod
    def reset(cls) -> None:
        """セットアップ状態をリセット（主にテスト用）"""
        logger = cls.get_logger()
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers = []
        logger.propagate = True
        cls._logger = None
