"""
Order Service — 設定

すべて環境変数から読む。DATABASE_URL があればそれを優先し、
なければ POSTGRES_* から asyncpg 用の URL を組み立てる。
"""

import logging
import os
import sys
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str
    host: str = "127.0.0.1"
    port: int = 3000
    store_timeout: float = 5.0
    log_level: str = "INFO"


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "postgres")
    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    database = os.environ.get("POSTGRES_DB", "orders")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{database}"


def load_settings() -> Settings:
    """環境変数から設定を読む。数値が不正なら起動時に ValueError。"""
    return Settings(
        database_url=_database_url(),
        host=os.environ.get("ORDER_SERVICE_HOST", "127.0.0.1"),
        port=int(os.environ.get("ORDER_SERVICE_PORT", "3000")),
        store_timeout=float(os.environ.get("STORE_TIMEOUT", "5.0")),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """標準エラーに 1 行 1 レコードで出力する。"""
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
