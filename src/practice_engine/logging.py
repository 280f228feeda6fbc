"""Logging utilities.

構造化ログの初期化をまとめて提供する。出題理由などは戻り値として
返すため、ここで扱うのは運用時の調査に必要なイベントのみ。
"""

from typing import Any

import logging
import structlog
from structlog import contextvars as structlog_contextvars


_ROUNDED_FLOAT_KEYS = ("latency_ms", "window_ms")


def _round_durations(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Round duration fields so JSON lines stay compact.

    レイテンシ等の浮動小数はログ集計で小数点以下2桁あれば十分なため丸める。
    """

    for key in _ROUNDED_FLOAT_KEYS:
        value = event_dict.get(key)
        if isinstance(value, float):
            event_dict[key] = round(value, 2)
    return event_dict


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog for application-wide logging.

    アプリ全体のロギング設定を行う。標準 logging を初期化し、
    structlog で ISO タイムスタンプと JSON 形式の出力を有効化する。
    """
    # stdlib 側のフォーマットはメッセージのみ。JSON 本体は structlog が組み立てる。
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog_contextvars.merge_contextvars,
            _round_durations,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger()
