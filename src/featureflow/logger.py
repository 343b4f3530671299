"""structlog ベースのロガー設定"""

from __future__ import annotations

import logging
import sys

import structlog

LOGGER_NAME = "featureflow"


def new_logger(
    level: str = "INFO",
    format: str = "json",
    name: str = LOGGER_NAME,
) -> structlog.stdlib.BoundLogger:
    """設定済みの structlog ロガーを返す。

    structlog がアプリケーション側で設定済みならその設定を尊重し、
    ``name`` の stdlib ロガーのレベルだけを調整する。

    Args:
        level: ログレベル ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        format: 出力形式 ("json" or "text")
        name: ロガー名

    Returns:
        設定済みの structlog.stdlib.BoundLogger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    logging.getLogger(name).setLevel(log_level)

    if not structlog.is_configured():
        processors: list[structlog.types.Processor]
        if format == "json":
            processors = [
                structlog.stdlib.filter_by_level,
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_logger_name,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.JSONRenderer(),
            ]
        else:
            processors = [
                structlog.stdlib.filter_by_level,
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_logger_name,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ]

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

    return structlog.stdlib.get_logger(name)
