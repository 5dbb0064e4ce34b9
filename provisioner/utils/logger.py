"""gvm-provision 日志配置

每条记录同时写入两个目的地：
  - 控制台 (stderr)：按级别着色，便于操作员实时跟踪
  - 持久日志文件：追加写入，供事后审计

持久文件不可写时降级为仅控制台输出，不中断部署。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import click

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_LEVEL_COLORS = {
    logging.DEBUG: "bright_black",
    logging.INFO: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于 CI / 日志平台消费

    输出格式:
        {
            "timestamp": "2024-01-01T12:00:00+00:00",
            "level": "INFO",
            "logger": "module.name",
            "message": "log message",
            "exception": "traceback..." (仅在有异常时)
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            # 使用 record.created，记录事件发生时间而非格式化时间
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """控制台格式器：级别标签按严重程度着色"""

    def __init__(self, color: bool = True) -> None:
        super().__init__(TEXT_FORMAT, datefmt=DATE_FORMAT)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if not self.color:
            return line
        return click.style(line, fg=_LEVEL_COLORS.get(record.levelno),
                           bold=record.levelno >= logging.ERROR)


def _reset_root() -> logging.Logger:
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    return root


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: str | Path | None = None,
) -> Path | None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR）
        json_output: 为 True 时控制台和文件都使用 JSON 格式
        log_file: 持久日志文件路径，None 表示仅控制台

    返回:
        实际生效的持久日志文件路径；文件不可写时返回 None
    """
    root = _reset_root()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    console = logging.StreamHandler(sys.stderr)
    if json_output:
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(ConsoleFormatter(color=sys.stderr.isatty()))
    root.addHandler(console)

    if log_file is None:
        return None

    path = Path(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        logging.getLogger(__name__).warning(
            "持久日志文件不可写，降级为仅控制台输出: %s (%s)", path, e,
        )
        return None

    if json_output:
        file_handler.setFormatter(JSONFormatter())
    else:
        file_handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(file_handler)
    return path


def reset_logging() -> None:
    """重置根日志器配置，常用于测试环境"""
    _reset_root()
