# core/logging.py
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional
from .config import get_settings

settings = get_settings()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# backend 运行时自带的日志太啰嗦，统一压到 WARNING
NOISY_LOGGERS = ("transformers", "urllib3", "filelock", "huggingface_hub", "httpx")


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    return handler


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> int:
    """
    配置 root logger：控制台 + 可选的滚动日志文件（10MB x 5）。
    level / log_file 未传入时取 settings.LOG_LEVEL / settings.LOG_FILE；
    重复调用会替换已有 handlers。返回生效的日志级别。
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    resolved = getattr(logging, level_name, logging.INFO)
    log_file = log_file if log_file is not None else settings.LOG_FILE

    root = logging.getLogger()
    root.setLevel(resolved)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    root.addHandler(_handler(logging.StreamHandler(), resolved))
    if log_file:
        root.addHandler(_handler(
            RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"),
            resolved,
        ))

    for name in ("uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(logging.INFO)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return resolved
