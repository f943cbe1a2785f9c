"""
日志配置：控制台 + 按大小滚动的文件日志
"""
import logging
from logging.handlers import RotatingFileHandler

from orderflow.core.config import settings

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging() -> None:
    """初始化根 logger。重复调用不会重复添加 handler。"""
    root = logging.getLogger()
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)
    root.setLevel(level)
    if getattr(root, "_orderflow_configured", False):
        return

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    try:
        log_file = settings.LOG_FILE
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        # 只读文件系统等场景下退化为仅控制台输出
        logging.getLogger(__name__).warning("文件日志初始化失败，仅输出到控制台: %s", e)

    # 第三方库降噪
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    root._orderflow_configured = True
    logging.getLogger(__name__).info("日志已初始化 level=%s", logging.getLevelName(level))
