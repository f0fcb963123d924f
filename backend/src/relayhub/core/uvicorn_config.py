"""Chuyển log của thư viện dùng `logging` chuẩn (uvicorn, apscheduler, httpx) sang loguru."""

import logging

from loguru import logger

# Logger quá ồn ào ở mức INFO trong vòng polling thiết bị
QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore")


class InterceptHandler(logging.Handler):
    """Handler để bắt log từ logging module và gửi tới loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Tìm caller thật sự bên ngoài logging module
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(tag=record.name).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def _intercept(name: str, level: int) -> None:
    std_logger = logging.getLogger(name)
    std_logger.handlers = [InterceptHandler()]
    std_logger.propagate = False
    std_logger.setLevel(level)


def setup_uvicorn_logging() -> None:
    """Cấu hình Uvicorn và các thư viện nền để sử dụng loguru."""
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        _intercept(name, logging.INFO)

    for name in QUIET_LOGGERS:
        _intercept(name, logging.WARNING)
