import sys
from pathlib import Path

from loguru import logger

from relayhub.config.config_loader import load_config
from relayhub.core.utils.paths import get_data_dir, get_project_root

SERVER_VERSION = "0.1.0"
_logger_initialized = False

DEFAULT_LOG_FORMAT = (
    "<green>{time:YYMMDD HH:mm:ss}</green>[{version}]"
    "[<light-blue>{extra[tag]}</light-blue>]-<level>{level}</level>-"
    "<light-green>{message}</light-green>"
)
DEFAULT_LOG_FORMAT_FILE = (
    "{time:YYYY-MM-DD HH:mm:ss} - {version} - {name} - {level} - {extra[tag]} - {message}"
)


def formatter(record):
    """Bổ sung tag mặc định cho log nếu module chưa bind tag"""
    record["extra"].setdefault("tag", record["name"])
    return record["message"]


def setup_logging():
    """Thiết lập logging với loguru"""
    global _logger_initialized

    # Chỉ cấu hình log khi khởi tạo lần đầu
    if not _logger_initialized:
        log_config = load_config().get("log", {})

        log_format = log_config.get("log_format", DEFAULT_LOG_FORMAT)
        log_format_file = log_config.get("log_format_file", DEFAULT_LOG_FORMAT_FILE)
        log_format = log_format.replace("{version}", SERVER_VERSION)
        log_format_file = log_format_file.replace("{version}", SERVER_VERSION)

        log_level = log_config.get("log_level", "INFO")

        log_dir = Path(log_config.get("log_dir", "logs"))
        if not log_dir.is_absolute():
            log_dir = get_project_root() / log_dir
        log_file = log_config.get("log_file", "relayhub.log")

        data_dir_value = log_config.get("data_dir")
        data_dir = Path(data_dir_value) if data_dir_value else get_data_dir()

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            # Fallback to /tmp if logs directory is not writable
            log_dir = Path("/tmp/logs")
            log_dir.mkdir(parents=True, exist_ok=True)

        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            pass

        logger.remove()

        # Ghi log ra console
        logger.add(sys.stdout, format=log_format, level=log_level, filter=formatter)

        # Ghi log ra file, xoay vòng theo kích thước
        logger.add(
            log_dir / log_file,
            format=log_format_file,
            level=log_level,
            filter=formatter,
            rotation="10 MB",
            retention="30 days",
            compression=None,
            encoding="utf-8",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
        _logger_initialized = True

    return logger


def get_logger(module_name: str = None):
    """Lấy logger instance. Sử dụng: get_logger(__name__)"""
    if not _logger_initialized:
        setup_logging()

    if module_name:
        return logger.bind(tag=module_name)
    return logger
