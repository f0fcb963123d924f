"""
Path Utilities - Lấy các đường dẫn cố định trong ứng dụng
Tất cả các đường dẫn được tính toán từ package root để tránh hard-code
"""

import os
from pathlib import Path


def get_app_root() -> Path:
    """
    Lấy thư mục gốc của package (backend/src/relayhub)

    Returns:
        Path: Thư mục gốc của package
    """
    return Path(__file__).resolve().parents[2]


def get_project_root() -> Path:
    """
    Lấy thư mục gốc của backend (nơi chứa run.py, data/, logs/)

    Returns:
        Path: Thư mục gốc của backend
    """
    return Path(__file__).resolve().parents[4]


def get_data_dir() -> Path:
    """
    Lấy thư mục data. Có thể override bằng biến môi trường RELAYHUB_DATA_DIR.

    Returns:
        Path: Thư mục data
    """
    override = os.environ.get("RELAYHUB_DATA_DIR")
    if override:
        return Path(override)
    return get_project_root() / "data"


def get_base_config_file() -> Path:
    """
    Lấy đường dẫn file base config (relayhub/config/config.yml)
    Đây là default config ship cùng code.
    """
    return get_app_root() / "config" / "config.yml"


def get_config_file() -> Path:
    """
    Lấy đường dẫn file override config (data/.config.yml), ưu tiên cao hơn base.
    """
    return get_data_dir() / ".config.yml"


def get_cache_dir() -> Path:
    """
    Lấy thư mục local cache cho device record (data/device_cache)
    """
    return get_data_dir() / "device_cache"
