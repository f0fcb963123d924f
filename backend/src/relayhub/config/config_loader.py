"""
Config Loader - Load config từ YAML files với multi-source merge support
"""

from copy import deepcopy
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml

from relayhub.core.utils.paths import get_base_config_file, get_config_file

_CACHE_LOCK = RLock()
_CONFIG_CACHE: Optional[Dict[str, Any]] = None
ConfigSignature = Tuple[Tuple[str, int, int, bool], ...]
_CONFIG_SIGNATURE: Optional[ConfigSignature] = None


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Đọc YAML và trả về dict rỗng nếu file trống hoặc lỗi."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except Exception as e:
        print(f"⚠️  Lỗi load config từ {path}: {e}")
        return {}


def _build_signature(paths: Iterable[Path]) -> ConfigSignature:
    signature = []
    for path in paths:
        try:
            stat = path.stat()
        except OSError:
            signature.append((str(path), 0, 0, False))
        else:
            signature.append((str(path), int(stat.st_mtime_ns), stat.st_size, True))
    return tuple(signature)


def _shallow_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge hai config dicts.
    Override config ghi đè toàn bộ top-level key của base.
    """
    result = deepcopy(base)
    result.update(override)
    return result


def load_config(force_reload: bool = False) -> Dict[str, Any]:
    """
    Load config từ 2 nguồn và merge với shallow merge strategy.

    Files:
        1. Base config: relayhub/config/config.yml (default settings)
        2. Override config: data/.config.yml (user overrides, ưu tiên cao)

    Cache được invalidate khi bất kỳ file nào thay đổi (mtime/size).

    Args:
        force_reload: Bỏ qua cache và load lại từ files

    Returns:
        Dict[str, Any]: Merged config
    """
    base_path = get_base_config_file()
    override_path = get_config_file()
    cache_paths = [base_path, override_path]
    current_signature = _build_signature(cache_paths)

    with _CACHE_LOCK:
        global _CONFIG_CACHE, _CONFIG_SIGNATURE

        if (
            not force_reload
            and _CONFIG_CACHE is not None
            and _CONFIG_SIGNATURE == current_signature
        ):
            return deepcopy(_CONFIG_CACHE)

        base_config: Dict[str, Any] = {}
        if base_path.exists():
            base_config = _read_yaml(base_path)

        override_config: Dict[str, Any] = {}
        if override_path.exists():
            override_config = _read_yaml(override_path)
            print(f"✅ Override config loaded từ: {override_path}")

        if base_config or override_config:
            config = _shallow_merge(base_config, override_config)
        else:
            print("⚠️  Không tìm thấy config files, dùng default fallback")
            config = get_default_config()

        _CONFIG_CACHE = config
        _CONFIG_SIGNATURE = current_signature
        return deepcopy(config)


def get_default_config() -> Dict[str, Any]:
    """Get default config"""
    return {
        "server": {"ip": "0.0.0.0", "port": 8000},
        "client": {"owner_id": "", "tz": "UTC"},
        "log": {
            "log_level": "INFO",
            "log_dir": "logs",
            "log_file": "relayhub.log",
        },
    }
