from .config_loader import get_default_config, load_config
from .settings import Settings

__all__ = ["Settings", "load_config", "get_default_config"]
