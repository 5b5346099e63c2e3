from sessionguard.core.config.manager import ConfigManager, load_config
from sessionguard.core.config.models import ServiceConfig

__all__ = ["ConfigManager", "ServiceConfig", "load_config"]
