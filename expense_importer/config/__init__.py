from .pipeline_config import PIPELINE_CONFIG
from .settings import EnvironmentType, ImporterSettings, get_settings

__all__ = [
    "PIPELINE_CONFIG",
    "EnvironmentType",
    "ImporterSettings",
    "get_settings",
]
