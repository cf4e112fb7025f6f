"""Configuration module for the automation run engine."""
from config.models import (
    AgentConfig,
    BrowserConfig,
    ReportingConfig,
    EngineConfig,
    load_config,
)

__all__ = [
    "AgentConfig",
    "BrowserConfig",
    "ReportingConfig",
    "EngineConfig",
    "load_config",
]
