"""Pydantic configuration models for the automation run engine."""
from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError, ConfigurationError


# Load .env file if present
load_dotenv()


class AgentConfig(BaseModel):
    """Vision model used by the action agent."""

    model: str = Field(
        default="gpt-4o-mini",
        description="Model name to use for the LLM",
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for an OpenAI-compatible API endpoint",
    )
    api_key: str = Field(
        default="",
        description="API key for the LLM service",
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Temperature for model generation",
    )
    max_tokens: int = Field(
        default=512,
        ge=64,
        le=4096,
        description="Maximum tokens for model response",
    )
    max_rounds_per_step: int = Field(
        default=8,
        ge=1,
        le=50,
        description="Maximum model rounds spent on a single ai step",
    )
    plan_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Temperature used when generating plans from test cases",
    )
    plan_max_tokens: int = Field(
        default=2048,
        ge=256,
        le=16384,
        description="Maximum tokens for a generated plan",
    )
    client_cache_ttl_seconds: float = Field(
        default=600.0,
        gt=0,
        description="How long a constructed LLM client is reused",
    )
    client_cache_max_entries: int = Field(
        default=16,
        ge=1,
        description="Maximum number of cached LLM clients",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url doesn't have trailing slash."""
        return v.rstrip("/")

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: Any) -> Any:
        """Load values from environment variables if not explicitly set."""
        if not isinstance(data, dict):
            return data
        env_mapping = {
            "base_url": "AUTORUN_BASE_URL",
            "api_key": "AUTORUN_API_KEY",
            "model": "AUTORUN_MODEL",
        }
        for field_name, env_var in env_mapping.items():
            if field_name not in data or data[field_name] is None:
                env_value = os.getenv(env_var)
                if env_value:
                    data[field_name] = env_value
        return data


class BrowserConfig(BaseModel):
    """Headless browser session settings."""

    browser: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use",
    )
    headless: bool = Field(
        default=True,
        description="Run browser in headless mode",
    )
    viewport_width: int = Field(
        default=1280,
        ge=320,
        le=3840,
        description="Browser viewport width",
    )
    viewport_height: int = Field(
        default=800,
        ge=240,
        le=2160,
        description="Browser viewport height",
    )
    device_scale_factor: Optional[float] = Field(
        default=None,
        gt=0,
        le=4,
        description="Device scale factor; defaults to 2 on macOS and 1 elsewhere",
    )
    navigation_timeout_ms: int = Field(
        default=60_000,
        ge=1_000,
        description="Outer timeout for the initial navigation",
    )
    settle_delay_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Pause after navigation before the agent interacts",
    )

    @property
    def effective_scale_factor(self) -> float:
        if self.device_scale_factor is not None:
            return self.device_scale_factor
        return 2.0 if sys.platform == "darwin" else 1.0


class ReportingConfig(BaseModel):
    """Where reports, scratch screenshots and log snapshots go."""

    report_dir: Path = Field(
        default=Path("./public/report"),
        description="Servable directory holding HTML reports",
    )
    public_prefix: str = Field(
        default="/report",
        description="URL prefix under which report_dir is served",
    )
    scratch_dir: Path = Field(
        default=Path("./public/screenshots"),
        description="Directory for diagnostic screenshots",
    )
    log_dir: Path = Field(
        default=Path("./data/automation"),
        description="Directory for per-test-case execution log snapshots",
    )
    report_settle_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Wait after execution before reading the report",
    )
    allow_latest_report_fallback: bool = Field(
        default=False,
        description="Fall back to the newest report file when no identifier match exists",
    )
    viewer_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Report viewer load attempts",
    )
    viewer_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Pause between report viewer attempts",
    )

    @field_validator("report_dir", "scratch_dir", "log_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v

    @field_validator("public_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        return "/" + v.strip("/")


class EngineConfig(BaseModel):
    """Root configuration model combining all config sections."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    framework: str = Field(
        default="vision-agent",
        description="Framework name recorded on runs, issues and configs",
    )
    default_environment: str = Field(
        default="test",
        description="Environment recorded when the caller gives none",
    )
    data_dir: Path = Field(
        default=Path("./data"),
        description="Directory for the JSON record stores",
    )
    generate_missing_plans: bool = Field(
        default=False,
        description="Generate and store a plan when a test case has no active automation configuration",
    )
    plan_target_url: str = Field(
        default="",
        description="Target URL suggested to the model when generating plans",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        if isinstance(v, str):
            return Path(v)
        return v


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> EngineConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults
    """
    config_data: dict[str, Any] = {}

    explicit = config_path is not None
    if config_path is None:
        config_path = Path("autorun.yaml")

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                if config_path.suffix in {".yaml", ".yml"}:
                    config_data = yaml.safe_load(f) or {}
                else:
                    config_data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Invalid config file: {exc}", {"path": str(config_path)}) from exc
    elif explicit:
        raise ConfigFileNotFoundError(str(config_path))

    if not isinstance(config_data, dict):
        raise ConfigurationError("Config file must contain a mapping", {"path": str(config_path)})

    config = EngineConfig.model_validate(config_data)

    # Apply CLI overrides
    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = EngineConfig.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "browser": ("browser", "browser"),
        "headless": ("browser", "headless"),
        "verbose": ("verbose", None),
        "framework": ("framework", None),
        "data_dir": ("data_dir", None),
        "report_dir": ("reporting", "report_dir"),
        "base_url": ("agent", "base_url"),
        "model": ("agent", "model"),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "headful":
            config_dict["browser"]["headless"] = not value
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
