# browserflow/utils/config.py
from __future__ import annotations

import functools
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------- Enums ----------

class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ---------- Engine config (immutable per engine) ----------

class EngineConfig(BaseModel):
    """Per-engine knobs the interpreter reads on every run."""

    model_config = ConfigDict(frozen=True)

    headless: bool = True
    timeout_ms: int = Field(default=30000, ge=1)
    max_concurrent: int = Field(default=2, ge=1)
    screenshot_on_error: bool = True


# ---------- Settings ----------

class Settings(BaseSettings):
    """
    Central configuration for browserflow.

    Values load in this order of precedence:
      1) Environment variables
      2) .env file in project root
      3) Defaults below
    """

    # ---- Browser configuration ----
    HEADLESS: bool = Field(default=True, description="Run the browser headless")
    SLOW_MO: int = Field(default=0, ge=0, description="Slow down actions (ms) for debugging")
    BROWSER_WS_ENDPOINT: Optional[str] = Field(
        default=None,
        description="Attach to a pre-provisioned browser over CDP instead of launching one",
    )
    VIEWPORT_WIDTH: int = Field(default=1920, ge=320, le=7680)
    VIEWPORT_HEIGHT: int = Field(default=1080, ge=320, le=4320)
    RANDOMIZE_VIEWPORT: bool = Field(default=True)
    USER_AGENT: Optional[str] = Field(
        default="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )

    # ---- Execution ----
    TIMEOUT_MS: int = Field(default=30000, ge=1000, description="Per-operation timeout")
    NAVIGATION_IDLE_TIMEOUT_MS: int = Field(default=5000, ge=0)
    MAX_CONCURRENT: int = Field(default=2, ge=1, description="Runs allowed to hold a browser at once")
    SCREENSHOT_ON_ERROR: bool = Field(default=True)
    LOOP_MAX_ITERATIONS: int = Field(default=100, ge=1)

    # ---- Human behavior ----
    HUMAN_DELAY_MIN_MS: int = Field(default=200, ge=0)
    HUMAN_DELAY_MAX_MS: int = Field(default=800, ge=0)
    HUMAN_TYPING: bool = Field(default=True, description="Type fill values character by character")
    TYPING_DELAY_MIN_MS: int = Field(default=40, ge=0)
    TYPING_DELAY_MAX_MS: int = Field(default=120, ge=0)

    # ---- Artifacts ----
    OUTPUT_DIR: Path = Field(default=Path("./artifacts/screenshots"))
    DOWNLOAD_DIR: Path = Field(default=Path("./artifacts/downloads"))

    # ---- Logging ----
    LOG_LEVEL: LogLevel = Field(default=LogLevel.INFO)
    LOG_TO_FILE: bool = Field(default=False)
    LOG_FILE: Path = Field(default=Path("./browserflow.log"))
    COLORIZED_OUTPUT: bool = Field(default=True)

    # ---- Proxies ----
    PROXY_SERVER: Optional[str] = None
    PROXY_USERNAME: Optional[str] = None
    PROXY_PASSWORD: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("OUTPUT_DIR", "DOWNLOAD_DIR", "LOG_FILE", mode="before")
    @classmethod
    def _coerce_to_path(cls, v):
        if isinstance(v, Path):
            return v
        return Path(str(v)) if v is not None else v

    @field_validator("OUTPUT_DIR", "DOWNLOAD_DIR", "LOG_FILE", mode="after")
    @classmethod
    def _absolutize(cls, v: Path):
        return v if v.is_absolute() else Path.cwd() / v

    @field_validator("HUMAN_DELAY_MAX_MS")
    @classmethod
    def _delay_range(cls, v: int, info):
        # Keep [min, max] well-formed even when only one bound is overridden
        low = info.data.get("HUMAN_DELAY_MIN_MS", 0)
        return max(v, low)

    @field_validator("TYPING_DELAY_MAX_MS")
    @classmethod
    def _typing_range(cls, v: int, info):
        low = info.data.get("TYPING_DELAY_MIN_MS", 0)
        return max(v, low)

    def ensure_dirs(self) -> None:
        """Create required directories (idempotent)."""
        for p in {self.OUTPUT_DIR, self.DOWNLOAD_DIR, self.LOG_FILE.parent}:
            p.mkdir(parents=True, exist_ok=True)

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            headless=self.HEADLESS,
            timeout_ms=self.TIMEOUT_MS,
            max_concurrent=self.MAX_CONCURRENT,
            screenshot_on_error=self.SCREENSHOT_ON_ERROR,
        )

    # Convenience: Playwright launch options dict
    def playwright_launch_kwargs(self, headless: Optional[bool] = None) -> dict:
        kwargs = {
            "headless": self.HEADLESS if headless is None else headless,
            "slow_mo": self.SLOW_MO,
        }
        if self.PROXY_SERVER:
            proxy = {"server": self.PROXY_SERVER}
            if self.PROXY_USERNAME and self.PROXY_PASSWORD:
                proxy["username"] = self.PROXY_USERNAME
                proxy["password"] = self.PROXY_PASSWORD
            kwargs["proxy"] = proxy
        return kwargs

    # Convenience: Playwright new_context kwargs (viewport may be replaced per run)
    def playwright_context_kwargs(self) -> dict:
        ctx = {"viewport": {"width": self.VIEWPORT_WIDTH, "height": self.VIEWPORT_HEIGHT}}
        if self.USER_AGENT:
            ctx["user_agent"] = self.USER_AGENT
        return ctx


# --------- Public accessor (memoized) ---------

@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache settings once per process.
    Call `get_settings.cache_clear()` if you need to reload after changing env.
    """
    return Settings()
