"""Pipeline configuration.

Configuration is read from an optional JSON file (``config/identifier.json``
by default) and can be overridden by the environment and by CLI flags::

    {
      "api_url": "http://127.0.0.1:8000",
      "api_timeout": 30,
      "max_dimension": 1000,
      "jpeg_quality": 70,
      "retry": {"max_attempts": 4, "base_delay": 2.0, "multiplier": 2.0}
    }

Environment:
- ``RECOGNITION_API_URL`` overrides ``api_url``
- ``RECOGNITION_SHARED_SECRET`` signs requests to the recognition service
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .preprocess import ImagePreprocessor
from .retry import RetryPolicy


logger = logging.getLogger(__name__)

API_URL_ENV = "RECOGNITION_API_URL"
SHARED_SECRET_ENV = "RECOGNITION_SHARED_SECRET"


@dataclass
class RetrySettings:
    """Backoff settings; one attempt plus three retries by default."""

    max_attempts: int = 4
    base_delay: float = 2.0
    multiplier: float = 2.0
    jitter: float = 1.0
    max_delay: float = 30.0
    rate_limited_delay: float = 5.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
            max_delay=self.max_delay,
            rate_limited_delay=self.rate_limited_delay,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetrySettings:
        defaults = cls()
        return cls(
            max_attempts=_sanitize_int(data.get("max_attempts"), defaults.max_attempts, minimum=1),
            base_delay=_sanitize_float(data.get("base_delay"), defaults.base_delay),
            multiplier=_sanitize_float(data.get("multiplier"), defaults.multiplier, minimum=1.0),
            jitter=_sanitize_float(data.get("jitter"), defaults.jitter),
            max_delay=_sanitize_float(data.get("max_delay"), defaults.max_delay),
            rate_limited_delay=_sanitize_float(
                data.get("rate_limited_delay"), defaults.rate_limited_delay
            ),
        )


@dataclass
class PipelineConfig:
    api_url: str = "http://127.0.0.1:8000"
    api_timeout: float = 30.0
    shared_secret: str | None = None
    max_dimension: int = 1000
    jpeg_quality: int = 70
    retry: RetrySettings = field(default_factory=RetrySettings)

    def preprocessor(self) -> ImagePreprocessor:
        return ImagePreprocessor(max_dimension=self.max_dimension, quality=self.jpeg_quality)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary; the shared secret is never written."""
        return {
            "api_url": self.api_url,
            "api_timeout": self.api_timeout,
            "max_dimension": self.max_dimension,
            "jpeg_quality": self.jpeg_quality,
            "retry": asdict(self.retry),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PipelineConfig:
        defaults = cls()
        retry_data = data.get("retry", {})
        if not isinstance(retry_data, Mapping):
            retry_data = {}

        api_url = data.get("api_url")
        if not isinstance(api_url, str) or not api_url.strip():
            api_url = defaults.api_url

        return cls(
            api_url=api_url.strip(),
            api_timeout=_sanitize_float(data.get("api_timeout"), defaults.api_timeout, minimum=0.1),
            max_dimension=_sanitize_int(data.get("max_dimension"), defaults.max_dimension, minimum=16),
            jpeg_quality=min(
                95, _sanitize_int(data.get("jpeg_quality"), defaults.jpeg_quality, minimum=1)
            ),
            retry=RetrySettings.from_dict(retry_data),
        )

    def apply_environment(self, environ: Mapping[str, str] | None = None) -> PipelineConfig:
        env = os.environ if environ is None else environ
        api_url = env.get(API_URL_ENV, "").strip()
        if api_url:
            self.api_url = api_url
        secret = env.get(SHARED_SECRET_ENV, "").strip()
        if secret:
            self.shared_secret = secret
        return self


def _sanitize_float(value: Any, default: float, minimum: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number < minimum:
        return default
    return number


def _sanitize_int(value: Any, default: int, minimum: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < minimum:
        return default
    return number


def load_pipeline_config(path: Path | None) -> PipelineConfig:
    """Load configuration, falling back to defaults for a missing or broken file."""
    if path is None or not path.exists():
        logger.info("No pipeline config found at %s; using defaults", path)
        return PipelineConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to load pipeline config from %s: %s; using defaults", path, exc)
        return PipelineConfig()

    if not isinstance(data, dict):
        logger.warning("Pipeline config at %s is not a JSON object; using defaults", path)
        return PipelineConfig()

    config = PipelineConfig.from_dict(data)
    logger.info(
        "Loaded pipeline config from %s: api_url=%s max_attempts=%d base_delay=%.1f",
        path,
        config.api_url,
        config.retry.max_attempts,
        config.retry.base_delay,
    )
    return config


__all__ = [
    "API_URL_ENV",
    "PipelineConfig",
    "RetrySettings",
    "SHARED_SECRET_ENV",
    "load_pipeline_config",
]
