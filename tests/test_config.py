import json
from pathlib import Path

from identifier.config import (
    API_URL_ENV,
    SHARED_SECRET_ENV,
    PipelineConfig,
    load_pipeline_config,
)


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    config = load_pipeline_config(tmp_path / "absent.json")

    assert config == PipelineConfig()
    assert config.retry.max_attempts == 4
    assert config.retry.base_delay == 2.0


def test_broken_or_non_object_file_uses_defaults(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")

    assert load_pipeline_config(broken) == PipelineConfig()
    assert load_pipeline_config(listing) == PipelineConfig()


def test_values_are_loaded_and_sanitized(tmp_path: Path) -> None:
    path = tmp_path / "identifier.json"
    path.write_text(
        json.dumps(
            {
                "api_url": " http://rocks.local:9000 ",
                "api_timeout": "12",
                "max_dimension": 4,
                "jpeg_quality": 100,
                "shared_secret": "ignored",
                "retry": {
                    "max_attempts": "3",
                    "base_delay": 0.5,
                    "multiplier": 0.5,
                    "jitter": -1,
                    "max_delay": True,
                },
            }
        ),
        encoding="utf-8",
    )

    config = load_pipeline_config(path)

    assert config.api_url == "http://rocks.local:9000"
    assert config.api_timeout == 12.0
    assert config.max_dimension == 1000
    assert config.jpeg_quality == 95
    assert config.shared_secret is None
    assert config.retry.max_attempts == 3
    assert config.retry.base_delay == 0.5
    assert config.retry.multiplier == 2.0
    assert config.retry.jitter == 1.0
    assert config.retry.max_delay == 30.0


def test_retry_settings_build_policy() -> None:
    config = PipelineConfig.from_dict({"retry": {"max_attempts": 2, "rate_limited_delay": 9}})

    policy = config.retry.to_policy()

    assert policy.max_attempts == 2
    assert policy.rate_limited_delay == 9.0
    assert config.preprocessor().max_dimension == 1000


def test_environment_overrides_url_and_secret() -> None:
    config = PipelineConfig().apply_environment(
        {API_URL_ENV: "https://recognition.example", SHARED_SECRET_ENV: "token"}
    )

    assert config.api_url == "https://recognition.example"
    assert config.shared_secret == "token"
    assert "shared_secret" not in config.to_dict()


def test_blank_environment_keeps_values() -> None:
    config = PipelineConfig(api_url="http://configured").apply_environment({API_URL_ENV: "  "})

    assert config.api_url == "http://configured"
    assert config.shared_secret is None
