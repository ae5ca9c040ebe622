import argparse
import json
from pathlib import Path

import pytest
from PIL import Image

from identifier import main as cli
from recognition.types import FailureReason


def _image(tmp_path: Path, name: str = "specimen.jpg") -> Path:
    path = tmp_path / name
    Image.new("RGB", (120, 90), (90, 70, 140)).save(path)
    return path


def _run(tmp_path: Path, *args: str) -> int:
    return cli.run([*args, "--config", str(tmp_path / "missing.json")])


def test_mock_backend_identifies_image(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    image = _image(tmp_path)

    exit_code = _run(tmp_path, str(image), "--json")

    assert exit_code == 0
    summaries = json.loads(capsys.readouterr().out)
    assert summaries[0]["status"] == "success"
    assert summaries[0]["result"]["name"] == "Amethyst"
    assert summaries[0]["result"]["image_ref"] == str(image)


def test_progress_lines_are_printed(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = _run(tmp_path, str(_image(tmp_path)))

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "[identifier] Identifying specimen..." in out
    assert "[identifier] Identified Amethyst" in out


def test_rejection_is_reported_without_retry(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    image = _image(tmp_path)

    exit_code = _run(tmp_path, str(image), "--json", "--mock-failures", "server_rejected")

    assert exit_code == 1
    summary = json.loads(capsys.readouterr().out)[0]
    assert summary["status"] == "error"
    assert summary["reason"] == "server_rejected"
    assert summary["attempts"] == 1


def test_unreadable_file_is_invalid_image(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    bogus = tmp_path / "notes.jpg"
    bogus.write_text("not a photo", encoding="utf-8")

    exit_code = _run(tmp_path, str(bogus), "--json")

    assert exit_code == 1
    summary = json.loads(capsys.readouterr().out)[0]
    assert summary["reason"] == "invalid_image"
    assert summary["attempts"] == 0


def test_parse_failures() -> None:
    assert cli.parse_failures("network, rate_limited,") == [
        FailureReason.NETWORK,
        FailureReason.RATE_LIMITED,
    ]
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_failures("gremlins")


def test_cli_flags_override_config(tmp_path: Path) -> None:
    args = cli.build_parser().parse_args(
        [
            "a.jpg",
            "--config",
            str(tmp_path / "missing.json"),
            "--api-url",
            "http://flag",
            "--max-attempts",
            "2",
            "--base-delay",
            "0",
        ]
    )

    config = cli.resolve_config(args)

    assert config.api_url == "http://flag"
    assert config.retry.max_attempts == 2
    assert config.retry.base_delay == 0.0
