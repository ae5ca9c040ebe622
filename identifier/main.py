from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

from dotenv import load_dotenv

from recognition.api.client import RecognitionHttpClient
from recognition.api.mock import MockRecognitionClient
from recognition.request import RecognitionClient
from recognition.types import FailureReason

from .config import PipelineConfig, load_pipeline_config
from .pipeline import IdentificationPipeline
from .retry import RetryController
from .state import Error, IdentificationState, Success, describe_state


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/identifier.json"


def parse_failures(value: str) -> List[FailureReason]:
    failures: List[FailureReason] = []
    for item in value.split(","):
        item = item.strip().lower()
        if not item:
            continue
        try:
            failures.append(FailureReason(item))
        except ValueError as exc:
            choices = ", ".join(reason.value for reason in FailureReason)
            raise argparse.ArgumentTypeError(
                f"unknown failure {item!r}; expected one of: {choices}"
            ) from exc
    return failures


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Identify rock and mineral photos with the recognition service",
        epilog=f"Configuration is loaded from {DEFAULT_CONFIG_PATH} when present. "
        "CLI arguments override config file settings.",
    )
    parser.add_argument("images", nargs="+", help="image files to identify")
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_PATH, help="path to JSON configuration file"
    )
    parser.add_argument(
        "--api", choices=["mock", "http"], default="mock", help="recognition backend to use"
    )
    parser.add_argument("--api-url", default=None, help="base URL of the recognition service")
    parser.add_argument(
        "--api-timeout", type=float, default=None, help="per-attempt timeout in seconds"
    )
    parser.add_argument(
        "--max-attempts", type=int, default=None, help="total attempts including the first"
    )
    parser.add_argument(
        "--base-delay", type=float, default=None, help="delay before the first retry in seconds"
    )
    parser.add_argument(
        "--mock-failures",
        type=parse_failures,
        default=[],
        help="comma separated failures the mock backend returns before succeeding",
    )
    parser.add_argument(
        "--wait-timeout",
        type=float,
        default=300.0,
        help="seconds to wait for each identification before cancelling it",
    )
    parser.add_argument("--json", action="store_true", help="print results as JSON")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def resolve_config(args: argparse.Namespace) -> PipelineConfig:
    config = load_pipeline_config(Path(args.config) if args.config else None)
    config.apply_environment()
    if args.api_url:
        config.api_url = args.api_url
    if args.api_timeout is not None and args.api_timeout > 0:
        config.api_timeout = args.api_timeout
    if args.max_attempts is not None and args.max_attempts >= 1:
        config.retry.max_attempts = args.max_attempts
    if args.base_delay is not None and args.base_delay >= 0:
        config.retry.base_delay = args.base_delay
    return config


def build_api_client(
    args: argparse.Namespace, config: PipelineConfig
) -> RecognitionClient:
    if args.api == "http":
        return RecognitionHttpClient(
            base_url=config.api_url,
            timeout=config.api_timeout,
            shared_secret=config.shared_secret,
        )
    return MockRecognitionClient(outcomes=args.mock_failures)


def build_pipeline(
    config: PipelineConfig, client: RecognitionClient
) -> IdentificationPipeline:
    return IdentificationPipeline(
        client=client,
        preprocessor=config.preprocessor(),
        controller=RetryController(config.retry.to_policy()),
        attempt_timeout=config.api_timeout,
    )


def summarize(image: str, state: IdentificationState) -> Dict[str, Any]:
    if isinstance(state, Success):
        return {"image": image, "status": "success", "result": state.result.to_dict()}
    if isinstance(state, Error):
        failure = state.failure
        return {
            "image": image,
            "status": "error",
            "reason": failure.reason.value,
            "message": failure.message,
            "attempts": failure.attempts,
            "suggestions": list(failure.suggestions),
        }
    return {"image": image, "status": type(state).__name__.lower()}


def identify_images(
    pipeline: IdentificationPipeline, images: Sequence[str], wait_timeout: float
) -> List[Dict[str, Any]]:
    summaries: List[Dict[str, Any]] = []
    for image in images:
        pipeline.identify(Path(image))
        state = pipeline.wait(timeout=wait_timeout)
        if not isinstance(state, (Success, Error)):
            logger.warning("Timed out after %.0fs waiting for %s; cancelling", wait_timeout, image)
            pipeline.cancel()
            state = pipeline.state
        summaries.append(summarize(image, state))
    return summaries


def run(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s [%(name)s] %(message)s",
        )

    config = resolve_config(args)
    client = build_api_client(args, config)
    pipeline = build_pipeline(config, client)
    if not args.json:
        pipeline.subscribe(lambda state: print(f"[identifier] {describe_state(state)}"))

    try:
        summaries = identify_images(pipeline, args.images, args.wait_timeout)
    finally:
        pipeline.close()
        if isinstance(client, RecognitionHttpClient):
            client.close()

    if args.json:
        print(json.dumps(summaries, indent=2))
    else:
        for summary in summaries:
            if summary["status"] == "success":
                result = summary["result"]
                print(f"{summary['image']}: {result['name']} ({result['category']})")
            else:
                print(f"{summary['image']}: {summary.get('message', summary['status'])}")

    return 0 if all(summary["status"] == "success" for summary in summaries) else 1


def main() -> None:
    load_dotenv()
    sys.exit(run())


if __name__ == "__main__":
    main()
