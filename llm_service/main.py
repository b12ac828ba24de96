"""
Command line entry point for the Local LLM Service.

Settings are resolved from defaults, an optional YAML file, ``LLM_SERVICE_*``
environment variables and command line flags, each overriding the last.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

import uvicorn

from .api import create_app
from .configs import ServiceConfig

logger = logging.getLogger("llm_service")

LOG_FORMAT = "[llm-service] %(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Local LLM Service - OpenAI-compatible API over local GGUF models"
    )
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--host", help="Interface to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to listen on (default: 23673)")
    parser.add_argument("--models-dir", help="Root directory of the model categories")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: INFO)",
    )
    return parser


def resolve_config(args: argparse.Namespace) -> ServiceConfig:
    """Apply the configuration sources in order of precedence."""
    config = ServiceConfig.from_yaml(args.config) if args.config else ServiceConfig()
    config = ServiceConfig.from_env(config)
    return config.merged(
        {
            "host": args.host,
            "port": args.port,
            "models_dir": args.models_dir,
            "log_level": args.log_level,
        }
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args)
    except (OSError, ValueError) as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    app = create_app(config)
    logger.info("Local LLM Service is running on http://localhost:%d", config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
