"""
Entry point for the pipetrace CLI.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import ExporterConfig
from .exporter import init_tracer
from .gitlab import GitLabClient, GitLabConfigError
from .spans import PipelineTraceExporter

logger = logging.getLogger(__name__)


async def _run_async(config: ExporterConfig) -> None:
    try:
        client = GitLabClient(config)
    except GitLabConfigError as exc:
        raise RuntimeError(f"failed to create GitLab client: {exc}") from exc

    async with client:
        exporter = PipelineTraceExporter(config, client)
        try:
            await exporter.export_pipeline()
        except Exception as exc:
            raise RuntimeError(f"failed to export trace: {exc}") from exc


def _parse_args(argv: list[str], config: ExporterConfig) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export a finished GitLab CI pipeline and its jobs as an OpenTelemetry trace."
    )
    parser.add_argument(
        "--protocol",
        default=config.protocol,
        help="Exporter protocol: http, grpc, stdout or console (default: %(default)s)",
    )
    parser.add_argument(
        "--endpoint",
        default=config.endpoint,
        help="OTLP endpoint; empty selects the protocol default (default: %(default)r)",
    )
    parser.add_argument(
        "--dotenv",
        default=config.dotenv_path,
        help="Append TRACE_PARENT=<traceparent> to this dotenv file for downstream pipelines",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=config.debug,
        help="Log span attributes and other diagnostics",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level for pipetrace (default: %(default)s)",
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> None:
    if argv is None:
        argv = sys.argv[1:]
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        config = ExporterConfig.from_env()
    except ValueError as exc:
        logger.error("invalid configuration: %s", exc)
        sys.exit(1)
    args = _parse_args(list(argv), config)
    config.protocol = args.protocol
    config.endpoint = args.endpoint
    config.dotenv_path = args.dotenv
    config.debug = args.debug

    level = logging.DEBUG if config.debug else getattr(logging, args.log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    logger.info("Starting GitLab OpenTelemetry exporter")

    try:
        provider = init_tracer(config)
    except Exception as exc:
        logger.error("failed to initialize tracer: %s", exc)
        sys.exit(1)

    status = 0
    try:
        asyncio.run(_run_async(config))
        logger.info("Traces exported successfully")
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        status = 130
    except Exception as exc:
        logger.error("%s", exc)
        status = 1
    finally:
        try:
            provider.shutdown()
        except Exception as exc:
            logger.error("error shutting down tracer: %s", exc)
    sys.exit(status)


if __name__ == "__main__":
    run()
