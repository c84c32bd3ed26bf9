#!/usr/bin/env python3
"""
webcert-check - Main Application Entry Point
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn
from fastapi import FastAPI

from webcert_check import __version__
from webcert_check.address import normalize
from webcert_check.api import create_app
from webcert_check.config import Config, load_config
from webcert_check.logger import get_logger, log_probe_failure, log_probe_success, setup_logging
from webcert_check.metrics import MetricsCollector
from webcert_check.monitor import ProbeMonitor
from webcert_check.probe import CertificateProbe, ProbeSuccess


def check_once(config: Config) -> int:
    """
    Probe the configured target once and report the result.

    Returns:
        Process exit status, 0 on success and 1 on any probe failure
    """
    assert config.target is not None, "Target should be set"

    logger = get_logger("main")
    target = normalize(config.target)
    outcome = CertificateProbe(verbose=config.verbose).probe(target)

    if isinstance(outcome, ProbeSuccess):
        log_probe_success(logger, target.hostname, outcome.expiry_date, outcome.days_remaining)
        return 0

    log_probe_failure(logger, str(target), outcome.kind.description, outcome.message)
    return 1


class WebCertExporter:
    """Monitoring mode: periodic probing plus the Prometheus HTTP endpoint."""

    def __init__(self, config: Config):
        self.config = config
        self.metrics: Optional[MetricsCollector] = None
        self.monitor: Optional[ProbeMonitor] = None
        self.app: Optional[FastAPI] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self) -> None:
        """Initialize all exporter components."""
        assert self.config.target is not None, "Target should be set"

        try:
            self.metrics = MetricsCollector(failure_value=self.config.failure_value)

            self.monitor = ProbeMonitor(
                config=self.config,
                target=normalize(self.config.target),
                metrics=self.metrics,
            )

            self.app = create_app(monitor=self.monitor, metrics=self.metrics, config=self.config)

            await self.monitor.start()

            self.logger.info("webcert-check exporter initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize exporter: {e}")
            raise

    async def run(self) -> None:
        """Run the metrics server until it is told to stop."""
        if not self.app:
            await self.initialize()

        server = uvicorn.Server(
            uvicorn.Config(
                app=self.app,  # type: ignore[arg-type]
                host=self.config.bind_address,
                port=self.config.port,
                log_level=self.config.effective_log_level.lower(),
                access_log=False,
            )
        )

        self.logger.info(
            f"Serving metrics on http://{self.config.bind_address}:{self.config.port}/metrics"
        )

        try:
            await server.serve()
        except KeyboardInterrupt:
            self.logger.info("Received interrupt signal")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        self.logger.info("Starting graceful shutdown")

        if self.monitor:
            await self.monitor.stop()

        self.logger.info("Graceful shutdown completed")


@click.command()
@click.argument("target", required=False)
@click.option("--prometheus", is_flag=True, help="Export data for Prometheus")
@click.option("--port", "-p", type=int, help="Port for the metrics endpoint (default 2112)")
@click.option("--bind-address", help="Address for the metrics endpoint (default 0.0.0.0)")
@click.option("--interval", help="Probe interval in monitoring mode, e.g. '10s' or '5m'")
@click.option("--verbose", is_flag=True, help="Log every step of the probe")
@click.option(
    "--config",
    "-f",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option("--version", "-v", is_flag=True, help="Show version information")
def main(
    target: Optional[str],
    prometheus: bool,
    port: Optional[int],
    bind_address: Optional[str],
    interval: Optional[str],
    verbose: bool,
    config_path: Optional[Path],
    version: bool,
) -> None:
    """Check the TLS certificate of TARGET (host or host:port) and report days until expiry."""
    if version:
        print(f"webcert-check v{__version__}")
        return

    try:
        config = load_config(
            str(config_path) if config_path else None,
            overrides={
                "target": target,
                "prometheus": True if prometheus else None,
                "port": port,
                "bind_address": bind_address,
                "probe_interval": interval,
                "verbose": True if verbose else None,
            },
        )
    except (ValueError, FileNotFoundError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if not config.target:
        raise click.UsageError("a target (host or host:port) is required")

    setup_logging(config)

    try:
        if config.prometheus:
            asyncio.run(WebCertExporter(config).run())
        else:
            sys.exit(check_once(config))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        print(f"Application failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
