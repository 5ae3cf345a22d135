"""
ArbanOS -- Process Entry Point

Loads .env and configuration, configures logging, builds the trust store
and service, and runs the startup reconciliation.

    python -m arbanos.main [config.yaml]
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv

from arbanos.config import load_config
from arbanos.systems.trust import InMemoryTrustStore, TrustService
from arbanos.telemetry.logging import setup_logging

logger = structlog.get_logger()


async def create_trust_service(config_path: str | Path | None = None) -> TrustService:
    """Build and initialize a TrustService backed by the in-memory store."""
    # Load .env file before any configuration is loaded
    load_dotenv()

    config = load_config(config_path)
    setup_logging(config.logging, instance_id=config.instance_id)

    service = TrustService(config=config, store=InMemoryTrustStore())
    await service.initialize()

    logger.info("arbanos_started", instance_id=config.instance_id)
    return service


async def _main(config_path: str | None) -> None:
    service = await create_trust_service(config_path)
    logger.info("health", **(await service.health()))


if __name__ == "__main__":
    asyncio.run(_main(sys.argv[1] if len(sys.argv) > 1 else "config/default.yaml"))
