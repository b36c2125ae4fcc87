#!/usr/bin/env python3
"""FastAPI server runner."""

import argparse

import structlog
import uvicorn

from market_integrity.api.app import create_app
from market_integrity.config.loader import load_config
from market_integrity.db.engine import dispose_engine
from market_integrity.logging.setup import setup_logging
from market_integrity.services import build_services

logger = structlog.get_logger()


def main(config_path: str | None = None):
    """Run the FastAPI server."""
    config = load_config(config_path)
    setup_logging(level=config.logging.level, log_format=config.logging.format, service="api")

    app = create_app(build_services(config))
    logger.info("Starting FastAPI server", host=config.api.host, port=config.api.port)

    try:
        uvicorn.run(
            app,
            host=config.api.host,
            port=config.api.port,
            log_config=None  # Use our structlog setup
        )
    except Exception as e:
        logger.error("Failed to start server", error=str(e))
        raise
    finally:
        dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Market integrity API server")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    args = parser.parse_args()
    main(config_path=args.config)
