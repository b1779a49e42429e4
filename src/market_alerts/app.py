"""
Process entry point: load config, wire the scanner and serve the API.

Usage:
    market-alerts                       # uses config.yaml / environment
    market-alerts --config my.yaml --port 9000
"""
import argparse
from typing import Optional

import uvicorn
from fastapi import FastAPI

from market_alerts.api.server import create_app
from market_alerts.clients.factory import build_quote_source
from market_alerts.clients.llm_client import MarketAssistant
from market_alerts.config import Config, get_config
from market_alerts.core.rate_limit import RetryPolicy
from market_alerts.core.scanner import MarketScanner
from market_alerts.core.universes import UniverseRegistry
from market_alerts.db.dbadapter import UniverseStore
from market_alerts.logger import setup_logger


def build_app(config: Optional[Config] = None) -> FastAPI:
    """Construct every collaborator from config and return the FastAPI app."""
    config = config or get_config()
    setup_logger("market_alerts", level=config.logging.level, log_format=config.logging.format)

    store = UniverseStore(db_path=config.storage.db_path)
    registry = UniverseRegistry(store)
    scanner = MarketScanner(
        config.scanner,
        registry,
        build_quote_source(config.quotes),
        retry_policy=RetryPolicy(
            max_attempts=config.quotes.max_attempts,
            backoff_seconds=config.quotes.backoff_ms / 1000.0,
        ),
    )
    return create_app(config, scanner, store=store, assistant=MarketAssistant(config.ai))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Market alerts scanner service")
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, help="Port (overrides config)")
    args = parser.parse_args(argv)

    config = get_config(config_path=args.config, env_file=args.env_file)
    app = build_app(config)
    uvicorn.run(
        app,
        host=args.host or config.server.host,
        port=args.port or config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
