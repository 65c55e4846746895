import logging

import uvicorn
from fastapi import FastAPI

from gorkem_dashboard.config import build_client_config, load_config
from gorkem_dashboard.dashboard import create_app
from gorkem_dashboard.logging_config import configure_logging
from gorkem_dashboard.storage.cache import SheetCache
from gorkem_dashboard.storage.sheet_store import SheetRecordStore


logger = logging.getLogger(__name__)


def build_application() -> tuple[FastAPI, str, int]:
    """Create the API application and the address it should listen on."""

    try:
        config = load_config()
    except ValueError as exc:
        logger.critical("Configuration error: %s", exc)
        raise
    configure_logging(config.log_level, config.timezone, access_log=config.access_log)

    store = SheetRecordStore(build_client_config(config))
    app = create_app(config, cache=SheetCache(store))
    logger.info(
        "Dashboard API initialized",
        extra={"spreadsheet_id": config.spreadsheet_id, "api_base_url": config.api_base_url},
    )
    return app, config.host, config.port


def main() -> None:
    """Entry point for serving the dashboard API."""

    app, host, port = build_application()
    logger.info("Serving dashboard API", extra={"host": host, "port": port})
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
