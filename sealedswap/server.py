"""
Process entry point: configure logging, build the engine and serve the API.
"""
import logging
import os
from typing import Optional

import uvicorn

from .api.app import create_app
from .config import Settings
from .engine import build_engine

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from ``SEALEDSWAP_LOG_LEVEL`` (default INFO)."""
    level = (level or os.environ.get("SEALEDSWAP_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def main() -> None:
    configure_logging()
    settings = Settings.from_env()
    engine = build_engine(settings)
    app = create_app(engine, settings)
    logger.info(f"Serving on port {settings.port} (program {settings.program_id})")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
