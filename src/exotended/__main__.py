"""Entry point for running eXOtended via ``python -m exotended``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    """Start the FastAPI-powered eXOtended session server."""

    log_level = os.environ.get("EXOTENDED_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("EXOTENDED_HOST", "0.0.0.0")
    port = int(os.environ.get("EXOTENDED_PORT", "8000"))
    uvicorn.run(
        "exotended.api:app",
        host=host,
        port=port,
        reload=False,
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    main()
