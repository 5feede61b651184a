"""Run the household duty service with uvicorn."""

from __future__ import annotations

import logging
import os

import uvicorn

from household_service.settings import settings


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("HOUSEHOLD_HOST", "0.0.0.0")
    port = int(os.environ.get("HOUSEHOLD_PORT", "8099"))
    uvicorn.run("household_service.main:app", host=host, port=port, reload=False, log_level=settings.log_level.lower())
