from __future__ import annotations

import logging

import uvicorn

from .config import settings


def main() -> None:
    logging.basicConfig(level=settings.log_level, format=settings.log_format)
    uvicorn.run("evv.main:app", host=settings.host, port=settings.port, reload=False, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
