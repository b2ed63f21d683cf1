"""Executable entry point for launching the validation service.

Process managers can import the stable ``app`` object from
``ebinterface_validation.app``; for local development run
``python -m ebinterface_validation.run_server``.

Environment Variables:
    PORT (int): Override listening port (default 8000).
    LOG_LEVEL (str): Root log level (default INFO).

Example:
    $ EBINTERFACE_SCHEMA_DIR=./schemas python -m ebinterface_validation.run_server
    $ PORT=9000 python -m ebinterface_validation.run_server

Production Recommendation:
    Prefer invoking uvicorn directly for tuned concurrency:
        uvicorn ebinterface_validation.app:app --host 0.0.0.0 --port 8000 --workers 4
"""

from __future__ import annotations

import logging
import os

import uvicorn

from .app import app


def main() -> None:
    """Launch the ASGI server with development-friendly defaults."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
