"""Application entry point for GRAM Ledger."""

from __future__ import annotations

import os

import uvicorn

from gramledger.app import create_app
from gramledger.app.core.logging_core import setup_logging


def main() -> None:
    """Run the GRAM Ledger FastAPI server."""

    setup_logging()
    uvicorn.run(create_app(), host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
