"""
veebee.api.__main__ — Entry point for ``python -m veebee.api``
==============================================================

Serves the premium API on ``api_port`` from ``config.yaml`` (default 3000).
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from veebee.api.deps import get_config
from veebee.database.engine import create_db_engine, init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)


def main() -> None:
    load_dotenv()
    cfg = get_config()
    init_db(create_db_engine())
    uvicorn.run("veebee.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
