from __future__ import annotations

import json
import logging
from pathlib import Path

import uvicorn

from app import app as fastapi_app
from app import max_upload_bytes

CONFIG_PATH = Path(__file__).resolve().parent / "config.json"

logger = logging.getLogger(__name__)


def main() -> None:
    cfg = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
    logging.basicConfig(
        level=cfg.get("logging", {}).get("level", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = cfg.get("server", {}).get("host", "127.0.0.1")
    port = int(cfg.get("server", {}).get("port", 8000))
    limit_mb = max_upload_bytes(cfg) / 1024 / 1024
    logger.info(f"Starting SIE converter on {host}:{port}, uploads up to {limit_mb:g} MB")
    uvicorn.run(fastapi_app, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
