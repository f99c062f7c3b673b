from __future__ import annotations

import logging
import os

import uvicorn

from stridecal.config_manager import ConfigManager


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def main() -> None:
    config_path = os.getenv("STRIDECAL_CONFIG_PATH", "config.yaml")
    config = ConfigManager(config_path).load()
    configure_logging(config.logging.level)
    host = os.getenv("STRIDECAL_HOST", config.server.host)
    port = int(os.getenv("STRIDECAL_PORT", str(config.server.port)))
    uvicorn.run("stridecal.web_app:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
