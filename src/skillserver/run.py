#!/usr/bin/env python
import uvicorn
from dotenv import load_dotenv
from pathlib import Path

from loguru import logger

if __name__ == "__main__":
    load_dotenv(Path.cwd() / ".env")

    # .env 加载之后再读取配置
    from src.skillserver.config import Config

    cfg = Config()
    logger.info("Skill server, start running!")

    uvicorn.run(
        "src.skillserver.main:create_app",
        factory=True,
        host=cfg.host,
        port=cfg.port,
        log_level=cfg.log_level.lower(),
    )
