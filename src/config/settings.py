from __future__ import annotations
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional
import logging
import os
import sys

import yaml
from pydantic import BaseModel, Field

CONFIG_PATH = Path(os.getenv("PUBLISHER_CONFIG", "configs/publisher.yaml"))


class ResumeMode(str, Enum):
    RESCAN = "rescan"
    SKIP_DONE = "skip_done"


class Settings(BaseModel):
    database_url: str = "sqlite:///./publisher.db"
    log_level: str = "INFO"
    cancel_check_interval: int = Field(10, ge=1)
    resume_mode: ResumeMode = ResumeMode.RESCAN
    max_errors_per_channel: int = Field(100, ge=1)


def load_settings(path: Optional[Path] = None) -> Settings:
    p = path or CONFIG_PATH
    data = {}
    if p.exists():
        data = yaml.safe_load(p.read_text()) or {}
    # env wins over the file
    if os.getenv("DATABASE_URL"):
        data["database_url"] = os.environ["DATABASE_URL"]
    if os.getenv("LOG_LEVEL"):
        data["log_level"] = os.environ["LOG_LEVEL"]
    return Settings(**data)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
