"""
lmconstraints/config.py
=======================
Central configuration via environment variables.
Every field can be set with an LMCONSTRAINTS_ prefix, e.g.
LMCONSTRAINTS_BACKEND=faiss, or from a local .env file.
Arguments passed to Constraints(...) always win over these defaults.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix        = "LMCONSTRAINTS_",
        env_file          = ".env",
        env_file_encoding = "utf-8",
        extra             = "ignore",
    )

    # ── Constraints ───────────────────────────────────────────────────────────
    default_k:      int = Field(default=1, ge=1)
    metric:         str = "euclidean"

    # ── Search engine ─────────────────────────────────────────────────────────
    backend:        Literal["brute", "tree", "faiss"] = "brute"
    tree_algorithm: Literal["kd_tree", "ball_tree"]   = "kd_tree"
    leaf_size:      int = Field(default=20, ge=1)

    # ── Parallelism ───────────────────────────────────────────────────────────
    # 1 → per-label searches run sequentially
    n_threads:      int = Field(default=1, ge=1)

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level:      str = "INFO"


settings = Settings()


def configure_logging(level: Optional[str | int] = None) -> None:
    """Install a root handler with the package log format.

    Library code never calls this; applications and scripts opt in.
    """
    level = level if level is not None else settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
