# SPDX-FileCopyrightText: 2025 MiromindAI
#
# SPDX-License-Identifier: Apache-2.0

import logging
import os
from functools import lru_cache
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler


@lru_cache
def bootstrap_logger(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | int | None = None,
    logger: logging.Logger | None = None,
) -> logging.Logger:
    """Configure only the open_superagent logger, not the root logger"""
    if logger is None:
        logger = logging.getLogger("open_superagent")
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    # rich tracebacks keep tool failures readable in the server console
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
    )
    formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    return logger
