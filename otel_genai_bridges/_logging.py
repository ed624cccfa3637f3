# Copyright (c) Microsoft. All rights reserved.

import logging

from .exceptions import OtelGenAIBridgesException

__all__ = ["get_logger", "setup_logging"]


def setup_logging(level: int = logging.INFO) -> None:
    """Setup a basic logging configuration for applications using the bridges.

    Args:
        level: The level of the root logger. Defaults to INFO.
    """
    logging.basicConfig(
        level=level,
        format="[%(asctime)s - %(pathname)s:%(lineno)d - %(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def get_logger(name: str = "otel_genai_bridges") -> logging.Logger:
    """Get a logger with the specified name, defaulting to 'otel_genai_bridges'.

    Args:
        name (str): The name of the logger. Defaults to 'otel_genai_bridges'.

    Returns:
        logging.Logger: The configured logger instance.
    """
    if not name.startswith("otel_genai_bridges"):
        raise OtelGenAIBridgesException("Logger name must start with 'otel_genai_bridges'.")
    return logging.getLogger(name)
