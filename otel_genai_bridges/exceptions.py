# Copyright (c) Microsoft. All rights reserved.

import logging
from typing import Any, Literal

logger = logging.getLogger("otel_genai_bridges")


class OtelGenAIBridgesException(Exception):
    """Base exception for the GenAI OpenTelemetry bridges.

    Automatically logs the message as debug.
    """

    def __init__(
        self,
        message: str,
        inner_exception: Exception | None = None,
        log_level: Literal[0] | Literal[10] | Literal[20] | Literal[30] | Literal[40] | Literal[50] | None = 10,
        *args: Any,
    ):
        """Create an OtelGenAIBridgesException.

        This emits a debug log (by default), with the inner_exception if provided.
        """
        if log_level is not None:
            logger.log(log_level, message, exc_info=inner_exception)
        if inner_exception:
            super().__init__(message, inner_exception, *args)
        else:
            super().__init__(message, *args)


class ChatClientException(OtelGenAIBridgesException):
    """An error occurred while dealing with a chat client."""

    pass


class ChatClientInitializationError(ChatClientException):
    """The chat client cannot be instrumented."""

    pass


class TelemetryException(OtelGenAIBridgesException):
    """An error occurred while setting up telemetry."""

    pass


# region Service Exceptions


class ServiceException(OtelGenAIBridgesException):
    """Base class for all service exceptions."""

    pass


class ServiceInitializationError(ServiceException):
    """An error occurred while initializing the service."""

    pass
