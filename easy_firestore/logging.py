# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Structured logging configuration for Cloud Logging compatibility.

This module configures structlog to emit JSON-formatted logs to stdout
with fields expected by Cloud Logging (timestamp, severity, message, etc.).
It also provides context management for operation-scoped logging, so every
entry written while a DocumentClient operation runs carries the operation
name and the collection it targets.

The library never calls configure_logging() itself; host applications call
it once at startup (or configure structlog their own way).
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor

from easy_firestore.config import get_settings

# Context variable to store operation-scoped data (operation, collection)
operation_context: ContextVar[dict[str, Any]] = ContextVar(
    "operation_context", default={}
)


def add_operation_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Processor to add the current operation scope to log entries.

    Args:
        logger: The logger instance
        method_name: The name of the method being logged
        event_dict: The event dictionary to enhance

    Returns:
        Enhanced event dictionary with operation context
    """
    ctx = operation_context.get()
    if ctx:
        for key, value in ctx.items():
            event_dict.setdefault(key, value)
    return event_dict


def add_environment(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Processor to add environment information to log entries.

    Args:
        logger: The logger instance
        method_name: The name of the method being logged
        event_dict: The event dictionary to enhance

    Returns:
        Enhanced event dictionary with environment info
    """
    settings = get_settings()
    event_dict["environment"] = settings.service_environment
    event_dict["service"] = settings.service_name
    return event_dict


def rename_event_key(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Rename 'event' key to 'message' for Cloud Logging compatibility.

    Cloud Logging expects the log message in a field called 'message'.
    """
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


def configure_logging() -> None:
    """
    Configure structlog for structured JSON logging.

    - **Development**: pretty-printed console output
    - **Staging/Production**: JSON-formatted logs for Cloud Logging

    Every entry carries timestamp, level, message, environment and service,
    plus operation and collection while a client operation is running.
    """
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_operation_context,
        add_environment,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.service_environment == "dev":
        processors = shared_processors + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.ExceptionRenderer(),
            rename_event_key,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Optional logger name. If not provided, uses the caller's module name.

    Returns:
        A structlog BoundLogger instance configured for structured logging.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("document_written", collection="messages", document_id="abc")
    """
    return structlog.get_logger(name)


@contextmanager
def operation_scope(operation: str, collection: str) -> Iterator[None]:
    """
    Bind operation-scoped context for the duration of a block.

    Scopes nest: the previous context is restored on exit, including when the
    block raises.

    Args:
        operation: Client operation name (e.g., "create", "listen_query")
        collection: Collection path the operation targets
    """
    token = operation_context.set({"operation": operation, "collection": collection})
    try:
        yield
    finally:
        operation_context.reset(token)
