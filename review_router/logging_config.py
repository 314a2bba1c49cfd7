"""
Logging Configuration for Review Router

Provides:
- One JSON object per line for CI log collectors, or coloured text locally
- A run id carried across passes and agent tasks by a ContextVar
- Structured fields through log_with_data
- Timing for functions (@timed) and scopes (LogContext)
- Lifecycle helpers for agents, pipeline stages and LLM calls

Configure once with setup_logging(); modules get their logger with
get_logger(__name__).
"""

import asyncio
import functools
import json
import logging
import os
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

ROOT_LOGGER_NAME = "review_router"
NO_RUN = "no-run"

# Copied into every asyncio task, so agent tasks inherit the run id
current_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


class RunContextFilter(logging.Filter):
    """Stamps each record with the current run id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = current_run_id.get() or NO_RUN
        return True


class JSONFormatter(logging.Formatter):
    """Structured formatter; `data` holds fields passed through log_with_data."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", NO_RUN),
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for attr, key in (("extra_data", "data"), ("duration_ms", "duration_ms")):
            value = getattr(record, attr, None)
            if value is not None:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColoredTextFormatter(logging.Formatter):
    """Human readable formatter for terminals."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def _paint(self, levelname: str, text: str) -> str:
        if not self.use_color:
            return text
        return f"{self.LEVEL_COLORS.get(levelname, '')}{text}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        run_id = getattr(record, "run_id", NO_RUN)
        head = self._paint(record.levelname, f"{clock} {record.levelname:<8}")
        line = f"{head} {run_id[:8]} {record.name}: {record.getMessage()}"

        duration_ms = getattr(record, "duration_ms", None)
        if duration_ms is not None:
            line += f" ({duration_ms:.1f}ms)"
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            line += " " + " ".join(f"{k}={v}" for k, v in extra_data.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure the review_router logger tree.

    Level and format fall back to LOG_LEVEL and LOG_FORMAT ("json" or "text").
    Records do not propagate to the root logger afterwards.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    fmt = (log_format or os.getenv("LOG_FORMAT", "json")).lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(RunContextFilter())
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ColoredTextFormatter(use_color=os.getenv("NO_COLOR") is None))

    router_logger = logging.getLogger(ROOT_LOGGER_NAME)
    router_logger.handlers.clear()
    router_logger.addHandler(handler)
    router_logger.setLevel(numeric_level)
    router_logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Logger under the review_router namespace."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_run_id(run_id: str) -> None:
    current_run_id.set(run_id)


def get_run_id() -> Optional[str]:
    return current_run_id.get()


def log_with_data(
    logger: logging.Logger,
    level: int,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    **kwargs
) -> None:
    """
    Log a message with structured fields.

    Usage:
        log_with_data(logger, logging.INFO, "Pass completed", {"pass": "static", "findings": 3})
    """
    extra = dict(kwargs.pop("extra", None) or {})
    if data:
        extra["extra_data"] = data
    logger.log(level, message, extra=extra, **kwargs)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def timed(func: Callable) -> Callable:
    """
    Log how long a function took, at DEBUG, or at ERROR if it raised.

    Works on plain and async functions.
    """
    logger = get_logger(func.__module__)
    name = func.__qualname__

    def _failed(start: float, error: Exception) -> None:
        logger.error(f"{name} failed: {error}", extra={"duration_ms": _elapsed_ms(start)}, exc_info=True)

    if asyncio.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _failed(start, e)
                raise
            logger.debug(f"{name} finished", extra={"duration_ms": _elapsed_ms(start)})
            return result
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            _failed(start, e)
            raise
        logger.debug(f"{name} finished", extra={"duration_ms": _elapsed_ms(start)})
        return result
    return wrapper


class LogContext:
    """
    Timed scope logged on entry and exit. Usable with `with` and `async with`.

    Usage:
        async with LogContext(logger, "Review run", pr_number=123):
            outcome = await workflow.run(context)
    """

    def __init__(self, logger: logging.Logger, operation: str, **context: Any):
        self.logger = logger
        self.operation = operation
        self.context = context
        self._start = 0.0

    def _enter(self) -> "LogContext":
        self._start = time.perf_counter()
        log_with_data(self.logger, logging.INFO, f"Starting: {self.operation}", self.context)
        return self

    def _exit(self, exc_val: Optional[BaseException]) -> bool:
        data = {**self.context, "duration_ms": _elapsed_ms(self._start)}
        if exc_val is not None:
            data["error"] = str(exc_val)
            log_with_data(self.logger, logging.ERROR, f"Failed: {self.operation}", data)
        else:
            log_with_data(self.logger, logging.INFO, f"Completed: {self.operation}", data)
        return False

    def __enter__(self) -> "LogContext":
        return self._enter()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        return self._exit(exc_val)

    async def __aenter__(self) -> "LogContext":
        return self._enter()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        return self._exit(exc_val)


def log_workflow_transition(logger: logging.Logger, from_node: str, to_node: str, reason: str = "") -> None:
    data = {"from": from_node, "to": to_node}
    if reason:
        data["reason"] = reason
    log_with_data(logger, logging.INFO, f"Stage {from_node} -> {to_node}", data)


def log_agent_start(logger: logging.Logger, agent_id: str, files_count: int, **context) -> None:
    log_with_data(
        logger,
        logging.INFO,
        f"Dispatching agent {agent_id}",
        {"agent": agent_id, "files": files_count, **context},
    )


def log_agent_complete(
    logger: logging.Logger,
    agent_id: str,
    duration_ms: float,
    summary: Dict[str, Any],
) -> None:
    log_with_data(
        logger,
        logging.INFO,
        f"Agent {agent_id} settled",
        {"agent": agent_id, "duration_ms": round(duration_ms, 2), **summary},
    )


def log_llm_call(
    logger: logging.Logger,
    model: str,
    input_tokens: int,
    output_tokens: int,
    duration_ms: float,
) -> None:
    """Token usage of one chat completion, for cost tracking."""
    log_with_data(
        logger,
        logging.INFO,
        f"LLM call to {model}",
        {
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "duration_ms": round(duration_ms, 2),
        },
    )
