import os
import sys
from contextvars import ContextVar

import loguru

from bizflow.enums import Environment

ENVIRONMENT = os.getenv("ENVIRONMENT", Environment.LOCAL.value)

# One file per deployment unit (api, worker) when set, otherwise stdout
LOG_FILE_PATH = os.getenv("LOG_FILE_PATH", None)

# Correlates log lines of one reactor call or dispatched job,
# e.g. "budget:42" or "job:1337"
workflow_ctx_var: ContextVar[str] = ContextVar("workflow_ctx", default="-")

# Track if logging has been initialized
_logging_initialized = False


def inject_workflow_ctx(record):
    """Inject the workflow context from the context variable into the log record"""
    record["extra"]["workflow_ctx"] = workflow_ctx_var.get()


def setup_logging():
    """Set up logging for the API and the worker"""
    global _logging_initialized

    # Return early if already initialized
    if _logging_initialized:
        return

    log_level = os.getenv("LOG_LEVEL", "DEBUG").upper()

    # Don't setup logging in test environment
    if ENVIRONMENT == Environment.TEST.value:
        return

    # Remove default loguru handler
    try:
        loguru.logger.remove(0)
    except ValueError:
        # Handler might already be removed
        pass

    patched = loguru.logger.patch(inject_workflow_ctx)

    log_format = "{time:YYYY-MM-DD HH:mm:ss.SSS} | <level>{level}</level> | [ctx={extra[workflow_ctx]}] | {file.name}:{line} | {message}"

    if LOG_FILE_PATH:
        patched.add(
            LOG_FILE_PATH,
            level=log_level,
            serialize=True,  # Use JSON serialization for structured logs
            enqueue=True,  # Thread-safe writing
            backtrace=True,
            diagnose=False,  # Don't include local variables in traceback for security
        )
    else:
        patched.add(
            sys.stdout,
            format=log_format,
            level=log_level,
            colorize=True,
        )

    loguru.logger = patched
    _logging_initialized = True
