import json
import logging
import os
from typing import Any, Optional

from colorama import Fore, Style, init as colorama_init
from opentelemetry import trace

colorama_init(autoreset=True)

# Define a new logging level named "KEYINFO" with a level of 25
KEYINFO_LEVEL_NUM = 25
logging.addLevelName(KEYINFO_LEVEL_NUM, "KEYINFO")


def keyinfo(self: logging.Logger, message, *args, **kws):
    if self.isEnabledFor(KEYINFO_LEVEL_NUM):
        self._log(KEYINFO_LEVEL_NUM, message, args, **kws)


logging.Logger.keyinfo = keyinfo


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.trace_id = getattr(record, "trace_id", "-")
        record.span_id = getattr(record, "span_id", "-")
        record.session_id = getattr(record, "session_id", "-")

        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "name": record.name,
            "process": record.processName,
            "level": record.levelname,
            "trace_id": record.trace_id,
            "span_id": record.span_id,
            "session_id": record.session_id,
            "message": record.getMessage(),
            "file": record.filename,
            "function": record.funcName,
            "line": record.lineno,
        }
        context = getattr(record, "context", None)
        if context:
            log_record["context"] = context
        return json.dumps(log_record, default=str)


class PrettyFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA,
        "KEYINFO": Fore.BLUE,
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        level = record.levelname
        name = record.name
        msg = record.getMessage()
        context = getattr(record, "context", None)
        if context:
            msg = f"{msg} {Fore.WHITE}{context}{Style.RESET_ALL}"

        color = self.LEVEL_COLORS.get(level, "")
        return f"{Fore.WHITE}[{timestamp}]{Style.RESET_ALL} {color}{level}{Style.RESET_ALL} - {Fore.BLUE}{name}{Style.RESET_ALL}: {msg}"


class TraceLogFilter(logging.Filter):
    def filter(self, record):
        span = trace.get_current_span()
        context = span.get_span_context() if span else None
        record.trace_id = f"{context.trace_id:032x}" if context and context.trace_id else "-"
        record.span_id = f"{context.span_id:016x}" if context and context.span_id else "-"

        # session_id may already be set through `extra=`
        if not hasattr(record, "session_id"):
            record.session_id = "-"
        return True


def get_logger(
    name: str = "geminilive",
    level: Optional[int] = None,
    include_stream_handler: bool = True,
) -> logging.Logger:
    logger = logging.getLogger(name)

    if level is not None or logger.level == 0:
        logger.setLevel(level or logging.INFO)

    is_production = os.environ.get("ENV", "dev").lower() == "prod"

    if include_stream_handler and not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(JsonFormatter() if is_production else PrettyFormatter())
        sh.addFilter(TraceLogFilter())
        logger.addHandler(sh)

    return logger


def log_with_context(
    logger: logging.Logger, level: str, message: str, session_id: Optional[str] = None, **context: Any
) -> None:
    """
    Log `message` at `level` with structured key/value context attached.

    The JSON formatter emits the context as a nested object; the pretty
    formatter appends it to the message.
    """
    log_method = getattr(logger, level.lower(), logger.info)
    log_method(message, extra={"session_id": session_id or "-", "context": context})
