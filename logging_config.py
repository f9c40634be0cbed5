"""
Logging configuration with request / task-run correlation ids.

Provides:
- A context id propagated via context variables: the X-Request-ID of a
  webhook or API call, or the run id of a background sweep
- Structured JSON logging for production
- Human-readable logging for development
- Flask hooks for automatic request tracking
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

# "system" outside of any request or task run
request_id_var: ContextVar[str] = ContextVar('request_id', default='system')

# Extra attributes copied into structured output when a log call sets them
EXTRA_FIELDS = (
    'duration_ms', 'item_id', 'item_name', 'tags', 'task',
    'status_code', 'endpoint', 'method',
)


def get_request_id() -> str:
    return request_id_var.get()


def set_request_id(request_id: str = None) -> str:
    """
    Set the correlation id for the current context.

    Args:
        request_id: Id to set. If None, generates a short random one.

    Returns:
        The id that was set
    """
    rid = request_id or uuid.uuid4().hex[:8]
    request_id_var.set(rid)
    return rid


class StructuredFormatter(logging.Formatter):
    """
    JSON log formatter for production.

    Output format:
    {"timestamp": "...", "level": "INFO", "request_id": "update-3fa2c1", "message": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": get_request_id(),
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Output format:
    INFO     [update-3fa2c1] Tagged "Infernal Affairs" -> [香港, 2000年代]
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        context = get_request_id()
        prefix = f"[{context}] " if context != 'system' else ""

        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        message = record.getMessage()
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return f"{level} {prefix}{message}"


def configure_logging(
    level: str = "INFO",
    structured: bool = False,
    use_colors: bool = True,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        structured: Use JSON format for production
        use_colors: Use colored output (only for human format)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if structured else HumanFormatter(use_colors=use_colors))
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    for name in ("urllib3", "requests", "werkzeug"):
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_flask_request_id(app) -> None:
    """
    Add request id hooks to a Flask app.

    Each request takes its id from the X-Request-ID header (or gets a fresh
    one), logs its completion with duration, and echoes the id back.

    Args:
        app: Flask application instance
    """
    from flask import request, g

    @app.before_request
    def inject_request_id():
        g.request_id = set_request_id(request.headers.get('X-Request-ID'))
        g.request_start = time.monotonic()

    @app.after_request
    def log_request(response):
        duration_ms = (time.monotonic() - g.request_start) * 1000
        http_logger = logging.getLogger('http')
        # Probes are polled constantly; keep them out of INFO
        log = http_logger.debug if request.path.startswith('/health') else http_logger.info
        log(
            f"{request.method} {request.path} -> {response.status_code} ({duration_ms:.0f}ms)",
            extra={
                'method': request.method,
                'endpoint': request.path,
                'status_code': response.status_code,
                'duration_ms': round(duration_ms, 2),
            },
        )
        response.headers['X-Request-ID'] = g.request_id
        return response
