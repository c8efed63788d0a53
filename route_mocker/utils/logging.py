"""Logging for the interception layer.

Log records are built with structlog and written through the standard
library, to a rich console handler and optionally a rotating file. Each
record carries the page and request being intercepted (see ``LogContext``),
and credentials found in captured headers and bodies are redacted before
rendering.
"""

import contextvars
import logging
import logging.handlers
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple

import structlog
from rich.console import Console
from rich.logging import RichHandler

_loggers: Dict[str, Any] = {}
_configured = False

CONTEXT_FIELDS = ("correlation_id", "page_id", "request_id")

_log_context: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    'route_mocker_log_context', default={}
)

# Header and field names whose values are never logged
SENSITIVE_KEYS = frozenset({
    'authorization', 'proxy-authorization', 'cookie', 'set-cookie',
    'x-api-key', 'password',
})

# (name, pattern, replacement), applied in order
REDACTION_RULES: Tuple[Tuple[str, str, str], ...] = (
    ('jwt', r'\beyJ[A-Za-z0-9_/+\-=]+\.eyJ[A-Za-z0-9_/+\-=]+\.[A-Za-z0-9_/+\-=]*\b', '[JWT_TOKEN]'),
    ('password', r'(["\']?password["\']?\s*[=:]\s*["\']?)([^"\',}&\s]+)(["\']?)', r'\1[PASSWORD]\3'),
    ('authorization',
     r'(authorization["\']?\s*[:=]\s*["\']?(?:bearer\s+|basic\s+)?)([a-zA-Z0-9+/=._\-]+)', r'\1[AUTH_TOKEN]'),
    ('api_key', r'(x-api-key["\']?\s*[:=]\s*["\']?)([a-zA-Z0-9._\-]+)', r'\1[API_KEY]'),
    ('cookie', r'((?:set-)?cookie["\']?\s*[:=]\s*["\']?)([^"\'\n]+)', r'\1[COOKIE]'),
    ('url_credentials', r'(://[^:/@\s]+:)([^@\s]+)(@)', r'\1[PASSWORD]\3'),
)


class SensitiveDataRedactor:
    """Masks credentials in text and header lists."""

    def __init__(self, rules=REDACTION_RULES):
        self.patterns: List[Tuple[str, Pattern, str]] = [
            (name, re.compile(pattern, re.IGNORECASE), replacement)
            for name, pattern, replacement in rules
        ]

    def redact(self, message: str) -> str:
        for _, pattern, replacement in self.patterns:
            message = pattern.sub(replacement, message)
        return message

    def redact_headers(self, headers: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
        """Mask the values of credential headers in a list of pairs."""
        return [
            (name, '[REDACTED]' if name.lower() in SENSITIVE_KEYS else self.redact(value))
            for name, value in headers
        ]

    def redact_value(self, value: Any) -> Any:
        """Redact strings, mappings and header lists, recursively."""
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, Mapping):
            return {
                key: '[REDACTED]' if str(key).lower() in SENSITIVE_KEYS else self.redact_value(item)
                for key, item in value.items()
            }
        if isinstance(value, list) and value and all(_is_header_pair(item) for item in value):
            return self.redact_headers(value)
        return value


def _is_header_pair(item: Any) -> bool:
    return isinstance(item, tuple) and len(item) == 2 and all(isinstance(part, str) for part in item)


class CorrelationProcessor:
    """structlog processor adding the current ``LogContext`` fields."""

    def __call__(self, logger, method_name, event_dict):
        for field, value in _log_context.get().items():
            event_dict.setdefault(field, value)
        return event_dict


class SensitiveDataProcessor:
    """structlog processor redacting every value of a record."""

    def __init__(self, redactor: Optional[SensitiveDataRedactor] = None):
        self.redactor = redactor or SensitiveDataRedactor()

    def __call__(self, logger, method_name, event_dict):
        return {key: self.redactor.redact_value(value) for key, value in event_dict.items()}


def _parse_size(max_size: str) -> int:
    units = {'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3}
    size = max_size.strip().upper()
    for suffix, multiplier in units.items():
        if size.endswith(suffix):
            return int(size[:-len(suffix)].strip()) * multiplier
    return int(size) if size.isdigit() else 10 * units['MB']


def _build_processors(format_type: str, redact: bool) -> list:
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        CorrelationProcessor(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if redact:
        processors.append(SensitiveDataProcessor())
    processors.append(structlog.processors.UnicodeDecoder())

    if format_type == "structured":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(
            key_order=['event', 'page_id', 'request_id'], drop_missing=True
        ))
    return processors


def setup_logging(level: str = "INFO",
                  log_file: Optional[str] = None,
                  format_type: str = "structured",
                  max_size: str = "10MB",
                  backup_count: int = 5,
                  enable_sensitive_data_redaction: bool = True) -> None:
    """Configure structlog and the root logger's handlers.

    Calling it again replaces the previous configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, rotated at ``max_size``
        format_type: "structured" for JSON, "simple" for key=value
        max_size: Size before rotation, for example "10MB"
        backup_count: Rotated files to keep
        enable_sensitive_data_redaction: Mask credentials in records
    """
    global _configured

    numeric_level = getattr(logging, level.upper())

    structlog.configure(
        processors=_build_processors(format_type, enable_sensitive_data_redaction),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(numeric_level)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=_parse_size(max_size), backupCount=backup_count, encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
        root_logger.addHandler(file_handler)

    for noisy in ('playwright', 'asyncio', 'aiohttp'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
    get_logger(__name__).debug(
        f"Logging configured: level={level}, format={format_type}, file={log_file}, "
        f"redaction={enable_sensitive_data_redaction}"
    )


def configure_logging(config, level: Optional[str] = None) -> None:
    """Apply the ``logging`` section of a ``MockingConfig``.

    Args:
        config: A ``MockingConfig``, or its ``LoggingConfig`` section
        level: Overrides the configured level when given
    """
    section = getattr(config, 'logging', config)
    setup_logging(
        level=level or section.level,
        log_file=section.file,
        format_type=section.format,
        max_size=section.max_size,
        backup_count=section.backup_count,
        enable_sensitive_data_redaction=section.redact_sensitive_data,
    )


def get_logger(name: str):
    """Get a structlog logger, configuring defaults on first use."""
    if not _configured:
        setup_logging()
    if name not in _loggers:
        _loggers[name] = structlog.get_logger(name)
    return _loggers[name]


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


class LogContext:
    """Adds correlation, page and request ids to records logged inside it.

    Contexts nest; inner values shadow outer ones until the inner block exits::

        with LogContext(page_id="page-1", request_id=request.request_id):
            logger.info("handling request")
    """

    def __init__(self, correlation_id: Optional[str] = None,
                 page_id: Optional[str] = None,
                 request_id: Optional[str] = None):
        self.fields = {
            name: value for name, value in zip(CONTEXT_FIELDS, (correlation_id, page_id, request_id))
            if value
        }
        self._tokens: List[contextvars.Token] = []

    def __enter__(self):
        self._tokens.append(_log_context.set({**_log_context.get(), **self.fields}))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._tokens.pop())
