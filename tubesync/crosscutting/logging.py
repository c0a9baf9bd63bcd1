import json
import logging
import re
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Correlation of log lines to one transfer run
job_id_var: ContextVar[Optional[str]] = ContextVar('job_id', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

_CORRELATION_FIELDS = (
    ('jobId', job_id_var),
    ('playlistId', playlist_id_var),
    ('stage', stage_var),
)

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# (name, value) pairs; group 2 is the part that gets masked
_SECRET_PATTERNS = (
    r'(?i)(token|key|secret|password|auth)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{10,})["\']?',
    r'(?i)(spotify_access_token|access_token|refresh_token)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{50,})["\']?',
    r'(?i)(youtube_api_key|api_key)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{20,})["\']?',
    r'(?i)(client_secret)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{20,})["\']?',
    r'(?i)(code|authorization_code)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{20,})["\']?',
)


def _mask_value(secret: str) -> str:
    """Keep the first and last four characters of long secrets."""
    if len(secret) <= 8:
        return '*' * len(secret)
    return f"{secret[:4]}{'*' * (len(secret) - 8)}{secret[-4:]}"


class SecretMasker:
    """Masks Spotify tokens, YouTube API keys, client secrets and OAuth codes."""

    def __init__(self, patterns=_SECRET_PATTERNS):
        self.compiled_patterns = [re.compile(p) for p in patterns]

    @staticmethod
    def _replace(match) -> str:
        return f"{match.group(1)}: {_mask_value(match.group(2))}"

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(self._replace, text)
        return text

    def mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask_secrets(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [self.mask_value(v) for v in value]
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data:
            return data
        return {key: self.mask_value(value) for key, value in data.items()}


def current_correlation() -> Dict[str, str]:
    """Correlation fields set in the current context."""
    return {name: var.get() for name, var in _CORRELATION_FIELDS if var.get()}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with correlation fields and masked secrets."""

    def __init__(self, masker: Optional[SecretMasker] = None):
        super().__init__()
        self.masker = masker or SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, timezone.utc)
        entry = {
            'ts': ts.isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        entry.update(current_correlation())

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        fields = getattr(record, 'fields', None)
        if fields:
            entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(entry, ensure_ascii=False)


class CorrelationContext:
    """Sets job id, source playlist id and stage for the enclosed block.

    Values left as None keep whatever the enclosing context set. Nesting is supported;
    each exit restores the previous values.
    """

    def __init__(self, job_id: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        self.job_id = job_id
        self.playlist_id = playlist_id
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        values = (self.job_id, self.playlist_id, self.stage)
        for (_, var), value in zip(_CORRELATION_FIELDS, values):
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  job_id: Optional[str] = None,
                  structured: bool = True) -> logging.Logger:
    """Configure the `tubesync` logger hierarchy.

    Args:
        level: Log level name
        log_file: Optional file to log to in addition to stderr
        job_id: Correlation id attached to every record
        structured: JSON lines if True, plain text otherwise
    """
    logger = logging.getLogger('tubesync')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    formatter = StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT)

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if job_id:
        job_id_var.set(job_id)

    return logger


def get_logger(name: str = 'tubesync') -> logging.Logger:
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, **kwargs):
    """Log message with additional structured fields."""
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(logger.name, levelno, '', 0, message, (), None)
    record.fields = {**(fields or {}), **kwargs}
    logger.handle(record)


def log_transfer_start(logger: logging.Logger, job_id: str, source_playlist_id: str,
                       item_count: int, **kwargs):
    with CorrelationContext(job_id=job_id, playlist_id=source_playlist_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Transfer started', item_count=item_count, **kwargs)


def log_transfer_complete(logger: logging.Logger, job_id: str, added_count: int,
                          skipped_count: int, **kwargs):
    with CorrelationContext(job_id=job_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Transfer completed',
                        added_count=added_count, skipped_count=skipped_count, **kwargs)


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log an error with its type and message as fields."""
    log_with_fields(logger, 'ERROR', message,
                    error_type=type(error).__name__, error_message=str(error), **kwargs)
