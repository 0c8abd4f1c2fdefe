"""JSON logging for the command pipeline, with wallet-secret redaction.

Every record is emitted as one JSON object. Pipeline components attach
``command_id``, ``intent``, ``stage`` and timing through ``extra=``; those keys
become top-level fields. Private keys, seed phrases and API credentials are
masked in the message, the string args and the traceback before anything is
written.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TextIO, Tuple

# (pattern, replacement) pairs applied in order. PEM blocks go first so the
# hex rule below does not chew through them piecemeal.
SECRET_PATTERNS: List[Tuple[str, str]] = [
    (
        r'-----BEGIN[A-Z ]+PRIVATE KEY-----[\s\S]*?-----END[A-Z ]+PRIVATE KEY-----',
        '***PRIVATE_KEY_REDACTED***'
    ),
    # 32-byte hex is a signing key; 20-byte wallet addresses stay readable
    (
        r'\b(0x)?[a-fA-F0-9]{64}\b',
        '***WALLET_KEY_REDACTED***'
    ),
    (
        r'(?i)(mnemonic|seed[_ -]?phrase|seed)["\']?\s*[:=]\s*["\']?([a-z]+(?:\s+[a-z]+){11,23})["\']?',
        r'\1=***SEED_REDACTED***'
    ),
    (
        r'(?i)(bearer\s+|token["\']?\s*[:=]\s*["\']?)([a-zA-Z0-9_\-\.\/+]{20,})["\']?',
        r'\1***TOKEN_REDACTED***'
    ),
    (
        r'(?i)(password|passwd|pwd)["\']?\s*[:=]\s*["\']?([^\s"\']+)["\']?',
        r'\1=***PASSWORD_REDACTED***'
    ),
    (
        r'(?i)(api[_-]?key|api[_-]?secret|secret[_-]?key|private[_-]?key)["\']?\s*[:=]\s*["\']?([a-zA-Z0-9_\-\.\/+]{16,})["\']?',
        r'\1=***REDACTED***'
    ),
]

_COMPILED_PATTERNS = [(re.compile(pattern), replacement) for pattern, replacement in SECRET_PATTERNS]

# ``extra=`` keys promoted to top-level JSON fields
PIPELINE_FIELDS = ("command_id", "intent", "stage", "event", "elapsed_ms", "error_class")


def redact_secrets(text: str) -> str:
    """Mask every secret pattern in ``text``; falsy input is returned as is."""
    if not text:
        return text

    result = str(text)
    for pattern, replacement in _COMPILED_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _redact_value(value: Any) -> Any:
    # Non-strings pass through so %d and %.2f still format
    return redact_secrets(value) if isinstance(value, str) else value


class SecretRedactionFilter(logging.Filter):
    """Masks secrets in ``msg`` and string ``args`` before formatting."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_secrets(str(record.msg))

        if isinstance(record.args, dict):
            record.args = {k: _redact_value(v) for k, v in record.args.items()}
        elif isinstance(record.args, (tuple, list)):
            record.args = tuple(_redact_value(arg) for arg in record.args)

        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, pipeline fields included when set."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_secrets(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
        }

        for name in PIPELINE_FIELDS:
            if hasattr(record, name):
                payload[name] = _redact_value(getattr(record, name))

        if record.exc_info:
            payload.setdefault("error_class", record.exc_info[0].__name__)
            payload["exception"] = redact_secrets(self.formatException(record.exc_info))

        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Handler:
    """Route the root logger through one redacting JSON handler.

    Existing root handlers are removed. Returns the installed handler.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(SecretRedactionFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
