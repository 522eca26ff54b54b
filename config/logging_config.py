"""
Logging setup for the import service.

LOG_LEVEL picks the root level (INFO by default). Output is one JSON object
per line when LOG_JSON is truthy or RAILWAY_ENVIRONMENT is present, and a
plain text line otherwise. API keys are never logged. Wallet addresses are
masked at the call site with mask_address; AddressMaskingFilter masks any
full address that still reaches a handler.
"""
import json
import logging
import os
import re
import sys
from decimal import Decimal
from typing import Any

from utils.common_helpers import mask_address

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

ADDRESS_IN_TEXT = re.compile(r"0x[a-fA-F0-9]{40}")


def _to_jsonable(obj: Any):
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    return repr(obj)


class JsonFormatter(logging.Formatter):
    """One JSON object per record; keys of a dict passed as extra={"extra": {...}} are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            entry.update({k: v for k, v in fields.items() if v is not None and k not in entry})
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=_to_jsonable)


class AddressMaskingFilter(logging.Filter):
    """Rewrites any full 0x-address left in a message to its masked form."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "0x" in message:
            masked = ADDRESS_IN_TEXT.sub(lambda m: mask_address(m.group(0)), message)
            if masked != message:
                record.msg = masked
                record.args = None
        return True


def use_json_logs() -> bool:
    flag = os.getenv("LOG_JSON", "").strip().lower()
    return flag in ("1", "true", "yes") or bool(os.getenv("RAILWAY_ENVIRONMENT"))


def _build_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(AddressMaskingFilter())
    handler.setFormatter(JsonFormatter() if use_json_logs() else logging.Formatter(TEXT_FORMAT))
    return handler


def configure_logging() -> None:
    level = getattr(logging, (os.getenv("LOG_LEVEL") or "INFO").strip().upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload re-imports main; replace rather than stack handlers
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(_build_handler(level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
