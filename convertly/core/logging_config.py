"""Structured JSON logging configuration."""

import contextvars
import logging
import uuid

from pythonjsonlogger.json import JsonFormatter

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
shop_domain_var: contextvars.ContextVar[str] = contextvars.ContextVar("shop_domain", default="")


class RequestIdFilter(logging.Filter):
    """Inject request_id and shop_domain into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")  # type: ignore[attr-defined]
        record.shop_domain = shop_domain_var.get("")  # type: ignore[attr-defined]
        return True


def setup_logging(*, debug: bool = False) -> None:
    """Configure root logger with JSON formatter and request-id filter."""
    handler = logging.StreamHandler()
    formatter = JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(shop_domain)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    # SQL echo is noise at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def generate_request_id() -> str:
    """Generate a new request ID."""
    return uuid.uuid4().hex[:16]


def bind_shop_domain(shop_domain: str) -> None:
    """Attach the shop being served to subsequent log records of this request."""
    shop_domain_var.set(shop_domain)


def mask_token(token: str | None) -> str:
    """Render a secret token safe for logs: prefix, length and last 4 chars."""
    if not token:
        return "<empty>"
    if len(token) <= 10:
        return f"<{len(token)} chars>"
    return f"{token[:6]}...{token[-4:]} ({len(token)} chars)"
