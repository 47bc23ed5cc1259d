"""Normalization of Shopify billing webhook payloads.

Shopify reports charge changes in more than one shape depending on the
topic and API version:

- REST envelope: ``{"recurring_application_charge": {"id": 1, "status": ...}}``
- flat REST charge: ``{"id": 1, "status": ..., "name": ..., "price": "29.00"}``
- GraphQL style: ``{"app_subscription": {"admin_graphql_api_id": "gid://...", ...}}``

Each is mapped to a single ``ChargeUpdate`` before the reconciler sees it.
Charge ids are reduced to their numeric form so the REST and GraphQL
topics for one subscription name the same charge.
"""

import logging
from typing import Any

from convertly.core.config import settings
from convertly.models.shop import PlanStatus, PlanType
from convertly.schemas.billing import ChargeUpdate

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"active", "accepted"})
PENDING_STATUSES = frozenset({"pending"})

ANNUAL_INTERVALS = frozenset({"annual", "every_365_days"})
ANNUAL_NAME_MARKERS = ("annual", "yearly", "year")

CHARGE_GID_PREFIXES = (
    "gid://shopify/AppSubscription/",
    "gid://shopify/RecurringApplicationCharge/",
)


def canonical_charge_id(raw: Any) -> str | None:
    """Reduce a charge identifier to the numeric id both billing APIs share.

    REST topics report ``1029266947`` while GraphQL payloads report
    ``gid://shopify/AppSubscription/1029266947`` for the same subscription.
    """
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        return None
    value = str(raw).strip()
    for prefix in CHARGE_GID_PREFIXES:
        if value.startswith(prefix):
            value = value[len(prefix):].strip()
            break
    return value or None


def _text(raw: Any) -> str | None:
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        return None
    return str(raw).strip() or None


def normalize_charge_status(raw: Any) -> PlanStatus:
    """Map a Shopify charge status onto active, pending or cancelled.

    Anything not recognised as active or pending (declined, expired, frozen,
    garbage) counts as cancelled so access is never granted by accident.
    """
    value = str(raw or "").strip().lower()
    if value in ACTIVE_STATUSES:
        return PlanStatus.ACTIVE
    if value in PENDING_STATUSES:
        return PlanStatus.PENDING
    return PlanStatus.CANCELLED


def _parse_price(raw: Any) -> float | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        # GraphQL money objects: {"amount": "29.00", "currencyCode": "USD"}
        raw = raw.get("amount")
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def infer_plan_type(
    name: str | None = None,
    price: float | None = None,
    interval: str | None = None,
) -> PlanType:
    """Infer monthly vs annual from the charge's name, billing interval or price."""
    interval = _text(interval)
    if interval and interval.lower() in ANNUAL_INTERVALS:
        return PlanType.ANNUAL
    lowered = (_text(name) or "").lower()
    if any(marker in lowered for marker in ANNUAL_NAME_MARKERS):
        return PlanType.ANNUAL
    if price is not None and price >= settings.annual_price:
        return PlanType.ANNUAL
    return PlanType.MONTHLY


def _unwrap(payload: dict[str, Any]) -> tuple[dict[str, Any], Any] | None:
    """Return the charge object and its identifier for a known payload shape."""
    envelope = payload.get("recurring_application_charge")
    if isinstance(envelope, dict):
        return envelope, envelope.get("id")

    subscription = payload.get("app_subscription")
    if isinstance(subscription, dict):
        return subscription, subscription.get("admin_graphql_api_id") or subscription.get("id")

    if "id" in payload and "status" in payload:
        return payload, payload.get("id")

    return None


def normalize_charge_payload(payload: Any) -> ChargeUpdate | None:
    """Turn any supported billing payload into a ``ChargeUpdate``.

    Returns:
        None if the payload matches no known shape or lacks a charge id.
    """
    if not isinstance(payload, dict):
        return None

    unwrapped = _unwrap(payload)
    if unwrapped is None:
        logger.warning("Unrecognised billing payload keys: %s", sorted(payload)[:10])
        return None

    charge, raw_id = unwrapped
    charge_id = canonical_charge_id(raw_id)
    if charge_id is None:
        return None

    name = _text(charge.get("name"))
    price = _parse_price(charge.get("price"))
    interval = _text(charge.get("interval")) or _text(charge.get("billing_interval"))

    return ChargeUpdate(
        charge_id=charge_id,
        status=normalize_charge_status(charge.get("status")),
        plan_type=infer_plan_type(name, price, interval),
        name=name,
        price=price,
        interval=interval,
    )
