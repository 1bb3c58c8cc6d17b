"""
Webhook Schemas
===============

Pydantic models for PayKickstart webhook payloads.

PayKickstart has shipped several payload shapes over time. The event body
is either wrapped under ``data`` or flat on the envelope, and most fields
have a nested alternative (``customer.email`` vs ``customer_email``).
``PayKickstartEventData`` folds all of them into one flat model.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from app.utils.helpers import from_epoch_seconds


def _nested(data: dict[str, Any], parent: str, key: str) -> Any:
    value = data.get(parent)
    if isinstance(value, dict):
        return value.get(key)
    return None


def _first(*values: Any) -> Any:
    """First value that is not None or an empty string."""
    for value in values:
        if value is not None and value != "":
            return value
    return None


class PayKickstartEvent(BaseModel):
    """Webhook envelope. Only the type is read here; the rest stays raw."""

    model_config = ConfigDict(extra="allow")

    event_type: Optional[str] = None
    type: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    @property
    def kind_name(self) -> Optional[str]:
        return self.event_type or self.type

    def payload(self) -> dict[str, Any]:
        """Event body: ``data`` when present, otherwise the envelope itself."""
        if self.data is not None:
            return self.data
        return self.model_dump(exclude={"data"})


class PayKickstartEventData(BaseModel):
    """Normalized event body."""

    model_config = ConfigDict(extra="ignore")

    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    product_name: Optional[str] = None
    status: Optional[str] = None
    billing_cycle: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    failure_message: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def collapse_synonyms(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        return {
            "subscription_id": _first(
                data.get("subscription_id"),
                data.get("id"),
                _nested(data, "subscription", "id"),
            ),
            "customer_id": _first(
                data.get("customer_id"),
                _nested(data, "customer", "id"),
            ),
            "customer_email": _first(
                data.get("customer_email"),
                _nested(data, "customer", "email"),
            ),
            "customer_name": _first(
                data.get("customer_name"),
                _nested(data, "customer", "name"),
            ),
            "product_name": _first(
                data.get("product_name"),
                _nested(data, "product", "name"),
            ),
            "status": _first(data.get("status")),
            "billing_cycle": _first(
                data.get("billing_cycle"),
                data.get("interval"),
            ),
            "current_period_start": from_epoch_seconds(data.get("current_period_start")),
            "current_period_end": from_epoch_seconds(data.get("current_period_end")),
            "cancel_at_period_end": data.get("cancel_at_period_end"),
            "failure_message": _first(data.get("failure_message")),
        }

    @field_validator(
        "subscription_id",
        "customer_id",
        "customer_email",
        "customer_name",
        "product_name",
        "status",
        "billing_cycle",
        "failure_message",
        mode="before",
    )
    @classmethod
    def coerce_str(cls, v: Any) -> Optional[str]:
        # Ids arrive as ints in some payload versions
        if v is None:
            return None
        if isinstance(v, (dict, list)):
            raise ValueError("expected a scalar value")
        return str(v).strip() or None

    @field_validator("cancel_at_period_end", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> Optional[bool]:
        if v is None or isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return bool(v)
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no"):
                return False
        raise ValueError("cancel_at_period_end must be a boolean")

    @property
    def normalized_billing_cycle(self) -> Optional[str]:
        return self.billing_cycle.lower() if self.billing_cycle else None
