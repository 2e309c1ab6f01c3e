"""Domain events emitted by the tick pipeline and applied once per tick."""

from typing import Literal, Union

from pydantic import BaseModel

from models.orders import CompletedTrade

NotificationKind = Literal["info", "success", "warning", "error"]
NotificationCategory = Literal[
    "loan_due_soon",
    "loan_repaid",
    "loan_overdue",
    "margin_call",
    "margin_call_resolved",
    "forced_cover_warning",
    "forced_cover",
    "sector_crash",
    "stock_split",
    "order_failed",
    "general",
]


class Notification(BaseModel):
    """Read-only event record for the display collaborator.

    ``ttl_ms`` of 0 means the notification must be dismissed explicitly.
    Otherwise ``auto_dismiss_cycles`` counts the ticks it has left; it is
    derived from ``ttl_ms`` and the update interval on the first countdown.
    ``loan_id`` / ``symbol`` / ``order_id`` correlate it with an entity.
    """

    id: str
    kind: NotificationKind
    category: NotificationCategory = "general"
    title: str
    message: str
    ttl_ms: int = 0
    cycle: int = 0
    loan_id: str | None = None
    symbol: str | None = None
    order_id: str | None = None
    auto_dismiss_cycles: int | None = None
    payload: dict[str, float | int | str] = {}


class NotificationDismissal(BaseModel):
    """Removes margin-call notifications of a symbol from the active list."""

    symbol: str
    category: NotificationCategory = "margin_call"


TickEvent = Union[Notification, NotificationDismissal, CompletedTrade]
