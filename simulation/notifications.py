"""Notification construction and the per-tick event application."""

from __future__ import annotations

import math
import random
import uuid

from models.events import Notification, NotificationCategory, NotificationDismissal, NotificationKind, TickEvent


def new_id(rng: random.Random, prefix: str) -> str:
    """Identifier drawn from the injected generator so seeded runs stay reproducible."""
    return f"{prefix}_{uuid.UUID(int=rng.getrandbits(128), version=4).hex[:12]}"


def make_notification(
    rng: random.Random,
    kind: NotificationKind,
    category: NotificationCategory,
    title: str,
    message: str,
    ttl_ms: int,
    cycle: int,
    **correlation: object,
) -> Notification:
    return Notification(
        id=new_id(rng, "ntf"),
        kind=kind,
        category=category,
        title=title,
        message=message,
        ttl_ms=ttl_ms,
        cycle=cycle,
        **correlation,
    )


def apply_events(notifications: list[Notification], events: list[TickEvent]) -> list[Notification]:
    """Apply a tick's notification events in emission order.

    Dismissals remove earlier notifications of the matching symbol and
    category. Completed trades are ignored here.
    """
    active = list(notifications)
    for event in events:
        if isinstance(event, Notification):
            active.append(event)
        elif isinstance(event, NotificationDismissal):
            active = [n for n in active if not (n.symbol == event.symbol and n.category == event.category)]
    return active


def expire_notifications(notifications: list[Notification], interval_ms: int) -> list[Notification]:
    """Count down notifications with a positive ttl by one tick and drop the expired ones."""
    kept: list[Notification] = []
    for notification in notifications:
        if notification.ttl_ms <= 0:
            kept.append(notification)
            continue
        remaining = notification.auto_dismiss_cycles
        if remaining is None:
            remaining = max(1, math.ceil(notification.ttl_ms / interval_ms))
        remaining -= 1
        if remaining > 0:
            kept.append(notification.model_copy(update={"auto_dismiss_cycles": remaining}))
    return kept


def dismiss(notifications: list[Notification], notification_id: str) -> list[Notification]:
    return [n for n in notifications if n.id != notification_id]


def dismiss_for_loan(notifications: list[Notification], loan_id: str) -> list[Notification]:
    return [n for n in notifications if n.loan_id != loan_id]
