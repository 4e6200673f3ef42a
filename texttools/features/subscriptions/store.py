"""
texttools/features/subscriptions/store.py

Subscription record store.

Handles:
- Lookup by user id and by Stripe subscription id
- Idempotent creation of the default free record
- Atomic usage increments (plain and quota-conditional)
- Bulk monthly usage reset

Counters are only ever changed with single UPDATE statements so concurrent
requests for the same user cannot lose increments. save() persists plan and
billing fields and leaves the counters alone for the same reason.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from texttools.core.database import get_db_session, subscriptions
from texttools.models.subscription import FeatureKind, SubscriptionRecord, UsageCounters


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_record(row) -> SubscriptionRecord:
    return SubscriptionRecord(
        user_id=row.user_id,
        plan_type=row.plan_type,
        status=row.status,
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        current_period_end=row.current_period_end,
        usage_this_month=UsageCounters(
            detections=row.detections,
            humanizations=row.humanizations,
        ),
        last_event_at=row.last_event_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _select_by_user(session, user_id: str):
    return session.execute(
        select(subscriptions).where(subscriptions.c.user_id == user_id)
    ).first()


def find(user_id: str) -> Optional[SubscriptionRecord]:
    with get_db_session() as session:
        row = _select_by_user(session, user_id)
    return _row_to_record(row) if row else None


def find_by_subscription_ref(subscription_ref: str) -> Optional[SubscriptionRecord]:
    """Find the record that carries the given Stripe subscription id."""
    if not subscription_ref:
        return None
    with get_db_session() as session:
        row = session.execute(
            select(subscriptions)
            .where(subscriptions.c.stripe_subscription_id == subscription_ref)
            .order_by(subscriptions.c.updated_at.desc())
            .limit(1)
        ).first()
    return _row_to_record(row) if row else None


def create_default(user_id: str) -> SubscriptionRecord:
    """
    Create the free/active/zero-usage record for a user.

    Idempotent: if a concurrent caller created the record first the unique
    constraint on user_id fires and the existing row is returned instead.
    """
    now = _now()
    try:
        with get_db_session() as session:
            session.execute(
                insert(subscriptions).values(
                    user_id=user_id,
                    plan_type="free",
                    status="active",
                    detections=0,
                    humanizations=0,
                    created_at=now,
                    updated_at=now,
                )
            )
            row = _select_by_user(session, user_id)
        logger.info("[subscriptions] created default record", extra={"user_id": user_id})
        return _row_to_record(row)
    except IntegrityError:
        existing = find(user_id)
        if existing is None:
            raise
        return existing


def get_or_create(user_id: str) -> SubscriptionRecord:
    record = find(user_id)
    if record is not None:
        return record
    return create_default(user_id)


def save(record: SubscriptionRecord) -> SubscriptionRecord:
    """
    Persist plan, status, Stripe refs, period end and last_event_at.

    Upserts by user_id and always refreshes updated_at. Usage counters are
    owned by increment_counter/consume_if_below/reset_all_usage.
    """
    values = {
        "plan_type": record.plan_type,
        "status": record.status,
        "stripe_customer_id": record.stripe_customer_id,
        "stripe_subscription_id": record.stripe_subscription_id,
        "current_period_end": record.current_period_end,
        "last_event_at": record.last_event_at,
        "updated_at": _now(),
    }
    with get_db_session() as session:
        result = session.execute(
            update(subscriptions)
            .where(subscriptions.c.user_id == record.user_id)
            .values(**values)
        )
        if not result.rowcount:
            session.execute(
                insert(subscriptions).values(
                    user_id=record.user_id,
                    detections=record.usage_this_month.detections,
                    humanizations=record.usage_this_month.humanizations,
                    created_at=values["updated_at"],
                    **values,
                )
            )
        row = _select_by_user(session, record.user_id)
    return _row_to_record(row)


def increment_counter(user_id: str, kind: FeatureKind, amount: int = 1) -> Optional[UsageCounters]:
    """
    Atomically add `amount` to one usage counter.

    Returns the counters after the increment, or None if the user has no record.
    """
    column = subscriptions.c[kind.counter]
    with get_db_session() as session:
        result = session.execute(
            update(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .values({column: column + amount, subscriptions.c.updated_at: _now()})
        )
        if not result.rowcount:
            return None
        row = _select_by_user(session, user_id)
    return _row_to_record(row).usage_this_month


def consume_if_below(user_id: str, kind: FeatureKind, limit: int) -> Optional[UsageCounters]:
    """
    Increment a usage counter by one only while it is below `limit`.

    The bound is checked inside the UPDATE, so two concurrent requests at
    limit - 1 cannot both succeed. Returns None when nothing was consumed.
    """
    column = subscriptions.c[kind.counter]
    with get_db_session() as session:
        result = session.execute(
            update(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .where(column < limit)
            .values({column: column + 1, subscriptions.c.updated_at: _now()})
        )
        if not result.rowcount:
            return None
        row = _select_by_user(session, user_id)
    return _row_to_record(row).usage_this_month


def reset_all_usage() -> int:
    """Zero both counters on every record. Returns the number of records touched."""
    with get_db_session() as session:
        result = session.execute(
            update(subscriptions).values(
                detections=0,
                humanizations=0,
                updated_at=_now(),
            )
        )
        return result.rowcount or 0
