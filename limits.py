import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amounts import percent_of
from models import (
    Limit,
    LimitKind,
    LimitPeriod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from periods import add_months, local_to_utc


logger = logging.getLogger(__name__)

# Evaluated high to low; anything below the last tier is "normal".
STATUS_TIERS = (
    (100, "exceeded"),
    (90, "critical"),
    (75, "warning"),
    (50, "caution"),
)
ALERT_THRESHOLDS = (50, 75, 90, 100)


@dataclass(frozen=True)
class LimitState:
    percent_used: float
    remaining_cents: int
    exceeded: bool
    status: str
    alerts: tuple[int, ...]


def status_for_percent(percent: Union[Decimal, float]) -> str:
    for threshold, status in STATUS_TIERS:
        if percent >= threshold:
            return status
    return "normal"


def limit_state(limit: Limit) -> LimitState:
    ceiling = limit.amount_cents or 0
    accrued = limit.accrued_cents or 0
    # Tiers and alerts read the exact ratio; only the exposed value is rounded.
    if ceiling > 0:
        exact = min(Decimal(100), Decimal(accrued) * 100 / Decimal(ceiling))
    else:
        exact = Decimal(0)
    alerts = tuple(
        threshold
        for threshold in ALERT_THRESHOLDS
        if exact >= threshold and getattr(limit, f"alert_{threshold}", False)
    )
    return LimitState(
        percent_used=min(100.0, percent_of(accrued, ceiling)),
        remaining_cents=max(0, ceiling - accrued),
        exceeded=accrued > ceiling,
        status=status_for_percent(exact),
        alerts=alerts,
    )


def next_reset_after(last_reset: datetime, period: LimitPeriod) -> datetime:
    if period == LimitPeriod.daily:
        return last_reset + timedelta(days=1)
    if period == LimitPeriod.weekly:
        return last_reset + timedelta(days=7)
    if period == LimitPeriod.monthly:
        return add_months(last_reset, 1)
    if period == LimitPeriod.yearly:
        return add_months(last_reset, 12)
    raise ValueError(f"Unsupported limit period: {period}")


class LimitEngine:
    """Accrual, reset and reconciliation of limit counters.

    The current instant is always passed in; nothing here reads the clock.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def schedule(self, limit: Limit, now: datetime) -> Limit:
        if limit.last_reset_at is None:
            limit.last_reset_at = now
        limit.next_reset_at = next_reset_after(limit.last_reset_at, limit.period)
        return limit

    def matching_limit_ids(
        self, user_id: int, category_id: Optional[int], card_id: Optional[int]
    ) -> list[int]:
        scopes = [Limit.kind == LimitKind.general]
        if category_id is not None:
            scopes.append(
                and_(Limit.kind == LimitKind.category, Limit.category_id == category_id)
            )
        if card_id is not None:
            scopes.append(and_(Limit.kind == LimitKind.card, Limit.card_id == card_id))
        stmt = (
            select(Limit.id)
            .where(Limit.user_id == user_id, Limit.active.is_(True), or_(*scopes))
            .order_by(Limit.id)
        )
        return list(self.session.scalars(stmt).all())

    def apply_expense(
        self,
        user_id: int,
        category_id: Optional[int],
        card_id: Optional[int],
        amount_cents: int,
    ) -> list[int]:
        """Add an expense to every active limit it falls under.

        One expense may count against a general, a category and a card limit
        at the same time. Each counter is bumped with a single UPDATE so
        concurrent writers never lose increments; a failure on one limit is
        logged and does not undo the others.
        """
        increment = abs(int(amount_cents))
        if increment == 0:
            return []
        applied: list[int] = []
        for limit_id in self.matching_limit_ids(user_id, category_id, card_id):
            try:
                with self.session.begin_nested():
                    self.session.execute(
                        update(Limit)
                        .where(Limit.id == limit_id, Limit.user_id == user_id)
                        .values(accrued_cents=Limit.accrued_cents + increment)
                    )
            except SQLAlchemyError as exc:
                logger.warning(
                    f"limit_accrual_failed: limit_id={limit_id} user_id={user_id} error={exc}"
                )
                continue
            applied.append(limit_id)
        if applied:
            logger.info(
                f"limit_accrual: user_id={user_id} amount_cents={increment} limits={applied}"
            )
        return applied

    def reset(self, limit: Limit, now: datetime) -> Limit:
        if limit.last_reset_at is not None and now <= limit.last_reset_at:
            now = limit.last_reset_at + timedelta(microseconds=1)
        limit.accrued_cents = 0
        limit.last_reset_at = now
        limit.next_reset_at = next_reset_after(now, limit.period)
        self.session.flush()
        return limit

    def find_due(self, now: datetime) -> list[Limit]:
        stmt = (
            select(Limit)
            .where(Limit.active.is_(True), Limit.next_reset_at <= now)
            .order_by(Limit.next_reset_at, Limit.id)
        )
        return list(self.session.scalars(stmt).all())

    def run_due_resets(self, now: datetime) -> int:
        due = self.find_due(now)
        for limit in due:
            self.reset(limit, now)
        if due:
            logger.info(f"limit_reset_sweep: now={now.isoformat()} reset={len(due)}")
        return len(due)

    def spent_since_reset(self, limit: Limit, now: datetime) -> int:
        # Accrual follows record time, not the transaction's own date, so the
        # window is on created_at (UTC) between the last reset and now.
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == limit.user_id,
            Transaction.deleted_at.is_(None),
            Transaction.type == TransactionType.expense,
            Transaction.status == TransactionStatus.confirmed,
            Transaction.created_at >= local_to_utc(limit.last_reset_at),
            Transaction.created_at <= local_to_utc(now),
        )
        if limit.kind == LimitKind.category:
            stmt = stmt.where(Transaction.category_id == limit.category_id)
        elif limit.kind == LimitKind.card:
            stmt = stmt.where(Transaction.card_id == limit.card_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def recalculate(self, limit: Limit, now: datetime) -> Limit:
        previous = limit.accrued_cents
        limit.accrued_cents = self.spent_since_reset(limit, now)
        self.session.flush()
        if previous != limit.accrued_cents:
            logger.info(
                f"limit_recalculated: limit_id={limit.id} "
                f"accrued_cents={previous}->{limit.accrued_cents}"
            )
        return limit
