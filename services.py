from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from amounts import cents_to_amount, divide_cents, percent_of, whole_percent
from limits import LimitEngine, limit_state
from models import (
    Card,
    Category,
    Limit,
    LimitKind,
    LimitPeriod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from periods import Period, iter_months, local_now, local_today, month_bounds
from schemas import (
    CardIn,
    CategoryIn,
    CategoryLimitIn,
    LimitIn,
    TransactionIn,
)


logger = logging.getLogger(__name__)

# Limit tiers at or above 75 % usage.
IN_ALERT_STATUSES = frozenset({"warning", "critical", "exceeded"})


class InvalidInputError(ValueError):
    pass


class NotFoundError(ValueError):
    pass


class StorageError(RuntimeError):
    def __init__(self, operation: str, original: Exception) -> None:
        super().__init__(f"{operation} failed: {original}")
        self.operation = operation


@contextmanager
def storage_errors(session: Session, operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"storage_error: operation={operation} error={exc}")
        raise StorageError(operation, exc) from exc


def category_to_dict(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "icon": category.icon,
        "archived": category.archived_at is not None,
    }


def card_to_dict(card: Card) -> dict[str, object]:
    return {
        "id": card.id,
        "name": card.name,
        "brand": card.brand,
        "archived": card.archived_at is not None,
    }


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "status": txn.status.value,
        "amount": cents_to_amount(txn.amount_cents),
        "date": txn.date.isoformat(),
        "description": txn.description,
        "category_id": txn.category_id,
        "card_id": txn.card_id,
    }


def limit_to_dict(limit: Limit) -> dict[str, object]:
    state = limit_state(limit)
    return {
        "id": limit.id,
        "name": limit.name,
        "kind": limit.kind.value,
        "period": limit.period.value,
        "category_id": limit.category_id,
        "card_id": limit.card_id,
        "active": limit.active,
        "amount": cents_to_amount(limit.amount_cents),
        "accrued": cents_to_amount(limit.accrued_cents),
        "remaining": cents_to_amount(state.remaining_cents),
        "percent_used": state.percent_used,
        "exceeded": state.exceeded,
        "status": state.status,
        "alerts": {
            "50": limit.alert_50,
            "75": limit.alert_75,
            "90": limit.alert_90,
            "100": limit.alert_100,
        },
        "triggered_alerts": list(state.alerts),
        "last_reset_at": limit.last_reset_at.isoformat(),
        "next_reset_at": limit.next_reset_at.isoformat(),
        "notes": limit.notes,
    }


def counts_toward_limits(txn: Transaction) -> bool:
    return (
        txn.type == TransactionType.expense
        and txn.status == TransactionStatus.confirmed
        and txn.deleted_at is None
    )


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(
        self,
        type: Optional[TransactionType] = None,
        include_archived: bool = False,
    ) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type is not None:
            stmt = stmt.where(Category.type == type)
        if not include_archived:
            stmt = stmt.where(Category.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.id == category_id
            )
        )
        if not category:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise InvalidInputError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            color=data.color,
            icon=data.icon,
        )
        with storage_errors(self.session, "category_create"):
            self.session.add(category)
            self.session.commit()
        self.session.refresh(category)
        return category

    def archive(self, category_id: int) -> None:
        category = self.get(category_id)
        with storage_errors(self.session, "category_archive"):
            category.archived_at = local_now()
            self.session.commit()

    def resolve_by_name(
        self, name: str, type: TransactionType = TransactionType.expense
    ) -> Category:
        """Find a category by name: exact (case-insensitive), else one edit away."""
        clean = (name or "").strip()
        if not clean:
            raise InvalidInputError("Category name is required")
        input_lower = clean.lower()
        exact = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == type,
                func.lower(Category.name) == input_lower,
            )
        )
        if exact:
            return exact

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in self.list_all(type=type, include_archived=True):
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is None or best_distance > 1:
            raise NotFoundError("Category not found")
        if len(best) > 1:
            options = ", ".join(sorted({c.name for c in best}))
            raise InvalidInputError(
                f"Category '{clean}' is ambiguous; matches: {options}"
            )
        return best[0]


class CardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, include_archived: bool = False) -> list[Card]:
        stmt = select(Card).where(Card.user_id == self.user_id).order_by(Card.name)
        if not include_archived:
            stmt = stmt.where(Card.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, card_id: int) -> Card:
        card = self.session.scalar(
            select(Card).where(Card.user_id == self.user_id, Card.id == card_id)
        )
        if not card:
            raise NotFoundError("Card not found")
        return card

    def create(self, data: CardIn) -> Card:
        existing = self.session.scalar(
            select(Card).where(
                Card.user_id == self.user_id,
                func.lower(Card.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise InvalidInputError("Card with this name already exists")
        card = Card(user_id=self.user_id, name=data.name.strip(), brand=data.brand)
        with storage_errors(self.session, "card_create"):
            self.session.add(card)
            self.session.commit()
        self.session.refresh(card)
        return card

    def archive(self, card_id: int) -> None:
        card = self.get(card_id)
        with storage_errors(self.session, "card_archive"):
            card.archived_at = local_now()
            self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn, *, today: Optional[date] = None) -> Transaction:
        amount_cents = data.amount_cents
        if amount_cents <= 0:
            raise InvalidInputError("Amount must be greater than zero")
        if data.category_id is not None:
            category = CategoryService(self.session, self.user_id).get(data.category_id)
            if category.type != data.type:
                raise InvalidInputError("Category type mismatch")
        if data.card_id is not None:
            CardService(self.session, self.user_id).get(data.card_id)

        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            status=data.status,
            amount_cents=amount_cents,
            date=data.date or today or local_today(),
            description=data.description.strip(),
            category_id=data.category_id,
            card_id=data.card_id,
        )
        with storage_errors(self.session, "transaction_create"):
            self.session.add(txn)
            self.session.flush()
            if counts_toward_limits(txn):
                LimitService(self.session, self.user_id).record_expense(
                    txn.category_id, txn.card_id, txn.amount_cents
                )
            self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.id == transaction_id,
                Transaction.deleted_at.is_(None),
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def list(
        self,
        period: Period,
        *,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        category_id: Optional[int] = None,
        card_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if type is not None:
            stmt = stmt.where(Transaction.type == type)
        if status is not None:
            stmt = stmt.where(Transaction.status == status)
        if category_id is not None:
            stmt = stmt.where(Transaction.category_id == category_id)
        if card_id is not None:
            stmt = stmt.where(Transaction.card_id == card_id)
        return self.session.scalars(stmt).all()

    def set_status(self, transaction_id: int, status: TransactionStatus) -> Transaction:
        # Leaving "confirmed" does not reverse earlier accruals; limits are
        # repaired with LimitService.recalculate.
        txn = self.get(transaction_id)
        was_counted = counts_toward_limits(txn)
        with storage_errors(self.session, "transaction_set_status"):
            txn.status = status
            self.session.flush()
            if counts_toward_limits(txn) and not was_counted:
                LimitService(self.session, self.user_id).record_expense(
                    txn.category_id, txn.card_id, txn.amount_cents
                )
            self.session.commit()
        return txn

    def soft_delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        with storage_errors(self.session, "transaction_delete"):
            txn.deleted_at = local_now()
            self.session.commit()


class LimitService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.engine = LimitEngine(session)

    def list_all(
        self, kind: Optional[LimitKind] = None, *, active_only: bool = True
    ) -> list[Limit]:
        stmt = (
            select(Limit)
            .options(joinedload(Limit.category), joinedload(Limit.card))
            .where(Limit.user_id == self.user_id)
            .order_by(Limit.created_at.desc(), Limit.id.desc())
        )
        if kind is not None:
            stmt = stmt.where(Limit.kind == kind)
        if active_only:
            stmt = stmt.where(Limit.active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, limit_id: int) -> Limit:
        limit = self.session.scalar(
            select(Limit).where(Limit.user_id == self.user_id, Limit.id == limit_id)
        )
        if not limit:
            raise NotFoundError("Limit not found")
        return limit

    def _category_limit(self, category_id: int) -> Optional[Limit]:
        return self.session.scalar(
            select(Limit).where(
                Limit.user_id == self.user_id,
                Limit.kind == LimitKind.category,
                Limit.category_id == category_id,
            )
        )

    def _expense_category(self, category_id: int) -> Category:
        category = CategoryService(self.session, self.user_id).get(category_id)
        if category.type != TransactionType.expense:
            raise InvalidInputError("Limits can only be set for expense categories")
        return category

    def _validate_scope(
        self, kind: LimitKind, category_id: Optional[int], card_id: Optional[int]
    ) -> None:
        if kind == LimitKind.category:
            if category_id is None:
                raise InvalidInputError("Category limits require a category")
            if card_id is not None:
                raise InvalidInputError("Category limits cannot reference a card")
            self._expense_category(category_id)
        elif kind == LimitKind.card:
            if card_id is None:
                raise InvalidInputError("Card limits require a card")
            if category_id is not None:
                raise InvalidInputError("Card limits cannot reference a category")
            CardService(self.session, self.user_id).get(card_id)
        elif category_id is not None or card_id is not None:
            raise InvalidInputError(
                f"{kind.value.capitalize()} limits cannot reference a category or card"
            )

    def create(self, data: LimitIn, *, now: Optional[datetime] = None) -> Limit:
        amount_cents = data.amount_cents
        if amount_cents <= 0:
            raise InvalidInputError("Limit amount must be greater than zero")
        self._validate_scope(data.kind, data.category_id, data.card_id)
        if data.kind == LimitKind.category and self._category_limit(data.category_id):
            raise InvalidInputError("A limit for this category already exists")

        limit = Limit(
            user_id=self.user_id,
            name=data.name.strip(),
            kind=data.kind,
            amount_cents=amount_cents,
            accrued_cents=0,
            period=data.period,
            category_id=data.category_id,
            card_id=data.card_id,
            active=data.active,
            alert_50=data.alert_50,
            alert_75=data.alert_75,
            alert_90=data.alert_90,
            alert_100=data.alert_100,
            notes=data.notes,
        )
        self.engine.schedule(limit, now or local_now())
        with storage_errors(self.session, "limit_create"):
            self.session.add(limit)
            self.session.commit()
        self.session.refresh(limit)
        return limit

    def update(self, limit_id: int, data: LimitIn) -> Limit:
        limit = self.get(limit_id)
        amount_cents = data.amount_cents
        if amount_cents <= 0:
            raise InvalidInputError("Limit amount must be greater than zero")
        self._validate_scope(data.kind, data.category_id, data.card_id)
        if data.kind == LimitKind.category:
            other = self._category_limit(data.category_id)
            if other and other.id != limit.id:
                raise InvalidInputError("A limit for this category already exists")

        with storage_errors(self.session, "limit_update"):
            limit.name = data.name.strip()
            limit.kind = data.kind
            limit.amount_cents = amount_cents
            limit.category_id = data.category_id
            limit.card_id = data.card_id
            limit.active = data.active
            limit.alert_50 = data.alert_50
            limit.alert_75 = data.alert_75
            limit.alert_90 = data.alert_90
            limit.alert_100 = data.alert_100
            limit.notes = data.notes
            if limit.period != data.period:
                limit.period = data.period
                self.engine.schedule(limit, limit.last_reset_at)
            self.session.commit()
        self.session.refresh(limit)
        return limit

    def delete(self, limit_id: int) -> None:
        limit = self.get(limit_id)
        with storage_errors(self.session, "limit_delete"):
            self.session.delete(limit)
            self.session.commit()

    def reset(self, limit_id: int, *, now: Optional[datetime] = None) -> Limit:
        limit = self.get(limit_id)
        with storage_errors(self.session, "limit_reset"):
            self.engine.reset(limit, now or local_now())
            self.session.commit()
        logger.info(f"limit_reset: limit_id={limit.id} user_id={self.user_id}")
        return limit

    def recalculate(self, limit_id: int, *, now: Optional[datetime] = None) -> Limit:
        limit = self.get(limit_id)
        with storage_errors(self.session, "limit_recalculate"):
            self.engine.recalculate(limit, now or local_now())
            self.session.commit()
        return limit

    def record_expense(
        self, category_id: Optional[int], card_id: Optional[int], amount_cents: int
    ) -> list[int]:
        if amount_cents == 0:
            raise InvalidInputError("Expense amount must not be zero")
        return self.engine.apply_expense(
            self.user_id, category_id, card_id, amount_cents
        )

    def alerts(self) -> list[Limit]:
        return [
            limit
            for limit in self.list_all()
            if limit_state(limit).status != "normal"
        ]

    def stats(self) -> dict[str, int]:
        all_limits = self.list_all(active_only=False)
        active = [limit for limit in all_limits if limit.active]
        states = [limit_state(limit) for limit in active]
        return {
            "total": len(all_limits),
            "active": len(active),
            "exceeded": sum(1 for state in states if state.exceeded),
            "in_alert": sum(1 for state in states if state.status in IN_ALERT_STATUSES),
        }

    def upsert_category_limit(
        self,
        data: CategoryLimitIn,
        *,
        now: Optional[datetime] = None,
    ) -> dict[str, object]:
        amount_cents = data.amount_cents
        if amount_cents <= 0:
            raise InvalidInputError("Category and amount (> 0) are required")
        now = now or local_now()
        category = self._expense_category(data.category_id)

        limit = self._category_limit(category.id)
        with storage_errors(self.session, "category_limit_upsert"):
            if limit:
                limit.amount_cents = amount_cents
                limit.active = True
            else:
                limit = Limit(
                    user_id=self.user_id,
                    name=category.name,
                    kind=LimitKind.category,
                    amount_cents=amount_cents,
                    accrued_cents=0,
                    period=LimitPeriod.monthly,
                    category_id=category.id,
                    active=True,
                )
                self.engine.schedule(limit, now)
                self.session.add(limit)
            self.session.commit()
        self.session.refresh(limit)
        return BudgetService(self.session, self.user_id).row_for_category(
            category, limit, today=now.date()
        )

    def delete_category_limit(self, category_name: str) -> None:
        category = CategoryService(self.session, self.user_id).resolve_by_name(
            category_name
        )
        limit = self._category_limit(category.id)
        if not limit:
            raise NotFoundError("Limit not found")
        with storage_errors(self.session, "category_limit_delete"):
            self.session.delete(limit)
            self.session.commit()


def run_due_resets(session: Session, now: Optional[datetime] = None) -> int:
    """Reset every active limit, across all owners, whose period has elapsed."""
    with storage_errors(session, "run_due_resets"):
        count = LimitEngine(session).run_due_resets(now or local_now())
        session.commit()
    return count


BUDGET_STATUS_TIERS = ((100, "exceeded"), (80, "warning"))


def budget_status(percentage: int) -> str:
    for threshold, status in BUDGET_STATUS_TIERS:
        if percentage >= threshold:
            return status
    return "safe"


class BudgetService:
    """Current-month spending per expense category against its category limit.

    Uses its own coarse safe/warning/exceeded scale, separate from the
    five-tier limit status.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def spent_by_category(
        self, start: date, end: date, category_id: Optional[int] = None
    ) -> dict[int, tuple[int, int]]:
        stmt = (
            select(
                Transaction.category_id,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent"),
                func.count(Transaction.id).label("txn_count"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.type == TransactionType.expense,
                Transaction.status == TransactionStatus.confirmed,
                Transaction.category_id.is_not(None),
                Transaction.date.between(start, end),
            )
            .group_by(Transaction.category_id)
        )
        if category_id is not None:
            stmt = stmt.where(Transaction.category_id == category_id)
        return {
            row.category_id: (int(row.spent or 0), int(row.txn_count or 0))
            for row in self.session.execute(stmt)
        }

    @staticmethod
    def _row(
        category: Category, limit: Optional[Limit], spent: int, count: int
    ) -> dict[str, object]:
        budget = limit.amount_cents if limit else 0
        raw_percentage = whole_percent(spent, budget)
        return {
            "limit_id": limit.id if limit else None,
            "category_id": category.id,
            "name": category.name,
            "icon": category.icon,
            "color": category.color,
            "budget": cents_to_amount(budget),
            "spent": cents_to_amount(spent),
            "remaining": cents_to_amount(max(0, budget - spent)),
            "percentage": min(100, raw_percentage),
            "transaction_count": count,
            "status": budget_status(raw_percentage),
        }

    def budget_view(self, today: Optional[date] = None) -> list[dict[str, object]]:
        today = today or local_today()
        start, end = month_bounds(today.year, today.month)
        categories = CategoryService(self.session, self.user_id).list_all(
            type=TransactionType.expense
        )
        limits = LimitService(self.session, self.user_id).list_all(
            kind=LimitKind.category
        )
        limit_by_category = {limit.category_id: limit for limit in limits}
        spent_by_category = self.spent_by_category(start, end)

        rows: list[dict[str, object]] = []
        for category in categories:
            spent, count = spent_by_category.get(category.id, (0, 0))
            rows.append(
                self._row(category, limit_by_category.get(category.id), spent, count)
            )
        return rows

    def row_for_category(
        self, category: Category, limit: Optional[Limit], *, today: date
    ) -> dict[str, object]:
        start, end = month_bounds(today.year, today.month)
        spent, count = self.spent_by_category(start, end, category.id).get(
            category.id, (0, 0)
        )
        return self._row(category, limit, spent, count)


AVAILABLE_REPORTS = (
    {
        "id": "financial",
        "name": "Financial report",
        "description": "Summary, breakdown, top categories, monthly evolution and analyses",
        "parameters": ["period", "start", "end", "group_by"],
    },
    {
        "id": "categories",
        "name": "Category report",
        "description": "Totals, counts, averages and share per category",
        "parameters": ["period", "start", "end", "category_type"],
    },
    {
        "id": "cash-flow",
        "name": "Cash flow",
        "description": "Monthly income, expense and cumulative balance for a year",
        "parameters": ["year"],
    },
)
EXPORT_FORMATS = ("json",)


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _confirmed_in_range(self, start: date, end: date) -> list:
        return [
            Transaction.user_id == self.user_id,
            Transaction.deleted_at.is_(None),
            Transaction.status == TransactionStatus.confirmed,
            Transaction.date.between(start, end),
        ]

    def _totals_by_type(self, start: date, end: date) -> dict[str, int]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .where(*self._confirmed_in_range(start, end))
            .group_by(Transaction.type)
        )
        totals = {"income": 0, "expense": 0, "count": 0}
        for row in self.session.execute(stmt):
            totals[row.type.value] = int(row.total or 0)
            totals["count"] += int(row.txn_count or 0)
        return totals

    def financial_summary(self, start: date, end: date) -> dict[str, object]:
        totals = self._totals_by_type(start, end)
        return {
            "income": cents_to_amount(totals["income"]),
            "expense": cents_to_amount(totals["expense"]),
            "balance": cents_to_amount(totals["income"] - totals["expense"]),
            "transaction_count": totals["count"],
        }

    def _monthly_totals(self, start: date, end: date) -> dict[tuple[int, int], dict]:
        year = func.strftime("%Y", Transaction.date).label("year")
        month = func.strftime("%m", Transaction.date).label("month")
        stmt = (
            select(
                year,
                month,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .where(*self._confirmed_in_range(start, end))
            .group_by("year", "month", Transaction.type)
        )
        totals: dict[tuple[int, int], dict] = {}
        for row in self.session.execute(stmt):
            bucket = totals.setdefault(
                (int(row.year), int(row.month)), {"income": 0, "expense": 0, "count": 0}
            )
            bucket[row.type.value] = int(row.total or 0)
            bucket["count"] += int(row.txn_count or 0)
        return totals

    def cash_flow(self, year: int) -> dict[str, object]:
        totals = self._monthly_totals(date(year, 1, 1), date(year, 12, 31))
        months: list[dict[str, object]] = []
        cumulative = 0
        total_income = 0
        total_expense = 0
        for month in range(1, 13):
            bucket = totals.get((year, month), {"income": 0, "expense": 0})
            balance = bucket["income"] - bucket["expense"]
            cumulative += balance
            total_income += bucket["income"]
            total_expense += bucket["expense"]
            months.append(
                {
                    "month": month,
                    "income": cents_to_amount(bucket["income"]),
                    "expense": cents_to_amount(bucket["expense"]),
                    "balance": cents_to_amount(balance),
                    "cumulative_balance": cents_to_amount(cumulative),
                }
            )
        total_balance = total_income - total_expense
        return {
            "year": year,
            "months": months,
            "summary": {
                "total_income": cents_to_amount(total_income),
                "total_expense": cents_to_amount(total_expense),
                "balance": cents_to_amount(total_balance),
                "average_income": cents_to_amount(divide_cents(total_income, 12)),
                "average_expense": cents_to_amount(divide_cents(total_expense, 12)),
                "average_balance": cents_to_amount(divide_cents(total_balance, 12)),
            },
            "analyses": analyze_cash_flow(months),
        }

    def breakdown(
        self, start: date, end: date, dimension: str = "category"
    ) -> list[dict[str, object]]:
        if dimension == "category":
            key = Transaction.category_id
        elif dimension == "card":
            key = Transaction.card_id
        else:
            raise InvalidInputError("Breakdown dimension must be 'category' or 'card'")

        stmt = (
            select(
                key.label("scope_id"),
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .where(*self._confirmed_in_range(start, end), key.is_not(None))
            .group_by(key, Transaction.type)
        )
        rows = self.session.execute(stmt).all()
        if dimension == "category":
            meta = {
                c.id: {"name": c.name, "color": c.color, "icon": c.icon}
                for c in CategoryService(self.session, self.user_id).list_all(
                    include_archived=True
                )
            }
        else:
            meta = {
                c.id: {"name": c.name, "brand": c.brand}
                for c in CardService(self.session, self.user_id).list_all(
                    include_archived=True
                )
            }

        out: list[dict[str, object]] = []
        for row in rows:
            if row.scope_id not in meta:
                continue
            out.append(
                {
                    "dimension": dimension,
                    "id": row.scope_id,
                    **meta[row.scope_id],
                    "type": row.type.value,
                    "total_cents": int(row.total or 0),
                    "count": int(row.txn_count or 0),
                }
            )
        out.sort(key=lambda item: (-item["total_cents"], item["name"]))
        for item in out:
            item["total"] = cents_to_amount(item.pop("total_cents"))
        return out

    def category_report(
        self,
        start: date,
        end: date,
        type: Optional[TransactionType] = None,
    ) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.category_id,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .where(
                *self._confirmed_in_range(start, end),
                Transaction.category_id.is_not(None),
            )
            .group_by(Transaction.category_id)
        )
        sums = {
            row.category_id: (int(row.total or 0), int(row.txn_count or 0))
            for row in self.session.execute(stmt)
        }
        # Archived categories stay in the report while they carry spending.
        categories = [
            c
            for c in CategoryService(self.session, self.user_id).list_all(
                type=type, include_archived=True
            )
            if c.archived_at is None or c.id in sums
        ]
        grand_total = sum(sums.get(c.id, (0, 0))[0] for c in categories)

        rows = []
        for category in categories:
            total, count = sums.get(category.id, (0, 0))
            rows.append(
                {
                    "category": category_to_dict(category),
                    "total_cents": total,
                    "count": count,
                    "average": cents_to_amount(divide_cents(total, count)),
                    "percent_of_total": percent_of(total, grand_total),
                }
            )
        rows.sort(key=lambda item: (-item["total_cents"], item["category"]["name"]))
        for item in rows:
            item["total"] = cents_to_amount(item.pop("total_cents"))
        return rows

    def top_categories(
        self, start: date, end: date, limit: int = 5
    ) -> dict[str, list[dict[str, object]]]:
        breakdown = self.breakdown(start, end, "category")
        return {
            "income": [r for r in breakdown if r["type"] == "income"][:limit],
            "expense": [r for r in breakdown if r["type"] == "expense"][:limit],
        }

    def monthly_evolution(self, start: date, end: date) -> list[dict[str, object]]:
        months = list(iter_months(start, end))
        if not months:
            return []
        first_start, _ = month_bounds(*months[0])
        _, last_end = month_bounds(*months[-1])
        totals = self._monthly_totals(first_start, last_end)

        out: list[dict[str, object]] = []
        for year, month in months:
            bucket = totals.get((year, month), {"income": 0, "expense": 0, "count": 0})
            out.append(
                {
                    "year": year,
                    "month": month,
                    "label": f"{year:04d}-{month:02d}",
                    "income": cents_to_amount(bucket["income"]),
                    "expense": cents_to_amount(bucket["expense"]),
                    "balance": cents_to_amount(bucket["income"] - bucket["expense"]),
                    "transaction_count": bucket["count"],
                }
            )
        return out

    def financial_report(
        self, start: date, end: date, group_by: str = "category"
    ) -> dict[str, object]:
        summary = self.financial_summary(start, end)
        breakdown = self.breakdown(start, end, group_by)
        by_category = (
            breakdown if group_by == "category" else self.breakdown(start, end)
        )
        evolution = self.monthly_evolution(start, end)
        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "summary": summary,
            "breakdown": breakdown,
            "top_categories": self.top_categories(start, end),
            "monthly_evolution": evolution,
            "analyses": analyze_period(summary, by_category, evolution),
        }

    def export(
        self,
        report: str,
        start: date,
        end: date,
        *,
        year: int,
        group_by: str = "category",
        category_type: Optional[TransactionType] = None,
    ) -> dict[str, object]:
        if report == "financial":
            data: object = self.financial_report(start, end, group_by)
        elif report == "categories":
            data = self.category_report(start, end, category_type)
        elif report == "cash-flow":
            data = self.cash_flow(year)
        else:
            raise InvalidInputError("Invalid report type")
        return {"report": report, "data": data}


def _analysis(kind: str, title: str, description: str) -> dict[str, str]:
    return {"kind": kind, "title": title, "description": description}


def analyze_period(
    summary: dict[str, object],
    category_breakdown: list[dict[str, object]],
    evolution: list[dict[str, object]],
) -> list[dict[str, str]]:
    analyses: list[dict[str, str]] = []
    balance = float(summary["balance"])
    if balance > 0:
        analyses.append(
            _analysis(
                "positive",
                "Positive balance",
                f"You saved {balance:.2f} in this period.",
            )
        )
    elif balance < 0:
        analyses.append(
            _analysis(
                "alert",
                "Negative balance",
                f"You spent {abs(balance):.2f} more than you earned in this period.",
            )
        )

    expenses = [row for row in category_breakdown if row["type"] == "expense"]
    if expenses:
        top = max(expenses, key=lambda row: row["total"])
        analyses.append(
            _analysis(
                "info",
                "Largest expense category",
                f"Your largest expense category was \"{top['name']}\" with {top['total']:.2f}.",
            )
        )

    if len(evolution) >= 2:
        first, last = evolution[0], evolution[-1]
        if last["balance"] > first["balance"]:
            analyses.append(
                _analysis("positive", "Upward trend", "Your balance is trending up.")
            )
        elif last["balance"] < first["balance"]:
            analyses.append(
                _analysis("alert", "Downward trend", "Your balance is trending down.")
            )
    return analyses


def analyze_cash_flow(months: list[dict[str, object]]) -> list[dict[str, str]]:
    analyses: list[dict[str, str]] = []
    negative = [m for m in months if m["balance"] < 0]
    if negative:
        analyses.append(
            _analysis(
                "alert",
                "Months with negative balance",
                f"{len(negative)} month(s) closed with a negative balance.",
            )
        )
    if not months:
        return analyses
    best = max(months, key=lambda m: m["balance"])
    worst = min(months, key=lambda m: m["balance"])
    analyses.append(
        _analysis(
            "info",
            "Best month",
            f"Your best month was {best['month']} with a balance of {best['balance']:.2f}.",
        )
    )
    analyses.append(
        _analysis(
            "info",
            "Worst month",
            f"Your worst month was {worst['month']} with a balance of {worst['balance']:.2f}.",
        )
    )
    return analyses
