from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Category, TransactionStatus, TransactionType
from schemas import CategoryLimitIn, TransactionIn
from services import (
    BudgetService,
    InvalidInputError,
    LimitService,
    NotFoundError,
    TransactionService,
    budget_status,
)


TODAY = date(2025, 1, 20)
NOW = datetime(2025, 1, 5, 9, 0)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _category(session, name: str, user_id: int = 1, type=TransactionType.expense):
    category = Category(user_id=user_id, name=name, type=type)
    session.add(category)
    session.commit()
    return category


def _spend(session, category_id: int, amount: str, *, day: int = 10, user_id: int = 1,
           status=TransactionStatus.confirmed, when: date = None):
    return TransactionService(session, user_id).create(
        TransactionIn(
            amount=Decimal(amount),
            type=TransactionType.expense,
            description="Groceries",
            category_id=category_id,
            date=when or date(2025, 1, day),
            status=status,
        )
    )


def _row(rows, name):
    return next(row for row in rows if row["name"] == name)


def test_spending_against_category_limit_moves_from_safe_to_exceeded():
    session = make_session()
    food = _category(session, "Food")
    LimitService(session, 1).upsert_category_limit(
        CategoryLimitIn(category_id=food.id, amount=Decimal("500")), now=NOW
    )
    _spend(session, food.id, "150")
    _spend(session, food.id, "200", day=12)

    row = _row(BudgetService(session, 1).budget_view(today=TODAY), "Food")
    assert row["budget"] == 500.0
    assert row["spent"] == 350.0
    assert row["remaining"] == 150.0
    assert row["percentage"] == 70
    assert row["transaction_count"] == 2
    assert row["status"] == "safe"

    _spend(session, food.id, "200", day=15)

    row = _row(BudgetService(session, 1).budget_view(today=TODAY), "Food")
    assert row["spent"] == 550.0
    assert row["percentage"] == 100
    assert row["remaining"] == 0.0
    assert row["status"] == "exceeded"


def test_category_without_limit_reports_zero_budget():
    session = make_session()
    rent = _category(session, "Rent")
    _category(session, "Salary", type=TransactionType.income)
    _spend(session, rent.id, "900")

    rows = BudgetService(session, 1).budget_view(today=TODAY)

    assert [row["name"] for row in rows] == ["Rent"]
    assert rows[0]["budget"] == 0.0
    assert rows[0]["limit_id"] is None
    assert rows[0]["percentage"] == 0
    assert rows[0]["status"] == "safe"


def test_only_confirmed_spending_in_current_month_counts():
    session = make_session()
    food = _category(session, "Food")
    _spend(session, food.id, "40")
    _spend(session, food.id, "60", status=TransactionStatus.pending)
    _spend(session, food.id, "70", status=TransactionStatus.cancelled)
    _spend(session, food.id, "80", when=date(2024, 12, 31))
    deleted = _spend(session, food.id, "90")
    TransactionService(session, 1).soft_delete(deleted.id)

    row = _row(BudgetService(session, 1).budget_view(today=TODAY), "Food")

    assert row["spent"] == 40.0
    assert row["transaction_count"] == 1


def test_budget_view_is_scoped_to_owner():
    session = make_session()
    mine = _category(session, "Food")
    theirs = _category(session, "Food", user_id=2)
    _spend(session, mine.id, "10")
    _spend(session, theirs.id, "999", user_id=2)

    rows = BudgetService(session, 1).budget_view(today=TODAY)

    assert len(rows) == 1
    assert rows[0]["spent"] == 10.0


def test_upsert_updates_existing_limit_instead_of_creating_another():
    session = make_session()
    food = _category(session, "Food")
    service = LimitService(session, 1)

    first = service.upsert_category_limit(
        CategoryLimitIn(category_id=food.id, amount=Decimal("300")), now=NOW
    )
    second = service.upsert_category_limit(
        CategoryLimitIn(category_id=food.id, amount=Decimal("450.50")), now=NOW
    )

    assert first["limit_id"] == second["limit_id"]
    assert second["budget"] == 450.5
    assert len(service.list_all()) == 1
    row = _row(BudgetService(session, 1).budget_view(today=TODAY), "Food")
    assert row["budget"] == 450.5


def test_upsert_rejects_income_and_foreign_categories():
    session = make_session()
    salary = _category(session, "Salary", type=TransactionType.income)
    foreign = _category(session, "Food", user_id=2)
    service = LimitService(session, 1)

    with pytest.raises(InvalidInputError):
        service.upsert_category_limit(
            CategoryLimitIn(category_id=salary.id, amount=Decimal("10")), now=NOW
        )
    with pytest.raises(NotFoundError):
        service.upsert_category_limit(
            CategoryLimitIn(category_id=foreign.id, amount=Decimal("10")), now=NOW
        )


def test_delete_category_limit_by_exact_and_fuzzy_name():
    session = make_session()
    food = _category(session, "Food")
    travel = _category(session, "Travel")
    service = LimitService(session, 1)
    for category in (food, travel):
        service.upsert_category_limit(
            CategoryLimitIn(category_id=category.id, amount=Decimal("100")), now=NOW
        )

    service.delete_category_limit("food")
    service.delete_category_limit(" Travl")

    assert service.list_all() == []


def test_delete_category_limit_reports_missing_limit_and_category():
    session = make_session()
    _category(session, "Food")
    service = LimitService(session, 1)

    with pytest.raises(NotFoundError):
        service.delete_category_limit("Food")
    with pytest.raises(NotFoundError):
        service.delete_category_limit("Entertainment")


def test_budget_status_scale():
    assert budget_status(0) == "safe"
    assert budget_status(79) == "safe"
    assert budget_status(80) == "warning"
    assert budget_status(99) == "warning"
    assert budget_status(100) == "exceeded"
    assert budget_status(180) == "exceeded"
