from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Card, Category, Transaction, TransactionStatus, TransactionType
from services import InvalidInputError, ReportService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _txn(session, type, cents, when, *, category=None, card=None, user_id=1,
         status=TransactionStatus.confirmed):
    session.add(
        Transaction(
            user_id=user_id,
            type=type,
            status=status,
            amount_cents=cents,
            date=when,
            description="entry",
            category_id=category.id if category else None,
            card_id=card.id if card else None,
        )
    )
    session.commit()


def _seed(session):
    food = Category(user_id=1, name="Food", type=TransactionType.expense)
    rent = Category(user_id=1, name="Rent", type=TransactionType.expense)
    salary = Category(user_id=1, name="Salary", type=TransactionType.income)
    visa = Card(user_id=1, name="Visa")
    session.add_all([food, rent, salary, visa])
    session.commit()
    return food, rent, salary, visa


def test_cash_flow_for_empty_year_has_twelve_zero_months():
    session = make_session()

    report = ReportService(session, 1).cash_flow(2025)

    assert [m["month"] for m in report["months"]] == list(range(1, 13))
    for month in report["months"]:
        assert month["income"] == 0.0
        assert month["expense"] == 0.0
        assert month["cumulative_balance"] == 0.0
    assert report["summary"]["average_income"] == 0.0
    assert report["summary"]["balance"] == 0.0


def test_cash_flow_cumulative_balance_runs_through_the_year():
    session = make_session()
    food, _, salary, _ = _seed(session)
    _txn(session, TransactionType.income, 300_000, date(2025, 1, 5), category=salary)
    _txn(session, TransactionType.expense, 100_000, date(2025, 1, 20), category=food)
    _txn(session, TransactionType.expense, 250_000, date(2025, 3, 2), category=food)
    _txn(session, TransactionType.income, 999_999, date(2024, 12, 31), category=salary)
    _txn(
        session,
        TransactionType.expense,
        50_000,
        date(2025, 2, 1),
        category=food,
        status=TransactionStatus.pending,
    )

    report = ReportService(session, 1).cash_flow(2025)
    months = report["months"]

    assert months[0]["balance"] == 2000.0
    assert months[0]["cumulative_balance"] == 2000.0
    assert months[1]["balance"] == 0.0
    assert months[1]["cumulative_balance"] == 2000.0
    assert months[2]["balance"] == -2500.0
    assert months[2]["cumulative_balance"] == -500.0
    assert months[11]["cumulative_balance"] == -500.0
    assert report["summary"]["total_income"] == 3000.0
    assert report["summary"]["total_expense"] == 3500.0
    assert report["summary"]["average_expense"] == 291.67
    titles = [a["title"] for a in report["analyses"]]
    assert "Months with negative balance" in titles


def test_financial_summary_and_owner_isolation():
    session = make_session()
    food, _, salary, _ = _seed(session)
    _txn(session, TransactionType.income, 120_000, date(2025, 2, 1), category=salary)
    _txn(session, TransactionType.expense, 45_050, date(2025, 2, 3), category=food)
    _txn(session, TransactionType.expense, 77_700, date(2025, 2, 3), user_id=2)

    summary = ReportService(session, 1).financial_summary(
        date(2025, 2, 1), date(2025, 2, 28)
    )

    assert summary == {
        "income": 1200.0,
        "expense": 450.5,
        "balance": 749.5,
        "transaction_count": 2,
    }


def test_financial_summary_for_empty_range_is_zero():
    session = make_session()
    summary = ReportService(session, 1).financial_summary(
        date(2025, 1, 1), date(2025, 1, 31)
    )
    assert summary["balance"] == 0.0
    assert summary["transaction_count"] == 0


def test_breakdown_by_category_sorted_by_total():
    session = make_session()
    food, rent, salary, visa = _seed(session)
    _txn(session, TransactionType.expense, 20_000, date(2025, 4, 2), category=food)
    _txn(session, TransactionType.expense, 5_000, date(2025, 4, 9), category=food, card=visa)
    _txn(session, TransactionType.expense, 90_000, date(2025, 4, 1), category=rent, card=visa)
    _txn(session, TransactionType.income, 150_000, date(2025, 4, 1), category=salary)
    _txn(session, TransactionType.expense, 1_000, date(2025, 4, 3))

    reports = ReportService(session, 1)
    rows = reports.breakdown(date(2025, 4, 1), date(2025, 4, 30))

    assert [(r["name"], r["type"], r["total"], r["count"]) for r in rows] == [
        ("Salary", "income", 1500.0, 1),
        ("Rent", "expense", 900.0, 1),
        ("Food", "expense", 250.0, 2),
    ]

    by_card = reports.breakdown(date(2025, 4, 1), date(2025, 4, 30), "card")
    assert [(r["name"], r["total"], r["count"]) for r in by_card] == [("Visa", 950.0, 2)]

    with pytest.raises(InvalidInputError):
        reports.breakdown(date(2025, 4, 1), date(2025, 4, 30), "merchant")


def test_category_report_percentages_and_averages():
    session = make_session()
    food, rent, _, _ = _seed(session)
    _txn(session, TransactionType.expense, 10_000, date(2025, 5, 1), category=food)
    _txn(session, TransactionType.expense, 10_001, date(2025, 5, 2), category=food)
    _txn(session, TransactionType.expense, 40_000, date(2025, 5, 3), category=rent)

    rows = ReportService(session, 1).category_report(
        date(2025, 5, 1), date(2025, 5, 31), TransactionType.expense
    )

    assert [row["category"]["name"] for row in rows] == ["Rent", "Food"]
    rent_row, food_row = rows
    assert rent_row["total"] == 400.0
    assert rent_row["percent_of_total"] == 66.67
    assert food_row["count"] == 2
    assert food_row["average"] == 100.01
    assert food_row["percent_of_total"] == 33.33


def test_category_report_without_spending_returns_zero_percentages():
    session = make_session()
    _seed(session)

    rows = ReportService(session, 1).category_report(
        date(2025, 5, 1), date(2025, 5, 31)
    )

    assert len(rows) == 3
    assert all(row["percent_of_total"] == 0.0 for row in rows)
    assert all(row["average"] == 0.0 for row in rows)


def test_top_categories_split_by_type_and_capped():
    session = make_session()
    food, rent, salary, _ = _seed(session)
    _txn(session, TransactionType.expense, 3_000, date(2025, 6, 1), category=food)
    _txn(session, TransactionType.expense, 9_000, date(2025, 6, 1), category=rent)
    _txn(session, TransactionType.income, 50_000, date(2025, 6, 1), category=salary)

    top = ReportService(session, 1).top_categories(
        date(2025, 6, 1), date(2025, 6, 30), limit=1
    )

    assert [r["name"] for r in top["expense"]] == ["Rent"]
    assert [r["name"] for r in top["income"]] == ["Salary"]


def test_monthly_evolution_covers_every_month_across_year_boundary():
    session = make_session()
    food, _, salary, _ = _seed(session)
    _txn(session, TransactionType.income, 200_000, date(2024, 11, 30), category=salary)
    _txn(session, TransactionType.expense, 30_000, date(2025, 2, 1), category=food)

    evolution = ReportService(session, 1).monthly_evolution(
        date(2024, 11, 15), date(2025, 2, 10)
    )

    assert [row["label"] for row in evolution] == [
        "2024-11",
        "2024-12",
        "2025-01",
        "2025-02",
    ]
    assert evolution[0]["balance"] == 2000.0
    assert evolution[1]["transaction_count"] == 0
    assert evolution[3]["expense"] == 300.0


def test_financial_report_bundles_sections():
    session = make_session()
    food, _, salary, _ = _seed(session)
    _txn(session, TransactionType.income, 100_000, date(2025, 7, 1), category=salary)
    _txn(session, TransactionType.expense, 40_000, date(2025, 8, 1), category=food)

    report = ReportService(session, 1).financial_report(
        date(2025, 7, 1), date(2025, 8, 31)
    )

    assert report["summary"]["balance"] == 600.0
    assert len(report["monthly_evolution"]) == 2
    titles = [a["title"] for a in report["analyses"]]
    assert titles == ["Positive balance", "Largest expense category", "Downward trend"]


def test_category_report_keeps_archived_categories_with_spending():
    session = make_session()
    food, rent, _, _ = _seed(session)
    travel = Category(user_id=1, name="Travel", type=TransactionType.expense)
    session.add(travel)
    session.commit()
    _txn(session, TransactionType.expense, 30_000, date(2025, 5, 4), category=rent)
    _txn(session, TransactionType.expense, 10_000, date(2025, 5, 6), category=food)
    food.archived_at = datetime(2025, 5, 20)
    travel.archived_at = datetime(2025, 5, 20)
    session.commit()

    rows = ReportService(session, 1).category_report(
        date(2025, 5, 1), date(2025, 5, 31), TransactionType.expense
    )

    assert [row["category"]["name"] for row in rows] == ["Rent", "Food"]
    assert rows[1]["category"]["archived"] is True
    assert rows[0]["percent_of_total"] == 75.0
    assert rows[1]["percent_of_total"] == 25.0
