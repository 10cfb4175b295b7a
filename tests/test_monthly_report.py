from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import User
from schemas import BudgetIn, CategoryIn, ExpenseIn
from services import BudgetService, CategoryService, ExpenseService, ReportService


def _user(session: Session, email: str = "alice@example.com") -> int:
    user = User(name="Alice", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user.id


def test_unbudgeted_category_shows_overspend() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        food = CategoryService(session, user_id).create(
            CategoryIn(name="Food", color="#EF4444")
        )
        expenses = ExpenseService(session, user_id)
        expenses.create(
            ExpenseIn(category_id=food.id, amount=Decimal("1500"), date=date(2025, 3, 4))
        )
        expenses.create(
            ExpenseIn(category_id=food.id, amount=Decimal("800"), date=date(2025, 3, 31))
        )

        report = ReportService(session, user_id).monthly_report(2025, 3)
        assert len(report.rows) == 1
        row = report.rows[0]
        assert row.category_name == "Food"
        assert row.category_color == "#EF4444"
        assert row.budget == 0
        assert row.spent == Decimal("2300")
        assert row.remaining == Decimal("-2300")
        assert row.within_budget is False


def test_every_owned_category_appears_and_totals_match_rows() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        food = categories.create(CategoryIn(name="Food", color="#EF4444"))
        transport = categories.create(CategoryIn(name="Transport", color="#3B82F6"))
        leisure = categories.create(CategoryIn(name="Entertainment", color="#10B981"))

        budgets = BudgetService(session, user_id)
        budgets.upsert(
            BudgetIn(category_id=food.id, amount=Decimal("5000"), month=12, year=2024)
        )
        budgets.upsert(
            BudgetIn(
                category_id=transport.id, amount=Decimal("3000"), month=12, year=2024
            )
        )

        expenses = ExpenseService(session, user_id)
        expenses.create(
            ExpenseIn(category_id=food.id, amount=Decimal("1500"), date=date(2024, 12, 15))
        )
        expenses.create(
            ExpenseIn(category_id=food.id, amount=Decimal("800"), date=date(2024, 12, 20))
        )
        expenses.create(
            ExpenseIn(
                category_id=transport.id, amount=Decimal("500"), date=date(2024, 12, 18)
            )
        )
        expenses.create(
            ExpenseIn(
                category_id=transport.id, amount=Decimal("75"), date=date(2025, 1, 2)
            )
        )

        report = ReportService(session, user_id).monthly_report(2024, 12)
        by_id = {row.category_id: row for row in report.rows}
        assert set(by_id) == {food.id, transport.id, leisure.id}

        assert by_id[food.id].remaining == Decimal("2700")
        assert by_id[transport.id].spent == Decimal("500")
        assert by_id[transport.id].within_budget is True

        empty = by_id[leisure.id]
        assert (empty.budget, empty.spent, empty.remaining) == (0, 0, 0)
        assert empty.within_budget is True

        assert report.total_budget == sum(row.budget for row in report.rows)
        assert report.total_spent == sum(row.spent for row in report.rows)
        assert report.total_budget == Decimal("8000")
        assert report.total_spent == Decimal("2800")
        assert report.total_remaining == Decimal("5200")


def test_report_ignores_other_users_data() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session)
        bob = _user(session, email="bob@example.com")
        alice_food = CategoryService(session, alice).create(
            CategoryIn(name="Food", color="#EF4444")
        )
        CategoryService(session, bob).create(CategoryIn(name="Food", color="#000000"))
        ExpenseService(session, alice).create(
            ExpenseIn(
                category_id=alice_food.id, amount=Decimal("42"), date=date(2025, 2, 10)
            )
        )

        report = ReportService(session, bob).monthly_report(2025, 2)
        assert len(report.rows) == 1
        assert report.rows[0].spent == 0
        assert report.total_spent == 0


def test_user_without_categories_gets_empty_report() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        report = ReportService(session, user_id).monthly_report(2025, 6)
        assert report.rows == []
        assert report.total_budget == 0
        assert report.total_spent == 0
        assert report.total_remaining == 0
