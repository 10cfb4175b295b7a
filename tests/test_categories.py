from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import Conflict, NotFound
from models import Budget, Expense, User
from schemas import BudgetIn, CategoryIn, ExpenseIn
from services import BudgetService, CategoryService, ExpenseService


def _user(session: Session, email: str = "alice@example.com") -> int:
    user = User(name="Alice", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user.id


def test_duplicate_name_conflicts_but_case_differs_is_allowed() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        categories.create(CategoryIn(name="Food", color="#EF4444"))

        with pytest.raises(Conflict):
            categories.create(CategoryIn(name=" Food ", color="#000000"))

        categories.create(CategoryIn(name="food", color="#000000"))
        assert [c.name for c in categories.list_all()] == ["Food", "food"]


def test_same_name_is_allowed_for_different_users() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session)
        bob = _user(session, email="bob@example.com")
        CategoryService(session, alice).create(CategoryIn(name="Food", color="#EF4444"))
        CategoryService(session, bob).create(CategoryIn(name="Food", color="#EF4444"))

        assert len(CategoryService(session, bob).list_all()) == 1


def test_rename_onto_existing_name_conflicts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        categories.create(CategoryIn(name="Food", color="#EF4444"))
        transport = categories.create(CategoryIn(name="Transport", color="#3B82F6"))

        with pytest.raises(Conflict):
            categories.update(transport.id, CategoryIn(name="Food", color="#3B82F6"))

        updated = categories.update(
            transport.id, CategoryIn(name="Transport", color="#111111")
        )
        assert updated.color == "#111111"


def test_invalid_color_is_rejected() -> None:
    with pytest.raises(SchemaValidationError):
        CategoryIn(name="Food", color="red")
    with pytest.raises(SchemaValidationError):
        CategoryIn(name="Food", color="EF4444")


def test_foreign_category_is_not_found_for_update_and_delete() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session)
        bob = _user(session, email="bob@example.com")
        food = CategoryService(session, alice).create(
            CategoryIn(name="Food", color="#EF4444")
        )

        with pytest.raises(NotFound):
            CategoryService(session, bob).update(
                food.id, CategoryIn(name="Mine", color="#000000")
            )
        with pytest.raises(NotFound):
            CategoryService(session, bob).delete(food.id)
        with pytest.raises(NotFound):
            CategoryService(session, alice).get(food.id + 100)


def test_deleting_category_removes_its_budgets_and_expenses() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        food = categories.create(CategoryIn(name="Food", color="#EF4444"))
        transport = categories.create(CategoryIn(name="Transport", color="#3B82F6"))
        BudgetService(session, user_id).upsert(
            BudgetIn(category_id=food.id, amount=Decimal("100"), month=1, year=2025)
        )
        expenses = ExpenseService(session, user_id)
        expenses.create(
            ExpenseIn(category_id=food.id, amount=Decimal("10"), date=date(2025, 1, 5))
        )
        kept = expenses.create(
            ExpenseIn(
                category_id=transport.id, amount=Decimal("4"), date=date(2025, 1, 5)
            )
        )

        categories.delete(food.id)

        assert session.scalars(select(Budget)).all() == []
        assert [e.id for e in session.scalars(select(Expense)).all()] == [kept.id]
