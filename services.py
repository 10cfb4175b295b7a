from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from errors import Conflict, NotFound, Unauthorized, ValidationError
from models import Budget, Category, Expense, User
from periods import Period, month_period, period_for_date
from schemas import BudgetIn, CategoryIn, ExpenseIn, LoginIn, SignupIn
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: object) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def signup(self, data: SignupIn) -> User:
        email = str(data.email).strip().lower()
        if self.session.scalar(select(User).where(User.email == email)):
            raise Conflict("User already exists")

        user = User(
            name=data.name,
            email=email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("User already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_signup: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        email = str(data.email).strip().lower()
        user = self.session.scalar(select(User).where(User.email == email))
        if not user or not verify_password(data.password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id, Category.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.name):
            raise Conflict("Category with this name already exists")
        category = Category(user_id=self.user_id, name=data.name, color=data.color)
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Category with this name already exists") from exc
        self.session.refresh(category)
        logger.info(
            f"category_create: user_id={self.user_id} category_id={category.id}"
        )
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        if self._name_taken(data.name, exclude_id=category.id):
            raise Conflict("Category with this name already exists")
        category.name = data.name
        category.color = data.color
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Category with this name already exists") from exc
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_delete: user_id={self.user_id} category_id={category_id}")


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def find(self, category_id: int, year: int, month: int) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category_id == category_id,
            Budget.year == year,
            Budget.month == month,
        )
        return self.session.scalar(stmt)

    def list_for_month(self, year: int, month: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(
                Budget.user_id == self.user_id,
                Budget.year == year,
                Budget.month == month,
            )
            .order_by(Budget.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def upsert(self, data: BudgetIn) -> tuple[Budget, bool]:
        """Create or update the budget for (category, month, year).

        Returns the row and whether it was created. A concurrent insert of the
        same tuple surfaces as an IntegrityError; that insert is retried once
        as an update so the tuple never holds two rows.
        """
        CategoryService(self.session, self.user_id).get(data.category_id)

        existing = self.find(data.category_id, data.year, data.month)
        if existing:
            return self._set_amount(existing, data.amount), False

        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            amount=data.amount,
            month=data.month,
            year=data.year,
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.warning(
                f"budget_upsert_retry: user_id={self.user_id} "
                f"category_id={data.category_id} month={data.month} year={data.year}"
            )
            existing = self.find(data.category_id, data.year, data.month)
            if existing is None:
                raise
            return self._set_amount(existing, data.amount), False

        self.session.refresh(budget)
        logger.info(
            f"budget_upsert: user_id={self.user_id} category_id={data.category_id} "
            f"month={data.month} year={data.year} created=True"
        )
        return budget, True

    def _set_amount(self, budget: Budget, amount: Decimal) -> Budget:
        budget.amount = amount
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_upsert: user_id={self.user_id} category_id={budget.category_id} "
            f"month={budget.month} year={budget.year} created=False"
        )
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _check_category(self, category_id: int) -> Category:
        try:
            return CategoryService(self.session, self.user_id).get(category_id)
        except NotFound as exc:
            raise ValidationError("Category not found", field="categoryId") from exc

    def create(self, data: ExpenseIn) -> Expense:
        self._check_category(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            category_id=data.category_id,
            amount=data.amount,
            date=data.date,
            description=data.description,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_create: user_id={self.user_id} expense_id={expense.id} "
            f"category_id={expense.category_id} date={expense.date.isoformat()}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id, Expense.id == expense_id)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFound("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        self._check_category(data.category_id)
        expense.category_id = data.category_id
        expense.amount = data.amount
        expense.date = data.date
        expense.description = data.description
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()

    def list(self, period: Period, category_id: Optional[int] = None) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if category_id is not None:
            stmt = stmt.where(Expense.category_id == category_id)
        return self.session.scalars(stmt).all()

    def spent_by_category(self, period: Period) -> dict[int, Decimal]:
        stmt = (
            select(
                Expense.category_id,
                func.coalesce(func.sum(Expense.amount), 0).label("spent"),
            )
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(Expense.category_id)
        )
        return {
            row.category_id: to_money(row.spent) for row in self.session.execute(stmt)
        }

    def spent_for_category(self, category_id: int, period: Period) -> Decimal:
        stmt = select(func.coalesce(func.sum(Expense.amount), 0)).where(
            Expense.user_id == self.user_id,
            Expense.category_id == category_id,
            Expense.date.between(period.start, period.end),
        )
        return to_money(self.session.execute(stmt).scalar_one())


@dataclass(frozen=True)
class BudgetCheck:
    has_budget: bool
    within_budget: bool
    spent: Decimal
    budget: Decimal
    remaining: Decimal
    remaining_clamped: Decimal
    new_total: Optional[Decimal] = None


class BudgetEvaluator:
    """Answers whether a prospective expense keeps its category within budget.

    Evaluation only reads; the candidate expense is never stored. Nothing
    locks the period between a check and the following create, so two
    concurrent submissions can both pass and jointly overshoot.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def evaluate(self, category_id: int, amount: Decimal, on: date) -> BudgetCheck:
        CategoryService(self.session, self.user_id).get(category_id)

        period = period_for_date(on)
        budget = BudgetService(self.session, self.user_id).find(
            category_id, on.year, on.month
        )
        if budget is None:
            return BudgetCheck(
                has_budget=False,
                within_budget=True,
                spent=ZERO,
                budget=ZERO,
                remaining=ZERO,
                remaining_clamped=ZERO,
            )

        spent = ExpenseService(self.session, self.user_id).spent_for_category(
            category_id, period
        )
        limit = to_money(budget.amount)
        new_total = spent + to_money(amount)
        remaining = limit - new_total
        return BudgetCheck(
            has_budget=True,
            within_budget=new_total <= limit,
            spent=spent,
            budget=limit,
            remaining=remaining,
            remaining_clamped=max(ZERO, remaining),
            new_total=new_total,
        )


@dataclass(frozen=True)
class ReportRow:
    category_id: int
    category_name: str
    category_color: str
    budget: Decimal
    spent: Decimal
    remaining: Decimal
    within_budget: bool


@dataclass(frozen=True)
class MonthlyReport:
    year: int
    month: int
    rows: list[ReportRow]
    total_budget: Decimal
    total_spent: Decimal
    total_remaining: Decimal


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def monthly_report(self, year: int, month: int) -> MonthlyReport:
        period = month_period(year, month)
        categories = CategoryService(self.session, self.user_id).list_all()
        budgets = BudgetService(self.session, self.user_id).list_for_month(year, month)
        budget_by_category = {b.category_id: to_money(b.amount) for b in budgets}
        spent_by_category = ExpenseService(
            self.session, self.user_id
        ).spent_by_category(period)

        rows: list[ReportRow] = []
        for category in categories:
            budget = budget_by_category.get(category.id, ZERO)
            spent = spent_by_category.get(category.id, ZERO)
            remaining = budget - spent
            rows.append(
                ReportRow(
                    category_id=category.id,
                    category_name=category.name,
                    category_color=category.color,
                    budget=budget,
                    spent=spent,
                    remaining=remaining,
                    within_budget=remaining >= 0,
                )
            )

        total_budget = sum((row.budget for row in rows), ZERO)
        total_spent = sum((row.spent for row in rows), ZERO)
        return MonthlyReport(
            year=year,
            month=month,
            rows=rows,
            total_budget=total_budget,
            total_spent=total_spent,
            total_remaining=total_budget - total_spent,
        )
