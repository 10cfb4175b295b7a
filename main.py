import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db, init_db
from errors import NotFound, ServiceError, Unauthorized, ValidationError
from models import Budget, Category, Expense, User
from periods import month_period, resolve_period
from schemas import BudgetCheckIn, BudgetIn, CategoryIn, ExpenseIn, LoginIn, SignupIn
from security import issue_token, read_token
from services import (
    BudgetCheck,
    BudgetEvaluator,
    BudgetService,
    CategoryService,
    ExpenseService,
    MonthlyReport,
    ReportService,
    UserService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer_scheme = HTTPBearer(auto_error=False)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


@app.on_event("startup")
def startup_event():
    init_db()


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [
            str(part)
            for part in err.get("loc", ())
            if part not in ("body", "query", "path")
        ]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "")})
    return JSONResponse(
        status_code=400, content={"error": "Validation failed", "errors": errors}
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    content: dict[str, object] = {"error": exc.message}
    if isinstance(exc, ValidationError):
        content = {"error": "Validation failed", "errors": exc.details()}
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # ServerErrorMiddleware re-raises; the server logs the traceback.
    logger.error(
        f"unhandled_error: path={request.url.path} error={type(exc).__name__}"
    )
    return JSONResponse(status_code=500, content={"error": "Server error"})


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("No token provided, authorization denied")
    user_id = read_token(credentials.credentials)
    try:
        return UserService(db).get(user_id)
    except NotFound as exc:
        raise Unauthorized("Token is not valid, user not found") from exc


def month_and_year(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2020, le=3000),
) -> tuple[int, int]:
    return month, year


def user_payload(user: User) -> dict[str, object]:
    return {"id": user.id, "name": user.name, "email": user.email}


def category_payload(category: Category) -> dict[str, object]:
    return {"id": category.id, "name": category.name, "color": category.color}


def budget_payload(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "categoryId": category_payload(budget.category),
        "amount": budget.amount,
        "month": budget.month,
        "year": budget.year,
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "categoryId": category_payload(expense.category),
        "amount": expense.amount,
        "date": expense.date.isoformat(),
        "description": expense.description,
    }


def check_payload(result: BudgetCheck) -> dict[str, object]:
    payload: dict[str, object] = {
        "hasBudget": result.has_budget,
        "withinBudget": result.within_budget,
        "spent": result.spent,
        "budget": result.budget,
        "remaining": result.remaining,
        "remainingClamped": result.remaining_clamped,
    }
    if result.new_total is not None:
        payload["newTotal"] = result.new_total
    return payload


def report_payload(report: MonthlyReport) -> dict[str, object]:
    return {
        "month": report.month,
        "year": report.year,
        "categories": [
            {
                "categoryId": row.category_id,
                "categoryName": row.category_name,
                "categoryColor": row.category_color,
                "budget": row.budget,
                "spent": row.spent,
                "remaining": row.remaining,
                "withinBudget": row.within_budget,
            }
            for row in report.rows
        ],
        "totals": {
            "budget": report.total_budget,
            "spent": report.total_spent,
            "remaining": report.total_remaining,
        },
    }


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/auth/signup", status_code=201)
def signup(data: SignupIn, db: Session = Depends(get_db)):
    user = UserService(db).signup(data)
    return {"token": issue_token(user.id), "user": user_payload(user)}


@app.post("/auth/login")
def login(data: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data)
    return {"token": issue_token(user.id), "user": user_payload(user)}


@app.get("/auth/me")
def me(user: User = Depends(current_user)):
    return user_payload(user)


@app.get("/categories")
def list_categories(
    user: User = Depends(current_user), db: Session = Depends(get_db)
):
    return [category_payload(c) for c in CategoryService(db, user.id).list_all()]


@app.post("/categories", status_code=201)
def create_category(
    data: CategoryIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return category_payload(CategoryService(db, user.id).create(data))


@app.put("/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return category_payload(CategoryService(db, user.id).update(category_id, data))


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    CategoryService(db, user.id).delete(category_id)
    return {"message": "Deleted"}


@app.get("/budgets")
def list_budgets(
    period: tuple[int, int] = Depends(month_and_year),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    month, year = period
    budgets = BudgetService(db, user.id).list_for_month(year, month)
    return [budget_payload(b) for b in budgets]


@app.post("/budgets")
def upsert_budget(
    data: BudgetIn,
    response: Response,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    budget, created = BudgetService(db, user.id).upsert(data)
    response.status_code = 201 if created else 200
    return budget_payload(budget)


@app.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    BudgetService(db, user.id).delete(budget_id)
    return {"message": "Deleted"}


@app.get("/expenses")
def list_expenses(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2020, le=3000),
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    category_id: Optional[int] = Query(None, alias="categoryId"),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    if (month is None) != (year is None):
        raise ValidationError("Month and year are required together", field="month")
    if month is not None and year is not None:
        window = month_period(year, month)
    else:
        try:
            window = resolve_period(period, start, end)
        except ValueError as exc:
            raise ValidationError(str(exc), field="period") from exc
    expenses = ExpenseService(db, user.id).list(window, category_id=category_id)
    return [expense_payload(e) for e in expenses]


@app.post("/expenses/check-budget")
def check_budget(
    data: BudgetCheckIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    result = BudgetEvaluator(db, user.id).evaluate(
        data.category_id, data.amount, data.date
    )
    return check_payload(result)


@app.post("/expenses", status_code=201)
def create_expense(
    data: ExpenseIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return expense_payload(ExpenseService(db, user.id).create(data))


@app.get("/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return expense_payload(ExpenseService(db, user.id).get(expense_id))


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    data: ExpenseIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return expense_payload(ExpenseService(db, user.id).update(expense_id, data))


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user.id).delete(expense_id)
    return {"message": "Deleted"}


@app.get("/reports/monthly")
def monthly_report(
    period: tuple[int, int] = Depends(month_and_year),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    month, year = period
    return report_payload(ReportService(db, user.id).monthly_report(year, month))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
