from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import FinanceError, InvalidArgument
from models import BillStatus, TransactionType
from periods import Period, resolve_period
from schedule import local_today
from scheduler import SchedulerManager
from schemas import (
    BillIn,
    BillOut,
    BillPaymentIn,
    BillPaymentOut,
    BillUpdateIn,
    BudgetIn,
    BudgetOut,
    BudgetUpdateIn,
    CategoryIn,
    CategoryOut,
    CategoryUpdateIn,
    GoalContributionIn,
    GoalIn,
    GoalOut,
    GoalUpdateIn,
    MarkBillPaidOut,
    NotificationPreferencesIn,
    NotificationPreferencesOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdateIn,
)
from services import (
    BillService,
    BudgetAlertService,
    BudgetService,
    CategoryService,
    GoalService,
    InsightsService,
    NotificationPreferenceService,
    ReportService,
    TransactionFilters,
    TransactionService,
)

app = FastAPI(title="Finance Tracker")


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


@app.exception_handler(FinanceError)
def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


app.state.scheduler = SchedulerManager()


def get_scheduler(request: Request) -> SchedulerManager:
    return request.app.state.scheduler


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        app.state.scheduler.start()


@app.on_event("shutdown")
def shutdown_event():
    app.state.scheduler.stop()


def period_from_request(request: Request) -> Period:
    try:
        return resolve_period(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
        )
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).create(data)


@app.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int, data: CategoryUpdateIn, db: Session = Depends(get_db)
):
    return CategoryService(db).update(category_id, data)


@app.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return Response(status_code=204)


@app.get("/transactions")
def list_transactions(
    request: Request,
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    filters = TransactionFilters(type=type, category_id=category_id, query=q)
    offset = (page - 1) * limit
    items = TransactionService(db).list(period, filters, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [TransactionOut.model_validate(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    return TransactionService(db).create(data)


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    return TransactionService(db).get(transaction_id)


@app.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, data: TransactionUpdateIn, db: Session = Depends(get_db)
):
    return TransactionService(db).update(transaction_id, data)


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    TransactionService(db).delete(transaction_id)
    return Response(status_code=204)


@app.get("/budgets", response_model=list[BudgetOut])
def list_budgets(db: Session = Depends(get_db)):
    return BudgetService(db).list_all()


@app.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(data: BudgetIn, db: Session = Depends(get_db)):
    return BudgetService(db).create(data)


@app.put("/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(budget_id: int, data: BudgetUpdateIn, db: Session = Depends(get_db)):
    return BudgetService(db).update(budget_id, data)


@app.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    BudgetService(db).delete(budget_id)
    return Response(status_code=204)


@app.get("/bills", response_model=list[BillOut])
def list_bills(status: Optional[BillStatus] = None, db: Session = Depends(get_db)):
    return BillService(db).list_all(status)


@app.post("/bills", response_model=BillOut, status_code=201)
def create_bill(data: BillIn, db: Session = Depends(get_db)):
    return BillService(db).create(data)


# Fixed /bills/* paths are registered before /bills/{bill_id}.
@app.get("/bills/reminders")
def list_bill_reminders(
    db: Session = Depends(get_db),
    scheduler: SchedulerManager = Depends(get_scheduler),
):
    today = local_today()
    scheduler.settle_auto_payments(db, today)
    reminders = BillService(db).process_reminders(today)
    return {"reminders": [asdict(reminder) for reminder in reminders]}


@app.get("/bills/payments")
def list_bill_payments(
    bill_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    payments, total = BillService(db).list_payments(
        bill_id=bill_id, start=start, end=end, limit=limit, offset=offset
    )
    return {
        "payments": [
            {
                **BillPaymentOut.model_validate(payment).model_dump(),
                "bill_name": payment.bill.name,
            }
            for payment in payments
        ],
        "total": total,
    }


@app.post("/bills/auto-detect")
def trigger_auto_detection(
    db: Session = Depends(get_db),
    scheduler: SchedulerManager = Depends(get_scheduler),
):
    return scheduler.run("auto_detect_payments", db)


@app.get("/bills/{bill_id}", response_model=BillOut)
def get_bill(bill_id: int, db: Session = Depends(get_db)):
    return BillService(db).get(bill_id)


@app.put("/bills/{bill_id}", response_model=BillOut)
def update_bill(bill_id: int, data: BillUpdateIn, db: Session = Depends(get_db)):
    return BillService(db).update(bill_id, data)


@app.delete("/bills/{bill_id}", status_code=204)
def delete_bill(bill_id: int, db: Session = Depends(get_db)):
    BillService(db).delete(bill_id)
    return Response(status_code=204)


@app.post("/bills/{bill_id}/pay", response_model=MarkBillPaidOut)
def mark_bill_paid(
    bill_id: int, data: Optional[BillPaymentIn] = None, db: Session = Depends(get_db)
):
    payment, next_due = BillService(db).mark_paid(bill_id, data or BillPaymentIn())
    return MarkBillPaidOut(
        payment=BillPaymentOut.model_validate(payment), next_due_date=next_due
    )


@app.post("/recurring/process")
def trigger_recurring_process(
    db: Session = Depends(get_db),
    scheduler: SchedulerManager = Depends(get_scheduler),
):
    return scheduler.run("process_recurring", db)


@app.get("/notifications/budget-alerts")
def get_budget_alerts(db: Session = Depends(get_db)):
    alerts = BudgetAlertService(db).alerts()
    return {"alerts": [asdict(alert) for alert in alerts]}


@app.get("/notifications/preferences", response_model=NotificationPreferencesOut)
def get_preferences(db: Session = Depends(get_db)):
    return NotificationPreferenceService(db).get()


@app.put("/notifications/preferences", response_model=NotificationPreferencesOut)
def update_preferences(
    data: NotificationPreferencesIn, db: Session = Depends(get_db)
):
    return NotificationPreferenceService(db).update(data)


@app.get("/goals", response_model=list[GoalOut])
def list_goals(db: Session = Depends(get_db)):
    return GoalService(db).list_all()


@app.post("/goals", response_model=GoalOut, status_code=201)
def create_goal(data: GoalIn, db: Session = Depends(get_db)):
    return GoalService(db).create(data)


@app.post("/goals/{goal_id}/contribute", response_model=GoalOut)
def contribute_to_goal(
    goal_id: int, data: GoalContributionIn, db: Session = Depends(get_db)
):
    return GoalService(db).contribute(goal_id, data.amount_cents)


@app.put("/goals/{goal_id}", response_model=GoalOut)
def update_goal(goal_id: int, data: GoalUpdateIn, db: Session = Depends(get_db)):
    return GoalService(db).update(goal_id, data)


@app.delete("/goals/{goal_id}", status_code=204)
def delete_goal(goal_id: int, db: Session = Depends(get_db)):
    GoalService(db).delete(goal_id)
    return Response(status_code=204)


@app.get("/reports")
def get_reports(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    return ReportService(db).summary(start_date, end_date)


@app.get("/insights")
def get_insights(months: int = Query(6), db: Session = Depends(get_db)):
    return InsightsService(db).overview(months)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
