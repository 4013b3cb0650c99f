import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.orm import Session

from aggregation import (
    ActiveInstallment,
    CategoryShare,
    Delta,
    HistoryRow,
    LedgerEntry,
    goal_monthly_need,
    goal_progress_pct,
    installment_ledger,
    ledger_summary,
    monthly_contributions,
)
from amortization import remaining_cents
from assistant import AssistantClient, AssistantError, AssistantService
from auth import AuthError, exchange_identity_assertion, verify_token
from commands import (
    AddGoal,
    AddSubscription,
    AddTransaction,
    CommandDispatcher,
    DeleteGoal,
    DeleteTransaction,
)
from config import get_settings
from database import SessionLocal, init_db
from models import (
    ActivityEntry,
    Goal,
    Installment,
    Investment,
    InvestmentEvent,
    Receivable,
    Subscription,
    Transaction,
)
from money import format_currency
from periods import ReferenceMonth, local_today, resolve_reference_month
from schemas import (
    ChatIn,
    GoalIn,
    InstallmentIn,
    InstallmentPaymentIn,
    InvestmentEventIn,
    InvestmentIn,
    ReceivableIn,
    RevalueIn,
    SessionIn,
    SubscriptionIn,
    TransactionIn,
)
from services import (
    ActivityService,
    DashboardService,
    GoalService,
    InstallmentService,
    InvestmentService,
    NotFoundError,
    ReceivableService,
    SubscriptionService,
    TransactionService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Dashboard")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_assistant_client() -> AssistantClient:
    return AssistantClient()


@app.on_event("startup")
def startup_event():
    init_db()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        identity = verify_token(token)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return identity.uid


def month_from_request(request: Request) -> ReferenceMonth:
    try:
        return resolve_reference_month(request.query_params.get("month"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def _amount(cents) -> dict[str, object]:
    return {"cents": cents, "display": format_currency(cents)}


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "category": txn.category,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "payment_method": txn.payment_method,
        "card_name": txn.card_name,
        "split_with": txn.split_with,
        "split_status": txn.split_status.value if txn.split_status else None,
        "is_refunded": txn.is_refunded,
    }


def ledger_payload(entry: LedgerEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "type": entry.type.value,
        "amount_cents": entry.amount_cents,
        "category": entry.category,
        "description": entry.description,
        "date": entry.date.isoformat(),
        "payment_method": entry.payment_method,
        "card_name": entry.card_name,
        "split_with": entry.split_with,
        "split_status": entry.split_status,
        "is_refunded": entry.is_refunded,
        "related_installment_id": entry.related_installment_id,
        "installment_current": entry.installment_current,
        "installment_total": entry.installment_total,
    }


def subscription_payload(sub: Subscription) -> dict[str, object]:
    return {
        "id": sub.id,
        "name": sub.name,
        "amount_cents": sub.amount_cents,
        "billing_day": sub.billing_day,
        "category": sub.category,
        "start_date": sub.start_date.isoformat(),
        "payment_method": sub.payment_method,
    }


def installment_payload(
    inst: Installment, ref: ReferenceMonth, active: Optional[ActiveInstallment] = None
) -> dict[str, object]:
    return {
        "id": inst.id,
        "description": inst.description,
        "total_amount_cents": inst.total_amount_cents,
        "total_installments": inst.total_installments,
        "start_date": inst.start_date.isoformat(),
        "payment_method": inst.payment_method,
        "card_name": inst.card_name,
        "current": active.index if active else None,
        "payment_cents": active.payment_cents if active else None,
        "remaining_cents": remaining_cents(inst, ref),
    }


def goal_payload(goal: Goal) -> dict[str, object]:
    return {
        "id": goal.id,
        "name": goal.name,
        "target_cents": goal.target_cents,
        "current_cents": goal.current_cents,
        "start_date": goal.start_date.isoformat(),
        "deadline": goal.deadline.isoformat() if goal.deadline else None,
        "progress_pct": goal_progress_pct(goal),
        "monthly_need_cents": goal_monthly_need(goal, local_today()),
    }


def event_payload(event: InvestmentEvent) -> dict[str, object]:
    return {
        "id": event.id,
        "date": event.date.isoformat(),
        "type": event.type.value,
        "amount_cents": event.amount_cents,
    }


def investment_payload(investment: Investment) -> dict[str, object]:
    invested = investment.invested_cents
    return {
        "id": investment.id,
        "name": investment.name,
        "asset_type": investment.asset_type.value,
        "invested_cents": invested,
        "current_value_cents": investment.current_value_cents,
        "profit_cents": investment.current_value_cents - invested,
        "last_updated": investment.last_updated.isoformat(),
        "history": [event_payload(e) for e in investment.events],
    }


def receivable_payload(receivable: Receivable) -> dict[str, object]:
    return {
        "id": receivable.id,
        "debtor_name": receivable.debtor_name,
        "description": receivable.description,
        "amount_cents": receivable.amount_cents,
        "date": receivable.date.isoformat(),
        "status": receivable.status.value,
        "source_transaction_id": receivable.source_transaction_id,
    }


def activity_payload(entry: ActivityEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "action": entry.action.value,
        "entity": entry.entity,
        "description": entry.description,
        "source": entry.source.value,
        "created_at": entry.created_at.isoformat(),
    }


def history_payload(row: HistoryRow) -> dict[str, object]:
    return {
        "year": row.year,
        "month": row.month,
        "label": row.label,
        "income_cents": row.income_cents,
        "expense_cents": row.expense_cents,
        "deposit_cents": row.deposit_cents,
        "withdrawal_cents": row.withdrawal_cents,
        "balance_cents": row.balance_cents,
    }


def _delta_payload(delta: Delta) -> dict[str, object]:
    return {"value_cents": delta.value_cents, "pct": delta.pct}


def _category_payload(share: CategoryShare) -> dict[str, object]:
    return {
        "name": share.name,
        "amount_cents": share.amount_cents,
        "percent": share.percent,
    }


@app.get("/api/dashboard")
def api_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    dash = DashboardService(db, user_id).dashboard(ref)
    comparison = None
    if dash.comparison is not None:
        comparison = {
            "expense": _delta_payload(dash.comparison.expense),
            "income": _delta_payload(dash.comparison.income),
            "investment": _delta_payload(dash.comparison.investment),
            "withdrawal_cents": dash.comparison.withdrawal_cents,
        }
    return {
        "month": ref.slug,
        "label": ref.label,
        "currency": get_settings().currency,
        "totals": {
            "income": _amount(dash.totals.income_cents),
            "variable_expense": _amount(dash.totals.variable_expense_cents),
            "fixed_expense": _amount(dash.totals.fixed_expense_cents),
            "total_expense": _amount(dash.totals.total_expense_cents),
            "balance": _amount(dash.totals.balance_cents),
        },
        "history": [history_payload(row) for row in dash.history],
        "comparison": comparison,
        "categories": [_category_payload(c) for c in dash.categories],
        "portfolio_value_cents": dash.portfolio_value_cents,
        "pending_receivables_cents": dash.pending_receivables_cents,
        "subscriptions": [subscription_payload(s) for s in dash.subscriptions],
        "installments": [
            installment_payload(a.installment, ref, a) for a in dash.installments
        ],
        "goals": [goal_payload(g) for g in dash.goals],
    }


@app.get("/api/history")
def api_history(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    rows = DashboardService(db, user_id).history()
    return {"items": [history_payload(row) for row in rows]}


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    view = DashboardService(db, user_id).period_view(ref)
    entries = installment_ledger(view, query=request.query_params.get("q"))
    return {
        "month": ref.slug,
        "items": [ledger_payload(e) for e in entries],
        "summary": ledger_summary(view),
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        result = CommandDispatcher(db, user_id).dispatch(AddTransaction(data=payload))
    except ValueError as exc:
        raise _http_error(exc) from exc
    txn = TransactionService(db, user_id).get(result.record_id)
    return transaction_payload(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return transaction_payload(txn)


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        result = CommandDispatcher(db, user_id).dispatch(
            DeleteTransaction(id=transaction_id)
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": result.record_id, "message": result.message}


@app.post("/api/transactions/{transaction_id}/refund", status_code=201)
def refund_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        refund = TransactionService(db, user_id).refund(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return transaction_payload(refund)


@app.get("/api/subscriptions")
def list_subscriptions(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    subs = SubscriptionService(db, user_id).list_all()
    return {"items": [subscription_payload(s) for s in subs]}


@app.post("/api/subscriptions", status_code=201)
def create_subscription(
    payload: SubscriptionIn,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    try:
        result = CommandDispatcher(db, user_id).dispatch(
            AddSubscription(data=payload), reference=ref
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return subscription_payload(SubscriptionService(db, user_id).get(result.record_id))


@app.put("/api/subscriptions/{subscription_id}")
def update_subscription(
    subscription_id: str,
    payload: SubscriptionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        sub = SubscriptionService(db, user_id).update(subscription_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return subscription_payload(sub)


@app.delete("/api/subscriptions/{subscription_id}")
def delete_subscription(
    subscription_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        sub = SubscriptionService(db, user_id).delete(subscription_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": sub.id}


@app.get("/api/installments")
def list_installments(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    items = InstallmentService(db, user_id).list_all()
    return {"items": [installment_payload(inst, ref) for inst in items]}


@app.post("/api/installments", status_code=201)
def create_installment(
    payload: InstallmentIn,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    try:
        inst = InstallmentService(db, user_id).create(payload, reference=ref)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return installment_payload(inst, ref)


@app.get("/api/installments/{installment_id}/schedule")
def installment_schedule(
    installment_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        slots = InstallmentService(db, user_id).schedule(installment_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "items": [
            {"month": month.slug, "label": slot.label, "payment_cents": slot.payment_cents}
            for month, slot in slots
        ]
    }


@app.delete("/api/installments/{installment_id}")
def delete_installment(
    installment_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        inst = InstallmentService(db, user_id).delete(installment_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": inst.id}


@app.post("/api/installments/payments", status_code=201)
def pay_card_bill(
    payload: InstallmentPaymentIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        txn = InstallmentService(db, user_id).record_payment(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return transaction_payload(txn)


@app.get("/api/goals")
def list_goals(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    goals = DashboardService(db, user_id).period_view(ref).goals
    return {"items": [goal_payload(g) for g in goals]}


@app.post("/api/goals", status_code=201)
def create_goal(
    payload: GoalIn,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    try:
        result = CommandDispatcher(db, user_id).dispatch(
            AddGoal(data=payload), reference=ref
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return goal_payload(GoalService(db, user_id).get(result.record_id))


@app.put("/api/goals/{goal_id}")
def update_goal(
    goal_id: str,
    payload: GoalIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        goal = GoalService(db, user_id).update(goal_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return goal_payload(goal)


@app.delete("/api/goals/{goal_id}")
def delete_goal(
    goal_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        result = CommandDispatcher(db, user_id).dispatch(DeleteGoal(id=goal_id))
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": result.record_id, "message": result.message}


@app.get("/api/investments")
def list_investments(
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    ref = month_from_request(request)
    investments = InvestmentService(db, user_id).list_all()
    return {
        "items": [investment_payload(i) for i in investments],
        "contributions": [
            {
                "investment_id": c.investment_id,
                "investment_name": c.investment_name,
                **event_payload(c.event),
            }
            for c in monthly_contributions(investments, ref)
        ],
    }


@app.post("/api/investments", status_code=201)
def create_investment(
    payload: InvestmentIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    investment = InvestmentService(db, user_id).create(payload)
    return investment_payload(investment)


@app.post("/api/investments/{investment_id}/events", status_code=201)
def add_investment_event(
    investment_id: str,
    payload: InvestmentEventIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    service = InvestmentService(db, user_id)
    try:
        service.add_event(investment_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return investment_payload(service.get(investment_id))


@app.delete("/api/investments/{investment_id}/events/{event_id}")
def remove_investment_event(
    investment_id: str,
    event_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        investment = InvestmentService(db, user_id).remove_event(investment_id, event_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return investment_payload(investment)


@app.put("/api/investments/{investment_id}/value")
def revalue_investment(
    investment_id: str,
    payload: RevalueIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        investment = InvestmentService(db, user_id).revalue(
            investment_id, payload.current_value_cents
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return investment_payload(investment)


@app.delete("/api/investments/{investment_id}")
def delete_investment(
    investment_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        investment = InvestmentService(db, user_id).delete(investment_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": investment.id}


@app.get("/api/receivables")
def list_receivables(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    items = ReceivableService(db, user_id).list_all()
    return {"items": [receivable_payload(r) for r in items]}


@app.post("/api/receivables", status_code=201)
def create_receivable(
    payload: ReceivableIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return receivable_payload(ReceivableService(db, user_id).create(payload))


@app.post("/api/receivables/{receivable_id}/toggle")
def toggle_receivable(
    receivable_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        receivable = ReceivableService(db, user_id).toggle_status(receivable_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return receivable_payload(receivable)


@app.delete("/api/receivables/{receivable_id}")
def delete_receivable(
    receivable_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        receivable = ReceivableService(db, user_id).delete(receivable_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": receivable.id}


@app.get("/api/activity")
def list_activity(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    entries = ActivityService(db, user_id).recent()
    return {"items": [activity_payload(e) for e in entries]}


@app.post("/api/assistant/chat")
def assistant_chat(
    payload: ChatIn,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
    client: AssistantClient = Depends(get_assistant_client),
):
    ref = month_from_request(request)
    try:
        reply = AssistantService(db, user_id, client=client).chat(payload.message, ref)
    except AssistantError as exc:
        logger.exception(f"assistant_failed: user={user_id}")
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"text": reply.text, "actions": reply.actions}


@app.post("/api/session", status_code=201)
def create_session(payload: SessionIn):
    if not get_settings().identity_secret:
        raise HTTPException(status_code=404, detail="Not Found")
    try:
        token = exchange_identity_assertion(payload.assertion)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return {"token": token, "token_type": "bearer"}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
