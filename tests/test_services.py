from datetime import date

import pytest
from sqlalchemy import create_engine

from database import Base, make_session_factory
from models import (
    AssetType,
    InvestmentEventType,
    ReceivableStatus,
    SplitStatus,
    Transaction,
    TransactionType,
)
from periods import ReferenceMonth
from schemas import (
    GoalIn,
    InstallmentIn,
    InstallmentPaymentIn,
    InvestmentEventIn,
    InvestmentIn,
    ReceivableIn,
    SubscriptionIn,
    TransactionIn,
)
from services import (
    CategoryAmbiguous,
    DashboardService,
    GoalService,
    InstallmentService,
    InvestmentService,
    NotFoundError,
    ReceivableService,
    SnapshotService,
    SubscriptionService,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)
    return SessionLocal()


def _expense(description="Dinner", cents=10_000, category="Food", **extra):
    return TransactionIn(
        type=TransactionType.expense,
        amount_cents=cents,
        category=category,
        description=description,
        date=date(2024, 3, 10),
        payment_method="Credit card",
        **extra,
    )


def test_split_transaction_creates_pending_receivable():
    session = make_session()
    txns = TransactionService(session, "u1")

    txn = txns.create(_expense(split_with="Ana", create_receivable=True))

    assert txn.split_status == SplitStatus.pending
    (receivable,) = ReceivableService(session, "u1").list_all()
    assert receivable.debtor_name == "Ana"
    assert receivable.description == "Ref: Dinner"
    assert receivable.amount_cents == 10_000
    assert receivable.status == ReceivableStatus.pending
    assert receivable.source_transaction_id == txn.id


def test_split_without_receivable_flag_creates_nothing():
    session = make_session()
    TransactionService(session, "u1").create(_expense(split_with="Ana"))
    assert ReceivableService(session, "u1").list_all() == []


def test_refund_creates_inverse_transaction_once():
    session = make_session()
    txns = TransactionService(session, "u1")
    original = txns.create(_expense(description="Headphones", cents=25_000))

    refund = txns.refund(original.id, today=date(2024, 4, 2))

    assert refund.type == TransactionType.income
    assert refund.amount_cents == 25_000
    assert refund.category == "Refund"
    assert refund.description == "Refund: Headphones"
    assert refund.date == date(2024, 4, 2)
    assert txns.get(original.id).is_refunded is True
    with pytest.raises(ValueError):
        txns.refund(original.id)


def test_category_labels_resolve_to_existing_spelling():
    session = make_session()
    txns = TransactionService(session, "u1")
    txns.create(_expense(category="Groceries"))

    assert txns.create(_expense(category="groceries")).category == "Groceries"
    assert txns.create(_expense(category="Grocerie")).category == "Groceries"
    assert txns.create(_expense(category="Gym")).category == "Gym"
    assert txns.create(_expense(category="Travel")).category == "Travel"


def test_category_resolution_ambiguous_match_raises():
    session = make_session()
    for label in ("Books", "Boots"):
        session.add(
            Transaction(
                user_id="u1",
                type=TransactionType.expense,
                amount_cents=100,
                category=label,
                description=label,
                date=date(2024, 3, 1),
            )
        )
    session.commit()

    with pytest.raises(CategoryAmbiguous):
        TransactionService(session, "u1").create(_expense(category="Bools"))


def test_records_are_scoped_to_their_owner():
    session = make_session()
    txn = TransactionService(session, "u1").create(_expense())

    with pytest.raises(NotFoundError):
        TransactionService(session, "u2").get(txn.id)
    with pytest.raises(NotFoundError):
        TransactionService(session, "u2").delete(txn.id)
    assert TransactionService(session, "u2").list_all() == []


def test_subscription_and_goal_default_to_reference_month():
    session = make_session()
    ref = ReferenceMonth(2024, 3)

    sub = SubscriptionService(session, "u1").create(
        SubscriptionIn(name="Music", amount_cents=2_190, billing_day=12), reference=ref
    )
    goal = GoalService(session, "u1").create(
        GoalIn(name="Laptop", target_cents=500_000), reference=ref
    )

    assert sub.start_date == date(2024, 3, 1)
    assert goal.start_date == date(2024, 3, 1)


def test_installment_schedule_and_card_payment():
    session = make_session()
    service = InstallmentService(session, "u1")
    inst = service.create(
        InstallmentIn(
            description="Sofa",
            total_amount_cents=300_000,
            total_installments=3,
            start_date=date(2024, 2, 1),
        )
    )

    slots = service.schedule(inst.id)
    assert [m.slug for m, _ in slots] == ["2024-02", "2024-03", "2024-04"]

    payment = service.record_payment(
        InstallmentPaymentIn(amount_cents=100_000, date=date(2024, 3, 8))
    )
    assert payment.type == TransactionType.expense
    assert payment.category == "Card payment"
    assert payment.payment_method == "Checking account"


def test_receivable_toggle_round_trips_status():
    session = make_session()
    service = ReceivableService(session, "u1")
    receivable = service.create(ReceivableIn(debtor_name="Bo", amount_cents=3_000))

    assert service.toggle_status(receivable.id).status == ReceivableStatus.paid
    assert service.toggle_status(receivable.id).status == ReceivableStatus.pending


def test_investment_invested_total_follows_history():
    session = make_session()
    service = InvestmentService(session, "u1")
    investment = service.create(
        InvestmentIn(
            name="Index fund",
            asset_type=AssetType.fund,
            amount_cents=100_000,
            date=date(2024, 1, 5),
        )
    )
    assert investment.invested_cents == 100_000
    assert investment.current_value_cents == 100_000

    deposit = service.add_event(
        investment.id,
        InvestmentEventIn(
            type=InvestmentEventType.deposit, amount_cents=50_000, date=date(2024, 2, 5)
        ),
    )
    service.add_event(
        investment.id,
        InvestmentEventIn(
            type=InvestmentEventType.withdrawal,
            amount_cents=20_000,
            date=date(2024, 3, 5),
        ),
    )
    investment = service.get(investment.id)
    assert investment.invested_cents == 130_000
    assert investment.current_value_cents == 130_000

    investment = service.remove_event(investment.id, deposit.id)
    assert investment.invested_cents == 80_000
    assert investment.current_value_cents == 80_000
    assert len(investment.events) == 2

    with pytest.raises(ValueError):
        service.add_event(
            investment.id,
            InvestmentEventIn(type=InvestmentEventType.withdrawal, amount_cents=90_000),
        )
    with pytest.raises(NotFoundError):
        service.remove_event(investment.id, "missing")


def test_revalue_keeps_history_untouched():
    session = make_session()
    service = InvestmentService(session, "u1")
    investment = service.create(InvestmentIn(name="BTC", amount_cents=10_000))

    investment = service.revalue(investment.id, 15_000)

    assert investment.current_value_cents == 15_000
    assert investment.invested_cents == 10_000


def test_dashboard_service_reads_snapshot():
    session = make_session()
    TransactionService(session, "u1").create(_expense(cents=40_000))
    InvestmentService(session, "u1").create(
        InvestmentIn(name="Bonds", amount_cents=10_000, date=date(2024, 3, 2))
    )
    TransactionService(session, "u2").create(_expense(cents=99_000))

    snapshot = SnapshotService(session, "u1").load()
    assert len(snapshot.transactions) == 1
    assert len(snapshot.investments) == 1

    dash = DashboardService(session, "u1").dashboard(ReferenceMonth(2024, 3))
    assert dash.totals.total_expense_cents == 40_000
    assert dash.portfolio_value_cents == 10_000
    (row,) = dash.history
    assert row.deposit_cents == 10_000
    assert row.balance_cents == -50_000


def test_removing_deposit_backing_a_withdrawal_is_rejected():
    session = make_session()
    service = InvestmentService(session, "u1")
    investment = service.create(
        InvestmentIn(name="CDB", amount_cents=10_000, date=date(2024, 1, 5))
    )
    service.add_event(
        investment.id,
        InvestmentEventIn(
            type=InvestmentEventType.withdrawal,
            amount_cents=10_000,
            date=date(2024, 2, 5),
        ),
    )
    deposit = next(
        e for e in investment.events if e.type == InvestmentEventType.deposit
    )

    with pytest.raises(ValueError):
        service.remove_event(investment.id, deposit.id)

    investment = service.get(investment.id)
    assert investment.invested_cents == 0
    assert len(investment.events) == 2
