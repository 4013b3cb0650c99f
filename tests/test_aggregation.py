from datetime import date

import pytest

from aggregation import (
    CATEGORY_LIMIT,
    HistoryRow,
    Snapshot,
    build_dashboard,
    build_history,
    category_distribution,
    compare_last_months,
    filter_period,
    goal_monthly_need,
    goal_progress_pct,
    installment_ledger,
    ledger_summary,
    monthly_contributions,
    pending_receivables,
    period_totals,
    portfolio_value,
)
from models import (
    AssetType,
    Goal,
    Installment,
    Investment,
    InvestmentEvent,
    InvestmentEventType,
    Receivable,
    ReceivableStatus,
    Subscription,
    Transaction,
    TransactionType,
)
from periods import ReferenceMonth


def _txn(kind, cents, when, category="", description="Item", **extra):
    return Transaction(
        id=extra.pop("id", None),
        user_id="u1",
        type=kind,
        amount_cents=cents,
        category=category,
        description=description,
        date=when,
        payment_method="Pix",
        **extra,
    )


def _sub(cents, start, category="Streaming", name="Video"):
    return Subscription(
        id=f"sub-{name}",
        user_id="u1",
        name=name,
        amount_cents=cents,
        billing_day=5,
        category=category,
        start_date=start,
        payment_method="Credit card",
    )


def _inst(total, count, start, description="Phone"):
    return Installment(
        id="inst1",
        user_id="u1",
        description=description,
        total_amount_cents=total,
        total_installments=count,
        start_date=start,
        payment_method="Credit card",
        card_name="Blue",
    )


def _row(year, month, income=0, expense=0, deposit=0, withdrawal=0):
    return HistoryRow(
        year=year,
        month=month,
        label="",
        income_cents=income,
        expense_cents=expense,
        deposit_cents=deposit,
        withdrawal_cents=withdrawal,
        balance_cents=income - expense - deposit + withdrawal,
    )


def test_period_totals_combine_variable_and_fixed_expenses():
    snapshot = Snapshot(
        transactions=[
            _txn(TransactionType.income, 500_000, date(2024, 3, 1)),
            _txn(TransactionType.expense, 100_000, date(2024, 3, 15)),
            _txn(TransactionType.expense, 70_000, date(2024, 2, 10)),
        ],
        subscriptions=[_sub(5_000, date(2024, 1, 1))],
        installments=[_inst(120_000, 12, date(2024, 1, 1))],
    )
    totals = period_totals(filter_period(snapshot, ReferenceMonth(2024, 3)))
    assert totals.income_cents == 500_000
    assert totals.variable_expense_cents == 100_000
    assert totals.fixed_expense_cents == 15_000
    assert totals.total_expense_cents == 115_000
    assert totals.balance_cents == 385_000


def test_subscription_counts_from_start_month_onwards():
    snapshot = Snapshot(subscriptions=[_sub(5_000, date(2024, 3, 20))])
    assert filter_period(snapshot, ReferenceMonth(2024, 2)).subscriptions == []
    assert len(filter_period(snapshot, ReferenceMonth(2024, 3)).subscriptions) == 1
    assert len(filter_period(snapshot, ReferenceMonth(2026, 1)).subscriptions) == 1


def test_goals_visible_only_in_creation_month():
    goal = Goal(
        id="g1",
        user_id="u1",
        name="Trip",
        target_cents=100_000,
        current_cents=0,
        start_date=date(2024, 3, 1),
    )
    snapshot = Snapshot(goals=[goal])
    assert filter_period(snapshot, ReferenceMonth(2024, 3)).goals == [goal]
    assert filter_period(snapshot, ReferenceMonth(2024, 4)).goals == []


def test_empty_month_has_zero_totals():
    totals = period_totals(filter_period(Snapshot(), ReferenceMonth(2024, 3)))
    assert totals.income_cents == 0
    assert totals.total_expense_cents == 0
    assert totals.balance_cents == 0


def test_history_keeps_last_six_months_in_ascending_order():
    transactions = [
        _txn(TransactionType.expense, 1_000 * m, date(2024, m, 10)) for m in range(1, 9)
    ]
    rows = build_history(transactions, [])
    assert len(rows) == 6
    assert [(r.year, r.month) for r in rows] == [(2024, m) for m in range(3, 9)]
    assert rows[-1].label == "Aug 2024"
    assert rows[-1].expense_cents == 8_000


def test_history_skips_months_without_activity():
    transactions = [
        _txn(TransactionType.income, 1_000, date(2023, 11, 1)),
        _txn(TransactionType.income, 2_000, date(2024, 2, 1)),
    ]
    rows = build_history(transactions, [])
    assert [(r.year, r.month) for r in rows] == [(2023, 11), (2024, 2)]


def test_history_balance_includes_investment_flows():
    investment = Investment(
        id="i1",
        user_id="u1",
        name="Index fund",
        asset_type=AssetType.fund,
        current_value_cents=0,
        events=[
            InvestmentEvent(
                date=date(2024, 5, 2),
                type=InvestmentEventType.deposit,
                amount_cents=30_000,
            ),
            InvestmentEvent(
                date=date(2024, 5, 20),
                type=InvestmentEventType.withdrawal,
                amount_cents=5_000,
            ),
        ],
    )
    transactions = [
        _txn(TransactionType.income, 100_000, date(2024, 5, 1)),
        _txn(TransactionType.expense, 40_000, date(2024, 5, 3)),
    ]
    (row,) = build_history(transactions, [investment])
    assert row.deposit_cents == 30_000
    assert row.withdrawal_cents == 5_000
    assert row.balance_cents == 100_000 - 40_000 - 30_000 + 5_000


def test_comparison_between_last_two_months():
    rows = [_row(2024, 1, expense=100_000), _row(2024, 2, expense=120_000, withdrawal=700)]
    comparison = compare_last_months(rows)
    assert comparison is not None
    assert comparison.expense.value_cents == 20_000
    assert comparison.expense.pct == pytest.approx(20.0)
    assert comparison.withdrawal_cents == 700


def test_comparison_with_zero_baseline_reports_no_change():
    rows = [_row(2024, 1, income=0), _row(2024, 2, income=50_000)]
    comparison = compare_last_months(rows)
    assert comparison.income.value_cents == 0
    assert comparison.income.pct == 0.0


def test_comparison_requires_two_months():
    assert compare_last_months([]) is None
    assert compare_last_months([_row(2024, 1, expense=10)]) is None


def test_category_distribution_ranks_and_caps():
    when = date(2024, 3, 10)
    transactions = [
        _txn(TransactionType.expense, (i + 1) * 1_000, when, category=f"Cat{i}")
        for i in range(8)
    ]
    transactions.append(_txn(TransactionType.income, 999_999, when, category="Salary"))
    view = filter_period(Snapshot(transactions=transactions), ReferenceMonth(2024, 3))
    shares = category_distribution(view)
    assert len(shares) == CATEGORY_LIMIT
    assert [s.name for s in shares] == ["Cat7", "Cat6", "Cat5", "Cat4", "Cat3", "Cat2"]
    assert sum(s.percent for s in shares) == pytest.approx(100.0)
    assert all("Salary" != s.name for s in shares)


def test_category_distribution_default_labels_and_installments():
    when = date(2024, 3, 10)
    snapshot = Snapshot(
        transactions=[_txn(TransactionType.expense, 2_000, when, category="")],
        subscriptions=[_sub(3_000, date(2024, 1, 1), category="")],
        installments=[_inst(120_000, 12, date(2024, 2, 1))],
    )
    shares = category_distribution(filter_period(snapshot, ReferenceMonth(2024, 3)))
    by_name = {s.name: s.amount_cents for s in shares}
    assert by_name == {"Other": 2_000, "Subscriptions": 3_000, "Installments": 10_000}
    assert shares[0].name == "Installments"


def test_category_distribution_keeps_insertion_order_on_ties():
    when = date(2024, 3, 10)
    transactions = [
        _txn(TransactionType.expense, 1_000, when, category="Food"),
        _txn(TransactionType.expense, 1_000, when, category="Fuel"),
    ]
    view = filter_period(Snapshot(transactions=transactions), ReferenceMonth(2024, 3))
    assert [s.name for s in category_distribution(view)] == ["Food", "Fuel"]


def test_installment_ledger_adds_synthetic_rows():
    ref = ReferenceMonth(2024, 3)
    snapshot = Snapshot(
        transactions=[
            _txn(
                TransactionType.expense,
                4_000,
                date(2024, 3, 20),
                category="Food",
                description="Market",
                id="t1",
            ),
            _txn(
                TransactionType.income,
                90_000,
                date(2024, 3, 5),
                category="Salary",
                description="Pay",
                id="t2",
            ),
        ],
        installments=[_inst(120_000, 12, date(2024, 1, 1))],
    )
    view = filter_period(snapshot, ref)
    entries = installment_ledger(view)
    assert [e.id for e in entries] == ["t1", "t2", "inst-inst1"]
    synthetic = entries[-1]
    assert synthetic.description == "Phone (3/12)"
    assert synthetic.category == "Installments"
    assert synthetic.date == ref.start
    assert synthetic.related_installment_id == "inst1"
    assert (synthetic.installment_current, synthetic.installment_total) == (3, 12)

    assert [e.id for e in installment_ledger(view, query="blue")] == ["inst-inst1"]
    assert [e.id for e in installment_ledger(view, query="MARK")] == ["t1"]

    summary = ledger_summary(view)
    assert summary["income_cents"] == 90_000
    assert summary["expense_cents"] == 14_000
    assert summary["balance_cents"] == 76_000


def test_goal_monthly_need_and_progress():
    goal = Goal(
        id="g1",
        user_id="u1",
        name="Trip",
        target_cents=120_000,
        current_cents=30_000,
        start_date=date(2024, 1, 1),
        deadline=date(2024, 7, 1),
    )
    assert goal_monthly_need(goal, date(2024, 1, 15)) == 15_000
    assert goal_monthly_need(goal, date(2024, 8, 1)) == 0
    assert goal_progress_pct(goal) == pytest.approx(25.0)

    goal.deadline = None
    assert goal_monthly_need(goal, date(2024, 1, 15)) == 0
    goal.current_cents = 200_000
    assert goal_progress_pct(goal) == 100.0


def test_portfolio_and_receivable_totals():
    investments = [
        Investment(id="a", name="A", asset_type=AssetType.stock, current_value_cents=1_500),
        Investment(id="b", name="B", asset_type=AssetType.crypto, current_value_cents=500),
    ]
    receivables = [
        Receivable(
            debtor_name="Ana",
            description="Dinner",
            amount_cents=2_000,
            date=date(2024, 3, 1),
            status=ReceivableStatus.pending,
        ),
        Receivable(
            debtor_name="Bo",
            description="Cab",
            amount_cents=700,
            date=date(2024, 3, 1),
            status=ReceivableStatus.paid,
        ),
    ]
    assert portfolio_value(investments) == 2_000
    assert pending_receivables(receivables) == 2_000


def test_monthly_contributions_newest_first():
    investment = Investment(
        id="i1",
        name="Bonds",
        asset_type=AssetType.fixed_income,
        current_value_cents=0,
        events=[
            InvestmentEvent(
                date=date(2024, 3, 2), type=InvestmentEventType.deposit, amount_cents=100
            ),
            InvestmentEvent(
                date=date(2024, 3, 25), type=InvestmentEventType.deposit, amount_cents=200
            ),
            InvestmentEvent(
                date=date(2024, 4, 1), type=InvestmentEventType.deposit, amount_cents=300
            ),
        ],
    )
    items = monthly_contributions([investment], ReferenceMonth(2024, 3))
    assert [c.event.amount_cents for c in items] == [200, 100]
    assert items[0].investment_name == "Bonds"


def test_build_dashboard_bundles_month():
    snapshot = Snapshot(
        transactions=[
            _txn(TransactionType.expense, 100_000, date(2024, 2, 10), category="Food"),
            _txn(TransactionType.expense, 120_000, date(2024, 3, 10), category="Food"),
        ],
        subscriptions=[_sub(5_000, date(2024, 1, 1))],
    )
    dash = build_dashboard(snapshot, ReferenceMonth(2024, 3))
    assert dash.totals.total_expense_cents == 125_000
    assert len(dash.history) == 2
    assert dash.comparison.expense.pct == pytest.approx(20.0)
    assert [c.name for c in dash.categories] == ["Food", "Streaming"]
    assert dash.portfolio_value_cents == 0
    assert dash.pending_receivables_cents == 0
