"""Month-scoped aggregation over a snapshot of a user's records.

Every function here is pure: it reads the collections it is handed, never
touches the database, and never mutates its inputs. Services load a
``Snapshot`` and call into this module on every request.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence, Union

from amortization import amortize
from models import (
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
from periods import ReferenceMonth, month_key, month_label, months_between

HISTORY_WINDOW = 6
CATEGORY_LIMIT = 6

DEFAULT_EXPENSE_CATEGORY = "Other"
DEFAULT_SUBSCRIPTION_CATEGORY = "Subscriptions"
INSTALLMENTS_CATEGORY = "Installments"

Amount = Union[int, float]


@dataclass(frozen=True)
class Snapshot:
    transactions: Sequence[Transaction] = ()
    subscriptions: Sequence[Subscription] = ()
    installments: Sequence[Installment] = ()
    investments: Sequence[Investment] = ()
    goals: Sequence[Goal] = ()
    receivables: Sequence[Receivable] = ()


@dataclass(frozen=True)
class ActiveInstallment:
    installment: Installment
    index: int
    payment_cents: float

    @property
    def total(self) -> int:
        return self.installment.total_installments

    @property
    def label(self) -> str:
        return f"{self.index}/{self.total}"


@dataclass(frozen=True)
class PeriodView:
    month: ReferenceMonth
    transactions: list[Transaction] = field(default_factory=list)
    subscriptions: list[Subscription] = field(default_factory=list)
    installments: list[ActiveInstallment] = field(default_factory=list)
    goals: list[Goal] = field(default_factory=list)


@dataclass(frozen=True)
class PeriodTotals:
    income_cents: Amount
    variable_expense_cents: Amount
    fixed_expense_cents: Amount
    total_expense_cents: Amount
    balance_cents: Amount


@dataclass(frozen=True)
class HistoryRow:
    year: int
    month: int
    label: str
    income_cents: Amount
    expense_cents: Amount
    deposit_cents: Amount
    withdrawal_cents: Amount
    balance_cents: Amount


@dataclass(frozen=True)
class Delta:
    value_cents: Amount
    pct: float


@dataclass(frozen=True)
class MonthComparison:
    expense: Delta
    income: Delta
    investment: Delta
    withdrawal_cents: Amount


@dataclass(frozen=True)
class CategoryShare:
    name: str
    amount_cents: Amount
    percent: float


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    type: TransactionType
    amount_cents: Amount
    category: str
    description: str
    date: date
    payment_method: str
    card_name: Optional[str] = None
    split_with: Optional[str] = None
    split_status: Optional[str] = None
    is_refunded: bool = False
    related_installment_id: Optional[str] = None
    installment_current: Optional[int] = None
    installment_total: Optional[int] = None


@dataclass(frozen=True)
class Contribution:
    investment_id: str
    investment_name: str
    event: InvestmentEvent


@dataclass(frozen=True)
class Dashboard:
    month: ReferenceMonth
    totals: PeriodTotals
    history: list[HistoryRow]
    comparison: Optional[MonthComparison]
    categories: list[CategoryShare]
    portfolio_value_cents: int
    pending_receivables_cents: int
    subscriptions: list[Subscription]
    installments: list[ActiveInstallment]
    goals: list[Goal]


def filter_period(snapshot: Snapshot, ref: ReferenceMonth) -> PeriodView:
    transactions = [t for t in snapshot.transactions if ref.contains(t.date)]
    subscriptions = [
        s for s in snapshot.subscriptions if month_key(s.start_date) <= ref.key
    ]
    installments: list[ActiveInstallment] = []
    for inst in snapshot.installments:
        slot = amortize(inst, ref)
        if slot is None:
            continue
        installments.append(
            ActiveInstallment(
                installment=inst, index=slot.index, payment_cents=slot.payment_cents
            )
        )
    goals = [g for g in snapshot.goals if ref.contains(g.start_date)]
    return PeriodView(
        month=ref,
        transactions=transactions,
        subscriptions=subscriptions,
        installments=installments,
        goals=goals,
    )


def fixed_expense(view: PeriodView) -> Amount:
    subscriptions = sum(s.amount_cents for s in view.subscriptions)
    installments = sum(i.payment_cents for i in view.installments)
    return subscriptions + installments


def period_totals(view: PeriodView) -> PeriodTotals:
    income = sum(
        t.amount_cents for t in view.transactions if t.type == TransactionType.income
    )
    variable = sum(
        t.amount_cents for t in view.transactions if t.type == TransactionType.expense
    )
    fixed = fixed_expense(view)
    total_expense = variable + fixed
    return PeriodTotals(
        income_cents=income,
        variable_expense_cents=variable,
        fixed_expense_cents=fixed,
        total_expense_cents=total_expense,
        balance_cents=income - total_expense,
    )


def build_history(
    transactions: Sequence[Transaction], investments: Sequence[Investment]
) -> list[HistoryRow]:
    buckets: dict[tuple[int, int], dict[str, Amount]] = {}

    def bucket(d: date) -> dict[str, Amount]:
        key = month_key(d)
        if key not in buckets:
            buckets[key] = {
                "income": 0,
                "expense": 0,
                "deposit": 0,
                "withdrawal": 0,
            }
        return buckets[key]

    for txn in transactions:
        row = bucket(txn.date)
        if txn.type == TransactionType.income:
            row["income"] += txn.amount_cents
        elif txn.type == TransactionType.expense:
            row["expense"] += txn.amount_cents

    for inv in investments:
        for event in inv.events:
            row = bucket(event.date)
            if event.type == InvestmentEventType.deposit:
                row["deposit"] += event.amount_cents
            elif event.type == InvestmentEventType.withdrawal:
                row["withdrawal"] += event.amount_cents

    out: list[HistoryRow] = []
    for year, month in sorted(buckets)[-HISTORY_WINDOW:]:
        row = buckets[(year, month)]
        out.append(
            HistoryRow(
                year=year,
                month=month,
                label=month_label(year, month),
                income_cents=row["income"],
                expense_cents=row["expense"],
                deposit_cents=row["deposit"],
                withdrawal_cents=row["withdrawal"],
                balance_cents=row["income"]
                - row["expense"]
                - row["deposit"]
                + row["withdrawal"],
            )
        )
    return out


def _delta(current: Amount, previous: Amount) -> Delta:
    # A zero baseline saturates to "no change" instead of dividing by zero.
    if previous == 0:
        return Delta(value_cents=0, pct=0.0)
    diff = current - previous
    return Delta(value_cents=diff, pct=diff / previous * 100)


def compare_last_months(rows: Sequence[HistoryRow]) -> Optional[MonthComparison]:
    if len(rows) < 2:
        return None
    current = rows[-1]
    previous = rows[-2]
    return MonthComparison(
        expense=_delta(current.expense_cents, previous.expense_cents),
        income=_delta(current.income_cents, previous.income_cents),
        investment=_delta(current.deposit_cents, previous.deposit_cents),
        withdrawal_cents=current.withdrawal_cents,
    )


def category_distribution(view: PeriodView) -> list[CategoryShare]:
    stats: dict[str, Amount] = {}
    for txn in view.transactions:
        if txn.type != TransactionType.expense:
            continue
        name = (txn.category or "").strip() or DEFAULT_EXPENSE_CATEGORY
        stats[name] = stats.get(name, 0) + txn.amount_cents
    for sub in view.subscriptions:
        name = (sub.category or "").strip() or DEFAULT_SUBSCRIPTION_CATEGORY
        stats[name] = stats.get(name, 0) + sub.amount_cents
    if view.installments:
        total = sum(i.payment_cents for i in view.installments)
        stats[INSTALLMENTS_CATEGORY] = stats.get(INSTALLMENTS_CATEGORY, 0) + total

    ranked = sorted(stats.items(), key=lambda item: item[1], reverse=True)
    ranked = ranked[:CATEGORY_LIMIT]
    grand_total = sum(amount for _, amount in ranked)
    return [
        CategoryShare(
            name=name,
            amount_cents=amount,
            percent=(amount / grand_total * 100) if grand_total else 0.0,
        )
        for name, amount in ranked
    ]


def goal_monthly_need(goal: Goal, today: date) -> float:
    if goal.deadline is None:
        return 0.0
    months = months_between(today, goal.deadline)
    if months <= 0:
        return 0.0
    remaining = goal.target_cents - goal.current_cents
    return remaining / months if remaining > 0 else 0.0


def goal_progress_pct(goal: Goal) -> float:
    if goal.target_cents <= 0:
        return 0.0
    return min(goal.current_cents / goal.target_cents * 100, 100.0)


def portfolio_value(investments: Sequence[Investment]) -> int:
    return sum(inv.current_value_cents for inv in investments)


def pending_receivables(receivables: Sequence[Receivable]) -> int:
    return sum(
        r.amount_cents for r in receivables if r.status == ReceivableStatus.pending
    )


def monthly_contributions(
    investments: Sequence[Investment], ref: ReferenceMonth
) -> list[Contribution]:
    items = [
        Contribution(investment_id=inv.id, investment_name=inv.name, event=event)
        for inv in investments
        for event in inv.events
        if ref.contains(event.date)
    ]
    items.sort(key=lambda c: c.event.date, reverse=True)
    return items


def _ledger_entry(txn: Transaction) -> LedgerEntry:
    return LedgerEntry(
        id=txn.id,
        type=txn.type,
        amount_cents=txn.amount_cents,
        category=txn.category,
        description=txn.description,
        date=txn.date,
        payment_method=txn.payment_method,
        card_name=txn.card_name,
        split_with=txn.split_with,
        split_status=txn.split_status.value if txn.split_status else None,
        is_refunded=txn.is_refunded,
    )


def _installment_entry(active: ActiveInstallment, ref: ReferenceMonth) -> LedgerEntry:
    inst = active.installment
    return LedgerEntry(
        id=f"inst-{inst.id}",
        type=TransactionType.expense,
        amount_cents=active.payment_cents,
        category=INSTALLMENTS_CATEGORY,
        description=f"{inst.description} ({active.label})",
        date=ref.start,
        payment_method=inst.payment_method,
        card_name=inst.card_name,
        related_installment_id=inst.id,
        installment_current=active.index,
        installment_total=active.total,
    )


def installment_ledger(
    view: PeriodView, *, query: Optional[str] = None
) -> list[LedgerEntry]:
    """Real transactions of the month plus one synthetic row per active installment."""
    entries = [_ledger_entry(t) for t in view.transactions]
    entries.extend(_installment_entry(a, view.month) for a in view.installments)
    entries.sort(key=lambda e: e.date, reverse=True)
    if query:
        needle = query.strip().lower()
        entries = [
            e
            for e in entries
            if needle in e.description.lower()
            or needle in e.category.lower()
            or (e.split_with and needle in e.split_with.lower())
            or (e.card_name and needle in e.card_name.lower())
        ]
    return entries


def ledger_summary(view: PeriodView) -> dict[str, Amount]:
    income = sum(
        t.amount_cents for t in view.transactions if t.type == TransactionType.income
    )
    expense = sum(
        t.amount_cents for t in view.transactions if t.type == TransactionType.expense
    )
    expense += sum(i.payment_cents for i in view.installments)
    return {
        "income_cents": income,
        "expense_cents": expense,
        "balance_cents": income - expense,
    }


def build_dashboard(snapshot: Snapshot, ref: ReferenceMonth) -> Dashboard:
    view = filter_period(snapshot, ref)
    history = build_history(snapshot.transactions, snapshot.investments)
    return Dashboard(
        month=ref,
        totals=period_totals(view),
        history=history,
        comparison=compare_last_months(history),
        categories=category_distribution(view),
        portfolio_value_cents=portfolio_value(snapshot.investments),
        pending_receivables_cents=pending_receivables(snapshot.receivables),
        subscriptions=view.subscriptions,
        installments=view.installments,
        goals=view.goals,
    )
