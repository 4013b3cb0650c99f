from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, TypeVar

from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from aggregation import (
    Dashboard,
    HistoryRow,
    PeriodView,
    Snapshot,
    build_dashboard,
    build_history,
    filter_period,
)
from amortization import InstallmentSlot, schedule
from models import (
    ActivityAction,
    ActivityEntry,
    CommandSource,
    Goal,
    Installment,
    Investment,
    InvestmentEvent,
    InvestmentEventType,
    Receivable,
    ReceivableStatus,
    SplitStatus,
    Subscription,
    Transaction,
    TransactionType,
)
from periods import ReferenceMonth, local_today
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

logger = logging.getLogger(__name__)

REFUND_CATEGORY = "Refund"
CARD_PAYMENT_CATEGORY = "Card payment"
FUZZY_MIN_LENGTH = 5

T = TypeVar("T")


class NotFoundError(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


def _owned(session: Session, model: type[T], record_id: str, user_id: str, label: str) -> T:
    record = session.get(model, record_id)
    if record is None or record.user_id != user_id:
        raise NotFoundError(f"{label} not found")
    return record


def _month_start_for(reference: Optional[ReferenceMonth]) -> date:
    return (reference or ReferenceMonth.from_date(local_today())).start


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: str) -> Transaction:
        return _owned(
            self.session, Transaction, transaction_id, self.user_id, "Transaction"
        )

    def _known_categories(self) -> list[str]:
        txn_names = self.session.scalars(
            select(Transaction.category)
            .where(Transaction.user_id == self.user_id, Transaction.category != "")
            .distinct()
        ).all()
        sub_names = self.session.scalars(
            select(Subscription.category)
            .where(Subscription.user_id == self.user_id, Subscription.category != "")
            .distinct()
        ).all()
        return list(dict.fromkeys([*txn_names, *sub_names]))

    def resolve_category(self, label: Optional[str]) -> str:
        clean = (label or "").strip()
        if not clean:
            return ""
        known = self._known_categories()
        input_lower = clean.lower()
        for name in known:
            if name.lower() == input_lower:
                return name
        if len(clean) < FUZZY_MIN_LENGTH:
            return clean

        best_distance: Optional[int] = None
        best: list[str] = []
        for name in known:
            dist = int(Levenshtein.distance(input_lower, name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [name]
            elif dist == best_distance:
                best.append(name)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted(best))
                raise CategoryAmbiguous(
                    f"Category '{clean}' is ambiguous; matches: {options}"
                )
            return best[0]
        return clean

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount_cents=data.amount_cents,
            category=self.resolve_category(data.category),
            description=data.description.strip(),
            date=data.date,
            payment_method=data.payment_method,
            card_name=data.card_name,
            split_with=data.split_with,
            split_status=data.split_status,
        )
        self.session.add(txn)
        self.session.flush()
        if (
            data.create_receivable
            and data.split_with
            and data.split_status == SplitStatus.pending
        ):
            self.session.add(
                Receivable(
                    user_id=self.user_id,
                    debtor_name=data.split_with,
                    description=f"Ref: {txn.description}",
                    amount_cents=txn.amount_cents,
                    date=txn.date,
                    status=ReceivableStatus.pending,
                    source_transaction_id=txn.id,
                )
            )
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: str, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        txn.type = data.type
        txn.amount_cents = data.amount_cents
        txn.category = self.resolve_category(data.category)
        txn.description = data.description.strip()
        txn.date = data.date
        txn.payment_method = data.payment_method
        txn.card_name = data.card_name
        txn.split_with = data.split_with
        txn.split_status = data.split_status
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> Transaction:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        return txn

    def refund(self, transaction_id: str, *, today: Optional[date] = None) -> Transaction:
        original = self.get(transaction_id)
        if original.is_refunded:
            raise ValueError("Transaction already refunded")
        inverse = (
            TransactionType.income
            if original.type == TransactionType.expense
            else TransactionType.expense
        )
        refund = Transaction(
            user_id=self.user_id,
            type=inverse,
            amount_cents=original.amount_cents,
            category=REFUND_CATEGORY,
            description=f"Refund: {original.description}",
            date=today or local_today(),
            payment_method=original.payment_method,
            card_name=original.card_name,
            is_refunded=True,
        )
        original.is_refunded = True
        self.session.add(refund)
        self.session.commit()
        self.session.refresh(refund)
        return refund


class SubscriptionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == self.user_id)
            .order_by(Subscription.billing_day, Subscription.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, subscription_id: str) -> Subscription:
        return _owned(
            self.session, Subscription, subscription_id, self.user_id, "Subscription"
        )

    def create(
        self, data: SubscriptionIn, *, reference: Optional[ReferenceMonth] = None
    ) -> Subscription:
        category = TransactionService(self.session, self.user_id).resolve_category(
            data.category
        )
        sub = Subscription(
            user_id=self.user_id,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            billing_day=data.billing_day,
            category=category,
            start_date=data.start_date or _month_start_for(reference),
            payment_method=data.payment_method,
        )
        self.session.add(sub)
        self.session.commit()
        self.session.refresh(sub)
        return sub

    def update(self, subscription_id: str, data: SubscriptionIn) -> Subscription:
        sub = self.get(subscription_id)
        sub.name = data.name.strip()
        sub.amount_cents = data.amount_cents
        sub.billing_day = data.billing_day
        sub.category = TransactionService(self.session, self.user_id).resolve_category(
            data.category
        )
        if data.start_date is not None:
            sub.start_date = data.start_date
        sub.payment_method = data.payment_method
        self.session.commit()
        self.session.refresh(sub)
        return sub

    def delete(self, subscription_id: str) -> Subscription:
        sub = self.get(subscription_id)
        self.session.delete(sub)
        self.session.commit()
        return sub


class InstallmentService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Installment]:
        stmt = (
            select(Installment)
            .where(Installment.user_id == self.user_id)
            .order_by(Installment.start_date, Installment.description)
        )
        return self.session.scalars(stmt).all()

    def get(self, installment_id: str) -> Installment:
        return _owned(
            self.session, Installment, installment_id, self.user_id, "Installment"
        )

    def create(
        self, data: InstallmentIn, *, reference: Optional[ReferenceMonth] = None
    ) -> Installment:
        inst = Installment(
            user_id=self.user_id,
            description=data.description.strip(),
            total_amount_cents=data.total_amount_cents,
            total_installments=data.total_installments,
            start_date=data.start_date or _month_start_for(reference),
            payment_method=data.payment_method,
            card_name=data.card_name,
        )
        self.session.add(inst)
        self.session.commit()
        self.session.refresh(inst)
        return inst

    def delete(self, installment_id: str) -> Installment:
        inst = self.get(installment_id)
        self.session.delete(inst)
        self.session.commit()
        return inst

    def schedule(self, installment_id: str) -> list[tuple[ReferenceMonth, InstallmentSlot]]:
        return schedule(self.get(installment_id))

    def record_payment(self, data: InstallmentPaymentIn) -> Transaction:
        return TransactionService(self.session, self.user_id).create(
            TransactionIn(
                type=TransactionType.expense,
                amount_cents=data.amount_cents,
                category=CARD_PAYMENT_CATEGORY,
                description=data.description,
                date=data.date or local_today(),
                payment_method="Checking account",
            )
        )


class GoalService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.start_date.desc(), Goal.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, goal_id: str) -> Goal:
        return _owned(self.session, Goal, goal_id, self.user_id, "Goal")

    def create(self, data: GoalIn, *, reference: Optional[ReferenceMonth] = None) -> Goal:
        goal = Goal(
            user_id=self.user_id,
            name=data.name.strip(),
            target_cents=data.target_cents,
            current_cents=data.current_cents,
            start_date=data.start_date or _month_start_for(reference),
            deadline=data.deadline,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: str, data: GoalIn) -> Goal:
        goal = self.get(goal_id)
        goal.name = data.name.strip()
        goal.target_cents = data.target_cents
        goal.current_cents = data.current_cents
        goal.deadline = data.deadline
        if data.start_date is not None:
            goal.start_date = data.start_date
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: str) -> Goal:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()
        return goal


class ReceivableService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Receivable]:
        stmt = (
            select(Receivable)
            .where(Receivable.user_id == self.user_id)
            .order_by(Receivable.date.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, receivable_id: str) -> Receivable:
        return _owned(
            self.session, Receivable, receivable_id, self.user_id, "Receivable"
        )

    def create(self, data: ReceivableIn) -> Receivable:
        receivable = Receivable(
            user_id=self.user_id,
            debtor_name=data.debtor_name.strip(),
            description=data.description or "General",
            amount_cents=data.amount_cents,
            date=data.date or local_today(),
            status=ReceivableStatus.pending,
        )
        self.session.add(receivable)
        self.session.commit()
        self.session.refresh(receivable)
        return receivable

    def toggle_status(self, receivable_id: str) -> Receivable:
        receivable = self.get(receivable_id)
        receivable.status = (
            ReceivableStatus.paid
            if receivable.status == ReceivableStatus.pending
            else ReceivableStatus.pending
        )
        self.session.commit()
        self.session.refresh(receivable)
        return receivable

    def delete(self, receivable_id: str) -> Receivable:
        receivable = self.get(receivable_id)
        self.session.delete(receivable)
        self.session.commit()
        return receivable


class InvestmentService:
    """Owns every change to an investment's history.

    ``invested_cents`` is always derived from the events, so the only running
    figure kept on the row is the market value, and it is adjusted here in the
    same commit as the event that moves it.
    """

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Investment]:
        stmt = (
            select(Investment)
            .options(selectinload(Investment.events))
            .where(Investment.user_id == self.user_id)
            .order_by(Investment.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, investment_id: str) -> Investment:
        return _owned(
            self.session, Investment, investment_id, self.user_id, "Investment"
        )

    def create(self, data: InvestmentIn) -> Investment:
        investment = Investment(
            user_id=self.user_id,
            name=data.name.strip(),
            asset_type=data.asset_type,
            current_value_cents=data.amount_cents,
            last_updated=datetime.utcnow(),
        )
        investment.events.append(
            InvestmentEvent(
                date=data.date or local_today(),
                type=InvestmentEventType.deposit,
                amount_cents=data.amount_cents,
            )
        )
        self.session.add(investment)
        self.session.commit()
        self.session.refresh(investment)
        logger.info(
            f"investment_created: investment={investment.id} amount_cents={data.amount_cents}"
        )
        return investment

    def add_event(self, investment_id: str, data: InvestmentEventIn) -> InvestmentEvent:
        investment = self.get(investment_id)
        if (
            data.type == InvestmentEventType.withdrawal
            and data.amount_cents > investment.invested_cents
        ):
            raise ValueError("Withdrawal exceeds invested amount")
        event = InvestmentEvent(
            date=data.date or local_today(),
            type=data.type,
            amount_cents=data.amount_cents,
        )
        investment.events.append(event)
        self._apply_value_change(investment, event, sign=1)
        self.session.commit()
        self.session.refresh(event)
        logger.info(
            f"investment_event: action=add investment={investment.id} "
            f"type={event.type.value} amount_cents={event.amount_cents}"
        )
        return event

    def remove_event(self, investment_id: str, event_id: str) -> Investment:
        investment = self.get(investment_id)
        event = next((e for e in investment.events if e.id == event_id), None)
        if event is None:
            raise NotFoundError("Investment event not found")
        if (
            event.type == InvestmentEventType.deposit
            and investment.invested_cents - event.amount_cents < 0
        ):
            raise ValueError("Removing this deposit leaves withdrawals uncovered")
        investment.events.remove(event)
        self._apply_value_change(investment, event, sign=-1)
        self.session.commit()
        self.session.refresh(investment)
        logger.info(
            f"investment_event: action=remove investment={investment.id} "
            f"type={event.type.value} amount_cents={event.amount_cents}"
        )
        return investment

    def revalue(self, investment_id: str, current_value_cents: int) -> Investment:
        investment = self.get(investment_id)
        investment.current_value_cents = current_value_cents
        investment.last_updated = datetime.utcnow()
        self.session.commit()
        self.session.refresh(investment)
        return investment

    def delete(self, investment_id: str) -> Investment:
        investment = self.get(investment_id)
        self.session.delete(investment)
        self.session.commit()
        return investment

    @staticmethod
    def _apply_value_change(
        investment: Investment, event: InvestmentEvent, *, sign: int
    ) -> None:
        delta = event.amount_cents
        if event.type == InvestmentEventType.withdrawal:
            delta = -delta
        investment.current_value_cents = max(
            0, investment.current_value_cents + sign * delta
        )
        investment.last_updated = datetime.utcnow()


class ActivityService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def record(
        self,
        action: ActivityAction,
        entity: str,
        description: str,
        *,
        source: CommandSource = CommandSource.user,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            user_id=self.user_id,
            action=action,
            entity=entity,
            description=description,
            source=source,
        )
        self.session.add(entry)
        self.session.commit()
        return entry

    def recent(self, limit: int = 10) -> list[ActivityEntry]:
        stmt = (
            select(ActivityEntry)
            .where(ActivityEntry.user_id == self.user_id)
            .order_by(ActivityEntry.created_at.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class SnapshotService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def load(self) -> Snapshot:
        return Snapshot(
            transactions=tuple(TransactionService(self.session, self.user_id).list_all()),
            subscriptions=tuple(
                SubscriptionService(self.session, self.user_id).list_all()
            ),
            installments=tuple(InstallmentService(self.session, self.user_id).list_all()),
            investments=tuple(InvestmentService(self.session, self.user_id).list_all()),
            goals=tuple(GoalService(self.session, self.user_id).list_all()),
            receivables=tuple(ReceivableService(self.session, self.user_id).list_all()),
        )


class DashboardService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id
        self.snapshots = SnapshotService(session, user_id)

    def period_view(self, ref: ReferenceMonth) -> PeriodView:
        return filter_period(self.snapshots.load(), ref)

    def dashboard(self, ref: ReferenceMonth) -> Dashboard:
        return build_dashboard(self.snapshots.load(), ref)

    def history(self) -> list[HistoryRow]:
        snapshot = self.snapshots.load()
        return build_history(snapshot.transactions, snapshot.investments)
