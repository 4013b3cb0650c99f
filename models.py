import datetime as dt
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class SplitStatus(str, Enum):
    paid = "paid"
    pending = "pending"


class AssetType(str, Enum):
    stock = "stock"
    crypto = "crypto"
    fixed_income = "fixed_income"
    fund = "fund"


class InvestmentEventType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"


class ReceivableStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class ActivityAction(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class CommandSource(str, Enum):
    user = "user"
    assistant = "assistant"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(60), nullable=False, default="")
    card_name: Mapped[Optional[str]] = mapped_column(String(60))
    split_with: Mapped[Optional[str]] = mapped_column(String(100))
    split_status: Mapped[Optional[SplitStatus]] = mapped_column(SAEnum(SplitStatus))
    is_refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )

    @property
    def is_split(self) -> bool:
        return bool(self.split_with)


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    billing_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(60), nullable=False, default="")

    __table_args__ = (
        Index("ix_subscriptions_user_start", "user_id", "start_date"),
        CheckConstraint("amount_cents >= 0", name="ck_subscriptions_amount_positive"),
        CheckConstraint(
            "billing_day BETWEEN 1 AND 31", name="ck_subscriptions_billing_day"
        ),
    )


class Installment(Base, TimestampMixin):
    __tablename__ = "installments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(60), nullable=False, default="")
    card_name: Mapped[Optional[str]] = mapped_column(String(60))

    __table_args__ = (
        Index("ix_installments_user_start", "user_id", "start_date"),
        CheckConstraint(
            "total_amount_cents >= 0", name="ck_installments_amount_positive"
        ),
    )


class Investment(Base, TimestampMixin):
    __tablename__ = "investments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    asset_type: Mapped[AssetType] = mapped_column(SAEnum(AssetType), nullable=False)
    current_value_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    events: Mapped[list["InvestmentEvent"]] = relationship(
        "InvestmentEvent",
        back_populates="investment",
        cascade="all, delete-orphan",
        order_by="InvestmentEvent.date",
    )

    __table_args__ = (Index("ix_investments_user", "user_id"),)

    @property
    def invested_cents(self) -> int:
        total = 0
        for event in self.events:
            if event.type == InvestmentEventType.deposit:
                total += event.amount_cents
            else:
                total -= event.amount_cents
        return total


class InvestmentEvent(Base, TimestampMixin):
    __tablename__ = "investment_events"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    investment_id: Mapped[str] = mapped_column(
        ForeignKey("investments.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    type: Mapped[InvestmentEventType] = mapped_column(
        SAEnum(InvestmentEventType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    investment: Mapped["Investment"] = relationship(
        "Investment", back_populates="events"
    )

    __table_args__ = (
        Index("ix_investment_events_investment_date", "investment_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_investment_events_amount"),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    deadline: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (Index("ix_goals_user_start", "user_id", "start_date"),)


class Receivable(Base, TimestampMixin):
    __tablename__ = "receivables"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    debtor_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[ReceivableStatus] = mapped_column(
        SAEnum(ReceivableStatus), nullable=False, default=ReceivableStatus.pending
    )
    source_transaction_id: Mapped[Optional[str]] = mapped_column(String(32))

    __table_args__ = (
        Index("ix_receivables_user_status", "user_id", "status"),
        CheckConstraint("amount_cents > 0", name="ck_receivables_amount_positive"),
    )


class ActivityEntry(Base):
    __tablename__ = "activity_entries"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[ActivityAction] = mapped_column(
        SAEnum(ActivityAction), nullable=False
    )
    entity: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[CommandSource] = mapped_column(
        SAEnum(CommandSource), nullable=False, default=CommandSource.user
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (Index("ix_activity_user_created", "user_id", "created_at"),)
