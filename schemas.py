import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import AssetType, InvestmentEventType, SplitStatus, TransactionType


class TransactionIn(BaseModel):
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    category: str = Field(default="", max_length=100)
    description: str = Field(..., min_length=1, max_length=200)
    date: dt.date
    payment_method: str = Field(default="", max_length=60)
    card_name: Optional[str] = Field(default=None, max_length=60)
    split_with: Optional[str] = Field(default=None, max_length=100)
    split_status: Optional[SplitStatus] = None
    create_receivable: bool = False

    @model_validator(mode="after")
    def _split_defaults(self) -> "TransactionIn":
        if self.split_with and self.split_status is None:
            self.split_status = SplitStatus.pending
        if not self.split_with:
            self.split_with = None
            self.split_status = None
        return self


class SubscriptionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    billing_day: int = Field(default=1, ge=1, le=31)
    category: str = Field(default="", max_length=100)
    start_date: Optional[date] = None
    payment_method: str = Field(default="", max_length=60)


class InstallmentIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    total_amount_cents: int = Field(..., gt=0)
    total_installments: int = Field(..., ge=2, le=480)
    start_date: Optional[date] = None
    payment_method: str = Field(default="Credit card", max_length=60)
    card_name: Optional[str] = Field(default=None, max_length=60)


class InstallmentPaymentIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    description: str = Field(default="Card bill payment", min_length=1, max_length=200)
    date: Optional[dt.date] = None


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(..., gt=0)
    current_cents: int = Field(default=0, ge=0)
    start_date: Optional[date] = None
    deadline: Optional[date] = None


class ReceivableIn(BaseModel):
    debtor_name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="General", max_length=200)
    amount_cents: int = Field(..., gt=0)
    date: Optional[dt.date] = None


class InvestmentIn(BaseModel):
    name: str = Field(default="New asset", min_length=1, max_length=120)
    asset_type: AssetType = AssetType.stock
    amount_cents: int = Field(..., gt=0)
    date: Optional[dt.date] = None


class InvestmentEventIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: InvestmentEventType = InvestmentEventType.deposit
    amount_cents: int = Field(..., gt=0)
    date: Optional[dt.date] = None


class RevalueIn(BaseModel):
    current_value_cents: int = Field(..., ge=0)


class ChatIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class SessionIn(BaseModel):
    assertion: str = Field(..., min_length=1, max_length=4000)
