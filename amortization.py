from dataclasses import dataclass
from typing import Optional

from models import Installment
from periods import ReferenceMonth, months_between


@dataclass(frozen=True)
class InstallmentSlot:
    index: int
    total: int
    payment_cents: float

    @property
    def label(self) -> str:
        return f"{self.index}/{self.total}"


def monthly_payment(total_amount_cents: int, total_installments: int) -> float:
    # Flat split; the last installment is not adjusted for rounding drift.
    return total_amount_cents / total_installments


def elapsed_months(installment: Installment, ref: ReferenceMonth) -> int:
    return months_between(installment.start_date, ref.start)


def amortize(installment: Installment, ref: ReferenceMonth) -> Optional[InstallmentSlot]:
    elapsed = elapsed_months(installment, ref)
    if not 0 <= elapsed < installment.total_installments:
        return None
    return InstallmentSlot(
        index=elapsed + 1,
        total=installment.total_installments,
        payment_cents=monthly_payment(
            installment.total_amount_cents, installment.total_installments
        ),
    )


def schedule(installment: Installment) -> list[tuple[ReferenceMonth, InstallmentSlot]]:
    first = ReferenceMonth.from_date(installment.start_date)
    out: list[tuple[ReferenceMonth, InstallmentSlot]] = []
    for offset in range(max(installment.total_installments, 0)):
        month = first.shift(offset)
        slot = amortize(installment, month)
        if slot is not None:
            out.append((month, slot))
    return out


def remaining_cents(installment: Installment, ref: ReferenceMonth) -> float:
    """Sum of payments still due after ``ref`` (the current slot counts as paid)."""
    elapsed = elapsed_months(installment, ref)
    if elapsed >= installment.total_installments:
        return 0.0
    payment = monthly_payment(
        installment.total_amount_cents, installment.total_installments
    )
    if elapsed < 0:
        return payment * installment.total_installments
    return payment * (installment.total_installments - elapsed - 1)
