import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import List, Optional, Sequence

from dateutil.relativedelta import relativedelta
from django.db import transaction
from django.utils import timezone
from rest_framework import serializers

from .models import Loan, Payment
from .repository import LoanRepository

logger = logging.getLogger(__name__)

# Consecutive unpaid elapsed weeks that make a loan delinquent.
DELINQUENCY_THRESHOLD = 2

# Integer digits available in the money (12,2) and rate (7,4) columns.
MONEY_INTEGER_DIGITS = 10
RATE_INTEGER_DIGITS = 3
RATE_PLACES = Decimal("0.0001")

ACCEPTED = "accepted"
WRONG_AMOUNT = "wrong_amount"
ALREADY_SETTLED = "already_settled"
DUPLICATE = "duplicate"


def quantize_money(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=rounding)


def to_decimal(value) -> Decimal:
    # Floats go through str so 33.33 stays 33.33 rather than its binary expansion.
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class Schedule:
    total_payable: Decimal
    weekly_payment_amount: Decimal
    payments: List[Payment]


@dataclass
class PaymentOutcome:
    status: str
    loan_id: str
    outstanding_amount: Decimal
    delinquent: bool
    week: Optional[int] = None
    expected_amount: Optional[Decimal] = None

    @property
    def accepted(self) -> bool:
        return self.status == ACCEPTED


def build_schedule(
    principal: Decimal, rate: Decimal, term_weeks: int, start_date: date
) -> Schedule:
    """Build the fixed weekly repayment schedule for a loan.

    The weekly amount is the total payable divided evenly and rounded down to
    cents; the last week carries whatever remainder is left so the schedule
    sums exactly to the total payable.
    """

    if term_weeks is None or term_weeks < 1:
        raise serializers.ValidationError({"term_weeks": "Term must be at least one week."})
    if principal is None or principal <= 0:
        raise serializers.ValidationError({"principal_amount": "Principal must be positive."})
    if rate is None or rate < 0:
        raise serializers.ValidationError({"interest_rate": "Interest rate cannot be negative."})

    principal = quantize_money(to_decimal(principal))
    rate = to_decimal(rate).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
    if rate.adjusted() >= RATE_INTEGER_DIGITS:
        raise serializers.ValidationError({"interest_rate": "Interest rate is too large."})

    total = quantize_money(principal * (1 + rate))
    if total.adjusted() >= MONEY_INTEGER_DIGITS:
        raise serializers.ValidationError(
            {"principal_amount": "Total payable exceeds the largest supported amount."}
        )
    weekly = quantize_money(total / term_weeks, rounding=ROUND_DOWN)
    if weekly <= 0:
        raise serializers.ValidationError(
            {"principal_amount": "Principal is too small for the requested term."}
        )

    payments = []
    for week in range(1, term_weeks + 1):
        amount = weekly
        if week == term_weeks:
            amount = total - weekly * (term_weeks - 1)
        payments.append(
            Payment(
                week=week,
                due_date=start_date + relativedelta(weeks=week),
                amount=amount,
                paid=False,
            )
        )

    return Schedule(total_payable=total, weekly_payment_amount=weekly, payments=payments)


def next_unpaid(payments: Sequence[Payment]) -> Optional[Payment]:
    for payment in payments:
        if not payment.paid:
            return payment
    return None


def is_delinquent(payments: Sequence[Payment], as_of: date) -> bool:
    """Whether the latest elapsed weeks are unpaid back to back.

    Only weeks due on or before ``as_of`` count. Scanning backward from the
    latest of them, unpaid weeks are counted until the first paid one.
    """

    elapsed = [payment for payment in payments if payment.due_date <= as_of]
    unpaid_weeks = 0
    for payment in reversed(elapsed):
        if payment.paid:
            break
        unpaid_weeks += 1
        if unpaid_weeks >= DELINQUENCY_THRESHOLD:
            return True
    return False


def refresh_delinquency(
    loan: Loan,
    payments: Sequence[Payment],
    as_of: Optional[date] = None,
    repository: Optional[LoanRepository] = None,
) -> bool:
    repository = repository or LoanRepository()
    delinquent = is_delinquent(payments, as_of or timezone.localdate())
    if delinquent != loan.delinquent:
        loan.delinquent = delinquent
        repository.save_loan(loan, ["delinquent"])
        logger.info("Loan %s delinquency changed to %s", loan.loan_id, delinquent)
    return delinquent


def originate_loan(
    borrower_id: str,
    principal: Decimal,
    rate: Decimal,
    term_weeks: int,
    start_date: Optional[date] = None,
    repository: Optional[LoanRepository] = None,
) -> Loan:
    repository = repository or LoanRepository()
    if not borrower_id:
        raise serializers.ValidationError({"borrower_id": "Borrower is required."})
    start_date = start_date or timezone.localdate()
    schedule = build_schedule(principal, rate, term_weeks, start_date)

    loan = Loan(
        borrower_id=borrower_id,
        principal_amount=quantize_money(to_decimal(principal)),
        interest_rate=to_decimal(rate).quantize(RATE_PLACES, rounding=ROUND_HALF_UP),
        term_weeks=term_weeks,
        start_date=start_date,
        total_payable=schedule.total_payable,
        weekly_payment_amount=schedule.weekly_payment_amount,
        outstanding_amount=schedule.total_payable,
        delinquent=False,
    )
    repository.create(loan, schedule.payments)
    logger.info(
        "Originated loan %s for borrower %s: %s over %s weeks",
        loan.loan_id,
        borrower_id,
        schedule.total_payable,
        term_weeks,
    )
    return loan


def apply_payment(
    loan_id: str,
    amount: Decimal,
    idempotency_key: Optional[str] = None,
    as_of: Optional[date] = None,
    repository: Optional[LoanRepository] = None,
) -> PaymentOutcome:
    """Apply a payment to the earliest unpaid week of a loan.

    Only an amount equal to that week's installment is accepted. Without an
    ``idempotency_key`` a repeated call pays the following week.
    """

    repository = repository or LoanRepository()
    with transaction.atomic():
        loan = repository.get(loan_id, for_update=True)
        payments = repository.payments(loan, for_update=True)

        if idempotency_key:
            for payment in payments:
                if payment.idempotency_key == idempotency_key:
                    logger.info(
                        "Ignoring replayed payment %s on loan %s", idempotency_key, loan_id
                    )
                    return PaymentOutcome(
                        status=DUPLICATE,
                        loan_id=loan.loan_id,
                        outstanding_amount=loan.outstanding_amount,
                        delinquent=loan.delinquent,
                        week=payment.week,
                    )

        due = next_unpaid(payments)
        if due is None:
            logger.warning("Payment of %s refused: loan %s is settled", amount, loan_id)
            return PaymentOutcome(
                status=ALREADY_SETTLED,
                loan_id=loan.loan_id,
                outstanding_amount=loan.outstanding_amount,
                delinquent=loan.delinquent,
            )

        amount = to_decimal(amount)
        if amount != due.amount:
            logger.info(
                "Payment of %s refused on loan %s: week %s expects %s",
                amount,
                loan_id,
                due.week,
                due.amount,
            )
            return PaymentOutcome(
                status=WRONG_AMOUNT,
                loan_id=loan.loan_id,
                outstanding_amount=loan.outstanding_amount,
                delinquent=loan.delinquent,
                week=due.week,
                expected_amount=due.amount,
            )

        due.paid = True
        due.paid_at = timezone.now()
        due.idempotency_key = idempotency_key or None
        repository.save_payment(due, ["paid", "paid_at", "idempotency_key"])

        loan.outstanding_amount = max(Decimal("0.00"), loan.outstanding_amount - due.amount)
        loan.delinquent = is_delinquent(payments, as_of or timezone.localdate())
        repository.save_loan(loan, ["outstanding_amount", "delinquent"])

    logger.info(
        "Applied week %s payment of %s to loan %s, outstanding %s",
        due.week,
        due.amount,
        loan_id,
        loan.outstanding_amount,
    )
    return PaymentOutcome(
        status=ACCEPTED,
        loan_id=loan.loan_id,
        outstanding_amount=loan.outstanding_amount,
        delinquent=loan.delinquent,
        week=due.week,
    )


def get_loan(loan_id: str, repository: Optional[LoanRepository] = None) -> Loan:
    repository = repository or LoanRepository()
    return repository.get(loan_id)


def get_outstanding(loan_id: str, repository: Optional[LoanRepository] = None) -> Decimal:
    repository = repository or LoanRepository()
    return repository.get(loan_id).outstanding_amount


def get_delinquency(
    loan_id: str,
    as_of: Optional[date] = None,
    repository: Optional[LoanRepository] = None,
) -> bool:
    repository = repository or LoanRepository()
    with transaction.atomic():
        loan = repository.get(loan_id, for_update=True)
        payments = repository.payments(loan)
        return refresh_delinquency(loan, payments, as_of, repository)


def loan_count(repository: Optional[LoanRepository] = None) -> int:
    repository = repository or LoanRepository()
    return repository.count()
