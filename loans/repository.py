import logging
from typing import Iterable, List

from django.db import DatabaseError, transaction

from .exceptions import LoanNotFound, PersistenceFailure
from .models import Loan, Payment

logger = logging.getLogger(__name__)


class LoanRepository:
    """Storage gateway for loans and their payment schedules.

    Every database error is logged and re-raised as ``PersistenceFailure`` so
    callers only ever see API-level exceptions.
    """

    def create(self, loan: Loan, payments: Iterable[Payment]) -> Loan:
        payments = list(payments)
        try:
            with transaction.atomic():
                loan.save()
                # The external identifier is the database sequence value.
                loan.loan_id = str(loan.pk)
                loan.save(update_fields=["loan_id"])
                for payment in payments:
                    payment.loan = loan
                Payment.objects.bulk_create(payments)
        except DatabaseError as exc:
            logger.exception("Failed to store loan for borrower %s", loan.borrower_id)
            raise PersistenceFailure() from exc
        return loan

    def get(self, loan_id: str, for_update: bool = False) -> Loan:
        queryset = Loan.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(loan_id=loan_id)
        except Loan.DoesNotExist as exc:
            raise LoanNotFound(f"Loan {loan_id} not found.") from exc
        except DatabaseError as exc:
            logger.exception("Failed to load loan %s", loan_id)
            raise PersistenceFailure() from exc

    def payments(self, loan: Loan, for_update: bool = False) -> List[Payment]:
        queryset = Payment.objects.filter(loan=loan).order_by("week")
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return list(queryset)
        except DatabaseError as exc:
            logger.exception("Failed to load payments for loan %s", loan.loan_id)
            raise PersistenceFailure() from exc

    def save_loan(self, loan: Loan, fields: List[str]) -> None:
        try:
            loan.save(update_fields=fields + ["updated_at"])
        except DatabaseError as exc:
            logger.exception("Failed to update loan %s", loan.loan_id)
            raise PersistenceFailure() from exc

    def save_payment(self, payment: Payment, fields: List[str]) -> None:
        try:
            payment.save(update_fields=fields)
        except DatabaseError as exc:
            logger.exception(
                "Failed to update week %s of loan %s", payment.week, payment.loan_id
            )
            raise PersistenceFailure() from exc

    def count(self) -> int:
        try:
            return Loan.objects.count()
        except DatabaseError as exc:
            logger.exception("Failed to count loans")
            raise PersistenceFailure() from exc
