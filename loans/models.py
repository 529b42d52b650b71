from decimal import Decimal
from django.db import models


class Loan(models.Model):
    loan_id = models.CharField(max_length=32, unique=True, null=True, blank=True)
    borrower_id = models.CharField(max_length=64)
    principal_amount = models.DecimalField(max_digits=12, decimal_places=2)
    interest_rate = models.DecimalField(max_digits=7, decimal_places=4)
    term_weeks = models.PositiveIntegerField()
    start_date = models.DateField()
    total_payable = models.DecimalField(max_digits=12, decimal_places=2)
    weekly_payment_amount = models.DecimalField(max_digits=12, decimal_places=2)
    outstanding_amount = models.DecimalField(max_digits=12, decimal_places=2)
    delinquent = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Loan {self.loan_id}"


class Payment(models.Model):
    loan = models.ForeignKey(Loan, related_name="payments", on_delete=models.CASCADE)
    week = models.PositiveIntegerField()
    due_date = models.DateField()
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)
    idempotency_key = models.CharField(max_length=64, null=True, blank=True)

    class Meta:
        ordering = ["week"]
        unique_together = [("loan", "week"), ("loan", "idempotency_key")]

    def __str__(self) -> str:
        return f"Payment week {self.week} for Loan {self.loan_id}"
