from decimal import Decimal, ROUND_HALF_UP

from rest_framework import serializers

from .models import Loan, Payment

DATE_INPUT_FORMATS = ["%Y-%m-%d", "%d-%m-%Y"]


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ["week", "due_date", "amount", "paid", "paid_at"]


class LoanSerializer(serializers.ModelSerializer):
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Loan
        fields = [
            "loan_id",
            "borrower_id",
            "principal_amount",
            "interest_rate",
            "term_weeks",
            "start_date",
            "total_payable",
            "weekly_payment_amount",
            "outstanding_amount",
            "delinquent",
            "payments",
        ]


class LoanCreateSerializer(serializers.Serializer):
    borrower_id = serializers.CharField(max_length=64)
    principal_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    interest_rate = serializers.DecimalField(max_digits=7, decimal_places=4, min_value=0)
    term_weeks = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField(input_formats=DATE_INPUT_FORMATS, required=False)

    def validate_principal_amount(self, value: Decimal) -> Decimal:
        if value <= 0:
            raise serializers.ValidationError("Principal must be positive.")
        return value

    def validate_interest_rate(self, value: Decimal) -> Decimal:
        return value.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


class PaymentSubmitSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    idempotency_key = serializers.CharField(max_length=64, required=False, allow_blank=True)


class DelinquencyQuerySerializer(serializers.Serializer):
    as_of = serializers.DateField(input_formats=DATE_INPUT_FORMATS, required=False)


class PaymentOutcomeSerializer(serializers.Serializer):
    status = serializers.CharField()
    loan_id = serializers.CharField()
    week = serializers.IntegerField(allow_null=True)
    outstanding_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    delinquent = serializers.BooleanField()
    expected_amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, allow_null=True
    )
