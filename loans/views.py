from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .serializers import (
    DelinquencyQuerySerializer,
    LoanCreateSerializer,
    LoanSerializer,
    PaymentOutcomeSerializer,
    PaymentSubmitSerializer,
)


class LoanCreateView(generics.CreateAPIView):
    serializer_class = LoanCreateSerializer

    def perform_create(self, serializer):
        data = serializer.validated_data
        return services.originate_loan(
            borrower_id=data["borrower_id"],
            principal=data["principal_amount"],
            rate=data["interest_rate"],
            term_weeks=data["term_weeks"],
            start_date=data.get("start_date"),
        )

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        loan = self.perform_create(serializer)
        return Response(LoanSerializer(loan).data, status=status.HTTP_201_CREATED)


class LoanDetailView(APIView):
    def get(self, request, loan_id: str, *args, **kwargs):
        loan = services.get_loan(loan_id)
        return Response(LoanSerializer(loan).data)


class LoanTotalView(APIView):
    def get(self, request, *args, **kwargs):
        return Response({"total_loans": services.loan_count()})


class OutstandingView(APIView):
    def get(self, request, loan_id: str, *args, **kwargs):
        outstanding = services.get_outstanding(loan_id)
        return Response({"loan_id": loan_id, "outstanding_amount": str(outstanding)})


class DelinquencyView(APIView):
    def get(self, request, loan_id: str, *args, **kwargs):
        query = DelinquencyQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        delinquent = services.get_delinquency(loan_id, as_of=query.validated_data.get("as_of"))
        return Response({"loan_id": loan_id, "delinquent": delinquent})


class PaymentSubmitView(generics.GenericAPIView):
    serializer_class = PaymentSubmitSerializer

    def post(self, request, loan_id: str, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        outcome = services.apply_payment(
            loan_id,
            serializer.validated_data["amount"],
            idempotency_key=serializer.validated_data.get("idempotency_key"),
        )
        data = PaymentOutcomeSerializer(outcome).data
        if outcome.status == services.WRONG_AMOUNT:
            data["error"] = (
                "Payment must equal the installment due for this week. "
                "The final week also carries any rounding remainder."
            )
        if outcome.status == services.ALREADY_SETTLED:
            data["error"] = "Loan is already settled."
            return Response(data, status=status.HTTP_409_CONFLICT)
        return Response(data, status=status.HTTP_200_OK)
