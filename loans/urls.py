from django.urls import path

from .views import (
    DelinquencyView,
    LoanCreateView,
    LoanDetailView,
    LoanTotalView,
    OutstandingView,
    PaymentSubmitView,
)

urlpatterns = [
    path("loans/", LoanCreateView.as_view(), name="loan-create"),
    path("loans/total/", LoanTotalView.as_view(), name="loan-total"),
    path("loans/<str:loan_id>/", LoanDetailView.as_view(), name="loan-detail"),
    path(
        "loans/<str:loan_id>/outstanding/",
        OutstandingView.as_view(),
        name="loan-outstanding",
    ),
    path(
        "loans/<str:loan_id>/delinquent/",
        DelinquencyView.as_view(),
        name="loan-delinquent",
    ),
    path(
        "loans/<str:loan_id>/payments/",
        PaymentSubmitView.as_view(),
        name="loan-payment",
    ),
]
