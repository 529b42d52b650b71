from datetime import date, timedelta
from decimal import Decimal
from unittest import mock

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import serializers, status
from rest_framework.test import APIClient

from . import services
from .exceptions import LoanNotFound, PersistenceFailure
from .models import Loan, Payment

START = date(2024, 1, 1)


def week_end(week: int) -> date:
    return START + timedelta(weeks=week)


class ScheduleTest(SimpleTestCase):
    def test_even_schedule(self):
        schedule = services.build_schedule(Decimal("1000"), Decimal("0.1"), 10, START)

        self.assertEqual(schedule.total_payable, Decimal("1100.00"))
        self.assertEqual(schedule.weekly_payment_amount, Decimal("110.00"))
        self.assertEqual([p.week for p in schedule.payments], list(range(1, 11)))
        self.assertTrue(all(p.amount == Decimal("110.00") for p in schedule.payments))
        self.assertFalse(any(p.paid for p in schedule.payments))
        self.assertEqual(schedule.payments[0].due_date, date(2024, 1, 8))
        self.assertEqual(schedule.payments[-1].due_date, date(2024, 3, 11))

    def test_last_week_absorbs_rounding(self):
        schedule = services.build_schedule(Decimal("100"), Decimal("0"), 3, START)

        amounts = [p.amount for p in schedule.payments]
        self.assertEqual(amounts, [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")])
        self.assertEqual(sum(amounts), schedule.total_payable)

    def test_single_week(self):
        schedule = services.build_schedule(Decimal("50"), Decimal("0.2"), 1, START)
        self.assertEqual(len(schedule.payments), 1)
        self.assertEqual(schedule.payments[0].amount, Decimal("60.00"))

    def test_rejects_invalid_terms(self):
        invalid = [
            (Decimal("1000"), Decimal("0.1"), 0),
            (Decimal("1000"), Decimal("0.1"), -3),
            (Decimal("0"), Decimal("0.1"), 10),
            (Decimal("1000"), Decimal("-0.1"), 10),
            (Decimal("0.01"), Decimal("0"), 10),
            (Decimal("9999999999.99"), Decimal("0.1"), 10),
            (Decimal("1000"), Decimal("1000"), 10),
        ]
        for principal, rate, term in invalid:
            with self.subTest(principal=principal, rate=rate, term=term):
                with self.assertRaises(serializers.ValidationError):
                    services.build_schedule(principal, rate, term, START)


class DelinquencyTest(SimpleTestCase):
    def make_payments(self, paid_weeks, term=5):
        return [
            Payment(week=week, due_date=week_end(week), amount=Decimal("10"), paid=week in paid_weeks)
            for week in range(1, term + 1)
        ]

    def test_no_payments(self):
        self.assertFalse(services.is_delinquent([], START))

    def test_fresh_loan_is_not_delinquent(self):
        self.assertFalse(services.is_delinquent(self.make_payments(set()), START))

    def test_single_missed_week_is_not_delinquent(self):
        self.assertFalse(services.is_delinquent(self.make_payments(set()), week_end(1)))

    def test_two_missed_weeks(self):
        payments = self.make_payments({1})
        self.assertTrue(services.is_delinquent(payments, week_end(3)))

    def test_latest_week_paid(self):
        payments = self.make_payments({2})
        self.assertFalse(services.is_delinquent(payments, week_end(2)))

    def test_paid_week_breaks_the_run(self):
        payments = self.make_payments({2})
        self.assertFalse(services.is_delinquent(payments, week_end(3)))
        self.assertTrue(services.is_delinquent(payments, week_end(4)))

    def test_future_weeks_are_ignored(self):
        payments = self.make_payments({1, 2})
        self.assertFalse(services.is_delinquent(payments, week_end(2) + timedelta(days=6)))


class LedgerTest(TestCase):
    def setUp(self):
        self.loan = services.originate_loan(
            "borrower-1", Decimal("1000"), Decimal("0.1"), 10, start_date=START
        )

    def pay(self, amount="110.00", **kwargs):
        kwargs.setdefault("as_of", START)
        return services.apply_payment(self.loan.loan_id, Decimal(amount), **kwargs)

    def test_origination_stores_schedule(self):
        loan = Loan.objects.get(pk=self.loan.pk)
        self.assertEqual(loan.loan_id, str(loan.pk))
        self.assertEqual(loan.outstanding_amount, Decimal("1100.00"))
        self.assertEqual(loan.weekly_payment_amount, Decimal("110.00"))
        self.assertFalse(loan.delinquent)
        self.assertEqual(
            list(loan.payments.values_list("week", flat=True)), list(range(1, 11))
        )

    def test_origination_defaults_start_date_to_today(self):
        loan = services.originate_loan("borrower-2", Decimal("500"), Decimal("0"), 5)
        self.assertIsNotNone(loan.start_date)
        self.assertFalse(services.get_delinquency(loan.loan_id))

    def test_origination_requires_borrower(self):
        with self.assertRaises(serializers.ValidationError):
            services.originate_loan("", Decimal("1000"), Decimal("0.1"), 10)
        self.assertEqual(services.loan_count(), 1)

    def test_correct_payment(self):
        outcome = self.pay()

        self.assertEqual(outcome.status, services.ACCEPTED)
        self.assertEqual(outcome.week, 1)
        self.assertEqual(outcome.outstanding_amount, Decimal("990.00"))
        self.assertFalse(outcome.delinquent)
        self.assertEqual(services.get_outstanding(self.loan.loan_id), Decimal("990.00"))
        first = Payment.objects.get(loan=self.loan, week=1)
        self.assertTrue(first.paid)
        self.assertIsNotNone(first.paid_at)

    def test_wrong_amount_changes_nothing(self):
        outcome = self.pay("100.00")

        self.assertEqual(outcome.status, services.WRONG_AMOUNT)
        self.assertEqual(outcome.expected_amount, Decimal("110.00"))
        self.assertEqual(outcome.week, 1)
        loan = Loan.objects.get(pk=self.loan.pk)
        self.assertEqual(loan.outstanding_amount, Decimal("1100.00"))
        self.assertFalse(loan.payments.filter(paid=True).exists())

    def test_paying_every_week_settles_the_loan(self):
        for week in range(1, 11):
            outcome = self.pay()
            self.assertEqual(outcome.week, week)

        loan = Loan.objects.get(pk=self.loan.pk)
        self.assertEqual(loan.outstanding_amount, Decimal("0.00"))
        self.assertFalse(loan.payments.filter(paid=False).exists())

        outcome = self.pay()
        self.assertEqual(outcome.status, services.ALREADY_SETTLED)
        self.assertEqual(outcome.outstanding_amount, Decimal("0.00"))

    def test_uneven_schedule_settles_to_zero(self):
        loan = services.originate_loan(
            "borrower-3", Decimal("100"), Decimal("0"), 3, start_date=START
        )
        for amount in ("33.33", "33.33"):
            services.apply_payment(loan.loan_id, Decimal(amount), as_of=START)
        outcome = services.apply_payment(loan.loan_id, Decimal("33.33"), as_of=START)
        self.assertEqual(outcome.status, services.WRONG_AMOUNT)
        self.assertEqual(outcome.expected_amount, Decimal("33.34"))

        outcome = services.apply_payment(loan.loan_id, Decimal("33.34"), as_of=START)
        self.assertEqual(outcome.outstanding_amount, Decimal("0.00"))

    def test_repeated_call_pays_next_week(self):
        self.pay()
        outcome = self.pay()
        self.assertEqual(outcome.week, 2)
        self.assertEqual(outcome.outstanding_amount, Decimal("880.00"))

    def test_replayed_idempotency_key_is_ignored(self):
        self.pay(idempotency_key="abc")
        outcome = self.pay(idempotency_key="abc")

        self.assertEqual(outcome.status, services.DUPLICATE)
        self.assertEqual(outcome.week, 1)
        self.assertEqual(outcome.outstanding_amount, Decimal("990.00"))
        self.assertEqual(Payment.objects.filter(loan=self.loan, paid=True).count(), 1)

        outcome = self.pay(idempotency_key="def")
        self.assertEqual(outcome.week, 2)

    def test_delinquency_follows_missed_weeks(self):
        self.assertFalse(services.get_delinquency(self.loan.loan_id, as_of=START))

        self.pay()
        self.assertFalse(services.get_delinquency(self.loan.loan_id, as_of=week_end(2)))

        self.assertTrue(services.get_delinquency(self.loan.loan_id, as_of=week_end(3)))
        self.assertTrue(Loan.objects.get(pk=self.loan.pk).delinquent)

        outcome = self.pay(as_of=week_end(3))
        self.assertEqual(outcome.week, 2)
        self.assertFalse(outcome.delinquent)
        self.assertFalse(Loan.objects.get(pk=self.loan.pk).delinquent)

    def test_unknown_loan(self):
        with self.assertRaises(LoanNotFound):
            services.get_outstanding("missing")
        with self.assertRaises(LoanNotFound):
            services.get_delinquency("missing")
        with self.assertRaises(LoanNotFound):
            services.apply_payment("missing", Decimal("110.00"))

    def test_loan_count(self):
        self.assertEqual(services.loan_count(), 1)
        self.pay()
        self.assertEqual(services.loan_count(), 1)
        services.originate_loan("borrower-2", Decimal("200"), Decimal("0.05"), 4)
        self.assertEqual(services.loan_count(), 2)

    def test_storage_failure_is_reported(self):
        with mock.patch.object(Loan.objects, "count", side_effect=DatabaseError("disk full")):
            with self.assertRaises(PersistenceFailure):
                services.loan_count()

    def test_float_amounts(self):
        loan = services.originate_loan("borrower-4", 100.0, 0.0, 3, start_date=START)
        self.assertEqual(loan.total_payable, Decimal("100.00"))

        outcome = services.apply_payment(loan.loan_id, 33.33, as_of=START)
        self.assertEqual(outcome.status, services.ACCEPTED)
        self.assertEqual(outcome.outstanding_amount, Decimal("66.67"))

        loan = services.originate_loan("borrower-5", 1000.0, 0.1, 10, start_date=START)
        self.assertEqual(loan.weekly_payment_amount, Decimal("110.00"))
        outcome = services.apply_payment(loan.loan_id, 110.0, as_of=START)
        self.assertEqual(outcome.status, services.ACCEPTED)

    def test_origination_is_all_or_nothing(self):
        with mock.patch.object(Payment.objects, "bulk_create", side_effect=DatabaseError("locked")):
            with self.assertRaises(PersistenceFailure):
                services.originate_loan("borrower-9", Decimal("500"), Decimal("0"), 5)

        self.assertFalse(Loan.objects.filter(borrower_id="borrower-9").exists())
        self.assertEqual(Loan.objects.count(), 1)

    def test_failed_loan_write_rolls_back_payment(self):
        with mock.patch.object(Loan, "save", side_effect=DatabaseError("locked")):
            with self.assertRaises(PersistenceFailure):
                self.pay()

        self.assertFalse(Payment.objects.get(loan=self.loan, week=1).paid)
        self.assertEqual(services.get_outstanding(self.loan.loan_id), Decimal("1100.00"))


class LoanAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.payload = {
            "borrower_id": "borrower-1",
            "principal_amount": "1000",
            "interest_rate": "0.1",
            "term_weeks": 10,
            "start_date": "2024-01-01",
        }

    def create_loan(self, **overrides):
        payload = dict(self.payload, **overrides)
        response = self.client.post(reverse("loan-create"), data=payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data["loan_id"]

    def pay(self, loan_id, amount, **extra):
        url = reverse("loan-payment", args=[loan_id])
        return self.client.post(url, data=dict(amount=amount, **extra), format="json")

    def test_create_loan(self):
        response = self.client.post(reverse("loan-create"), data=self.payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["borrower_id"], "borrower-1")
        self.assertEqual(response.data["total_payable"], "1100.00")
        self.assertEqual(response.data["weekly_payment_amount"], "110.00")
        self.assertEqual(response.data["outstanding_amount"], "1100.00")
        self.assertFalse(response.data["delinquent"])
        schedule = response.data["payments"]
        self.assertEqual(len(schedule), 10)
        self.assertEqual(schedule[0]["week"], 1)
        self.assertEqual(schedule[0]["due_date"], "2024-01-08")
        self.assertEqual(schedule[-1]["week"], 10)
        total = sum(Decimal(str(p["amount"])) for p in schedule)
        self.assertEqual(total, Decimal("1100"))

    def test_create_rejects_invalid_input(self):
        for overrides in ({"term_weeks": 0}, {"principal_amount": "0"}, {"interest_rate": "-0.1"}):
            with self.subTest(**overrides):
                payload = dict(self.payload, **overrides)
                response = self.client.post(reverse("loan-create"), data=payload, format="json")
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        payload = dict(self.payload)
        del payload["borrower_id"]
        response = self.client.post(reverse("loan-create"), data=payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("borrower_id", response.data)
        self.assertEqual(Loan.objects.count(), 0)

    def test_loan_detail(self):
        loan_id = self.create_loan()
        response = self.client.get(reverse("loan-detail", args=[loan_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["loan_id"], loan_id)
        self.assertEqual(len(response.data["payments"]), 10)

    def test_payment_updates_outstanding(self):
        loan_id = self.create_loan()

        response = self.pay(loan_id, "110.00")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "accepted")
        self.assertEqual(response.data["week"], 1)
        self.assertEqual(response.data["outstanding_amount"], "990.00")

        response = self.client.get(reverse("loan-outstanding", args=[loan_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["outstanding_amount"], "990.00")

    def test_wrong_amount_reports_expected(self):
        loan_id = self.create_loan()

        response = self.pay(loan_id, "50")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "wrong_amount")
        self.assertEqual(response.data["expected_amount"], "110.00")
        self.assertIn("error", response.data)

        response = self.client.get(reverse("loan-outstanding", args=[loan_id]))
        self.assertEqual(response.data["outstanding_amount"], "1100.00")

    def test_settled_loan_rejects_payment(self):
        loan_id = self.create_loan(term_weeks=2, principal_amount="100", interest_rate="0")
        self.pay(loan_id, "50.00")
        self.pay(loan_id, "50.00")

        response = self.pay(loan_id, "50.00")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["status"], "already_settled")
        self.assertEqual(response.data["outstanding_amount"], "0.00")

    def test_replayed_payment(self):
        loan_id = self.create_loan()
        self.pay(loan_id, "110.00", idempotency_key="req-1")

        response = self.pay(loan_id, "110.00", idempotency_key="req-1")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "duplicate")
        self.assertEqual(response.data["outstanding_amount"], "990.00")

    def test_delinquency(self):
        loan_id = self.create_loan()
        url = reverse("loan-delinquent", args=[loan_id])

        response = self.client.get(url, {"as_of": "2024-01-01"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data["delinquent"])

        response = self.client.get(url, {"as_of": "2024-01-15"})
        self.assertTrue(response.data["delinquent"])

        response = self.client.get(url, {"as_of": "not-a-date"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_loan(self):
        for name in ("loan-detail", "loan-outstanding", "loan-delinquent"):
            with self.subTest(name=name):
                response = self.client.get(reverse(name, args=["404"]))
                self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.pay("404", "110.00")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_total_loans(self):
        url = reverse("loan-total")
        self.assertEqual(self.client.get(url).data["total_loans"], 0)

        loan_id = self.create_loan()
        self.assertEqual(self.client.get(url).data["total_loans"], 1)

        self.pay(loan_id, "110.00")
        self.assertEqual(self.client.get(url).data["total_loans"], 1)

        self.create_loan(borrower_id="borrower-2")
        self.assertEqual(self.client.get(url).data["total_loans"], 2)

    def test_total_too_large_is_rejected(self):
        response = self.client.post(
            reverse("loan-create"),
            data=dict(self.payload, principal_amount="9999999999.99"),
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("principal_amount", response.data)
        self.assertEqual(Loan.objects.count(), 0)

        response = self.client.get(reverse("loan-total"))
        self.assertEqual(response.data["total_loans"], 0)

    def test_final_week_amount_is_reported(self):
        loan_id = self.create_loan(principal_amount="100", interest_rate="0", term_weeks=3)
        self.pay(loan_id, "33.33")
        self.pay(loan_id, "33.33")

        response = self.pay(loan_id, "33.33")
        self.assertEqual(response.data["status"], "wrong_amount")
        self.assertEqual(response.data["expected_amount"], "33.34")
        self.assertIn("rounding remainder", response.data["error"])

    def test_storage_failure(self):
        with mock.patch.object(Loan.objects, "count", side_effect=DatabaseError("locked")):
            response = self.client.get(reverse("loan-total"))
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["detail"], "Loan storage is unavailable.")
