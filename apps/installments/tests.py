from datetime import date, datetime
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, OperationalError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.common.exceptions import ConcurrencyConflict, InvalidStateError
from apps.customers.models import Customer, CustomerFinancialProfile
from apps.installments import services
from apps.installments.models import (
    InstallmentPayment,
    InstallmentPaymentStatus,
    InstallmentPlan,
    InstallmentPlanStatus,
    InstallmentReceipt,
)
from apps.notifications.models import Notification, NotificationEvent, RecipientType
from apps.sales.models import Sale, SaleStatus

User = get_user_model()


def at(year, month, day, hour=10):
    return timezone.make_aware(datetime(year, month, day, hour, 0))


def make_customer(phone="0771112222", name="Chaminda", with_profile=True):
    customer = Customer.objects.create(name=name, phone=phone)
    if with_profile:
        CustomerFinancialProfile.objects.create(
            customer=customer,
            national_id=f"NIC{phone}",
            bank_name="Sampath Bank",
            bank_branch="Galle",
            account_number="1002003004",
            company_name="Lanka Motors",
            company_email="payroll@lankamotors.example",
        )
    return customer


class InstallmentServiceTestCase(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(
            username="owner_inst",
            password="owner123",
            role="ADMIN",
            email="owner@shop.example",
        )
        self.cashier = User.objects.create_user(username="cashier_inst", password="cashier123", role="CASHIER")
        self.customer = make_customer()

    def create_plan(self, **overrides):
        terms = {
            "actor": self.cashier,
            "customer": self.customer,
            "total_amount": Decimal("1000.00"),
            "down_payment": Decimal("0.00"),
            "number_of_installments": 2,
            "frequency": "MONTHLY",
            "start_date": date(2026, 1, 1),
            "first_payment_date": date(2026, 1, 31),
        }
        terms.update(overrides)
        return services.create_plan(**terms)

    def installment(self, plan, number):
        return plan.payments.get(installment_number=number)


class ScheduleTests(InstallmentServiceTestCase):
    def test_amounts_sum_exactly_to_financed_amount(self):
        plan = self.create_plan(down_payment=Decimal("100.00"), number_of_installments=3)
        amounts = list(plan.payments.order_by("installment_number").values_list("amount_due", flat=True))
        self.assertEqual(plan.financed_amount, Decimal("900.00"))
        self.assertEqual(sum(amounts), Decimal("900.00"))
        self.assertEqual(plan.installment_amount, Decimal("300.00"))

    def test_last_installment_absorbs_rounding_remainder(self):
        plan = self.create_plan(total_amount=Decimal("100.00"), number_of_installments=3)
        amounts = list(plan.payments.order_by("installment_number").values_list("amount_due", flat=True))
        self.assertEqual(amounts, [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")])
        self.assertEqual(sum(amounts), plan.financed_amount)

    def test_monthly_due_dates_clamp_to_month_end(self):
        plan = self.create_plan(number_of_installments=3)
        due_dates = list(plan.payments.order_by("installment_number").values_list("due_date", flat=True))
        self.assertEqual(due_dates, [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31)])
        self.assertEqual(plan.end_date, date(2026, 3, 31))

    def test_weekly_and_biweekly_periods(self):
        weekly = self.create_plan(frequency="WEEKLY", number_of_installments=3, first_payment_date=date(2026, 1, 8))
        biweekly = self.create_plan(frequency="BIWEEKLY", number_of_installments=3, first_payment_date=date(2026, 1, 15))
        self.assertEqual(
            list(weekly.payments.values_list("due_date", flat=True)),
            [date(2026, 1, 8), date(2026, 1, 15), date(2026, 1, 22)],
        )
        self.assertEqual(
            list(biweekly.payments.values_list("due_date", flat=True)),
            [date(2026, 1, 15), date(2026, 1, 29), date(2026, 2, 12)],
        )

    def test_plan_numbers_and_payment_numbers_are_sequential(self):
        first = self.create_plan()
        second = self.create_plan()
        self.assertEqual(first.plan_number, "INS0001")
        self.assertEqual(second.plan_number, "INS0002")
        self.assertEqual(
            list(second.payments.values_list("payment_number", flat=True)),
            ["INS0002-01", "INS0002-02"],
        )

    def test_first_payment_defaults_to_one_period_after_start(self):
        plan = self.create_plan(first_payment_date=None, start_date=date(2026, 1, 31))
        self.assertEqual(plan.first_payment_date, date(2026, 2, 28))

    def test_creation_records_outbox_and_audit(self):
        plan = self.create_plan()
        notification = Notification.objects.get(reference_id=str(plan.id))
        self.assertEqual(notification.event_type, NotificationEvent.INSTALLMENT_PLAN_CREATED)
        self.assertEqual(notification.recipient, self.customer.phone)
        self.assertTrue(AuditLog.objects.filter(action="installment_plan.create", entity_id=str(plan.id)).exists())
        self.assertEqual(plan.total_outstanding, Decimal("1000.00"))

    def test_down_payment_equal_to_total_writes_nothing(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_plan(down_payment=Decimal("1000.00"))
        self.assertIn("down_payment", ctx.exception.detail)
        self.assertEqual(InstallmentPlan.objects.count(), 0)
        self.assertEqual(InstallmentPayment.objects.count(), 0)
        self.assertEqual(Notification.objects.count(), 0)

    def test_inconsistent_financed_amount_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_plan(down_payment=Decimal("200.00"), financed_amount=Decimal("850.00"))
        self.assertIn("financed_amount", ctx.exception.detail)
        self.assertFalse(InstallmentPlan.objects.exists())

    def test_first_payment_before_start_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_plan(first_payment_date=date(2025, 12, 31))
        self.assertIn("first_payment_date", ctx.exception.detail)

    def test_installments_smaller_than_a_cent_are_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.create_plan(total_amount=Decimal("0.05"), number_of_installments=10)
        self.assertIn("number_of_installments", ctx.exception.detail)
        self.assertFalse(InstallmentPlan.objects.exists())
        self.assertFalse(InstallmentPayment.objects.exists())

    def test_plan_number_clash_is_a_retryable_conflict(self):
        self.create_plan()
        with mock.patch.object(services, "next_plan_number", return_value="INS0001"):
            with self.assertRaises(ConcurrencyConflict):
                self.create_plan()
        self.assertEqual(InstallmentPlan.objects.count(), 1)

    def test_other_integrity_errors_are_not_reported_as_conflicts(self):
        with mock.patch.object(
            InstallmentPayment.objects,
            "bulk_create",
            side_effect=IntegrityError("CHECK constraint failed: instpay_amount_due_gt_zero"),
        ):
            with self.assertRaises(IntegrityError):
                self.create_plan()
        self.assertFalse(InstallmentPlan.objects.exists())

    def test_customer_without_financial_profile_is_rejected(self):
        walk_in = make_customer(phone="0779990000", with_profile=False)
        with self.assertRaises(ValidationError) as ctx:
            self.create_plan(customer=walk_in)
        self.assertIn("customer", ctx.exception.detail)

    @override_settings(INSTALLMENT_REQUIRE_VERIFIED_PROFILE=True)
    def test_verified_profile_can_be_required(self):
        with self.assertRaises(ValidationError):
            self.create_plan()
        CustomerFinancialProfile.objects.filter(customer=self.customer).update(is_verified=True)
        self.customer.refresh_from_db()
        self.assertEqual(self.create_plan().status, InstallmentPlanStatus.ACTIVE)

    def test_sale_total_is_used_when_total_is_omitted(self):
        sale = Sale.objects.create(
            cashier=self.cashier,
            customer=self.customer,
            status=SaleStatus.CONFIRMED,
            subtotal=Decimal("1500.00"),
            total=Decimal("1500.00"),
            confirmed_at=timezone.now(),
        )
        plan = self.create_plan(total_amount=None, sale=sale, down_payment=Decimal("300.00"), number_of_installments=4)
        self.assertEqual(plan.total_amount, Decimal("1500.00"))
        self.assertEqual(plan.financed_amount, Decimal("1200.00"))
        self.assertEqual(plan.sale_id, sale.id)

    def test_draft_sale_cannot_be_financed(self):
        sale = Sale.objects.create(cashier=self.cashier, customer=self.customer, total=Decimal("500.00"))
        with self.assertRaises(ValidationError) as ctx:
            self.create_plan(sale=sale)
        self.assertIn("sale", ctx.exception.detail)


class ApplyPaymentTests(InstallmentServiceTestCase):
    def test_full_payments_complete_the_plan(self):
        plan = self.create_plan()
        for number in (1, 2):
            services.apply_payment(
                payment_id=self.installment(plan, number).id,
                amount=Decimal("500.00"),
                payment_method="CASH",
                actor=self.cashier,
                now=at(2026, 1, 20),
            )
        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.COMPLETED)
        self.assertEqual(plan.total_paid, Decimal("1000.00"))
        self.assertEqual(plan.total_outstanding, Decimal("0.00"))
        self.assertEqual(plan.payments_completed, 2)
        self.assertIsNotNone(plan.completed_at)
        self.assertEqual(
            set(plan.payments.values_list("status", flat=True)),
            {InstallmentPaymentStatus.PAID},
        )
        self.assertTrue(
            Notification.objects.filter(
                event_type=NotificationEvent.INSTALLMENT_PLAN_COMPLETED,
                reference_id=str(plan.id),
            ).exists()
        )

    def test_partial_payment_before_due_stays_pending(self):
        plan = self.create_plan()
        payment = services.apply_payment(
            payment_id=self.installment(plan, 1).id,
            amount=Decimal("300.00"),
            payment_method="CASH",
            actor=self.cashier,
            now=at(2026, 1, 20),
        )
        self.assertEqual(payment.status, InstallmentPaymentStatus.PENDING)
        self.assertEqual(payment.amount_paid, Decimal("300.00"))
        self.assertIsNone(payment.payment_date)
        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.ACTIVE)
        self.assertEqual(plan.total_paid, Decimal("300.00"))
        self.assertEqual(plan.total_outstanding, Decimal("700.00"))
        self.assertEqual(InstallmentReceipt.objects.filter(payment=payment).count(), 1)

    def test_partial_payment_after_due_is_late(self):
        plan = self.create_plan()
        payment = services.apply_payment(
            payment_id=self.installment(plan, 1).id,
            amount=Decimal("300.00"),
            payment_method="CASH",
            actor=self.cashier,
            now=at(2026, 2, 5),
        )
        self.assertEqual(payment.status, InstallmentPaymentStatus.LATE)
        self.assertEqual(payment.overdue_since, date(2026, 1, 31))
        self.assertEqual(payment.days_overdue, 5)
        plan.refresh_from_db()
        self.assertEqual(plan.payments_missed, 1)

    def test_overdue_installment_paid_in_full_is_settled(self):
        plan = self.create_plan(late_fee_fixed=Decimal("10.00"))
        payment = services.apply_payment(
            payment_id=self.installment(plan, 1).id,
            amount=Decimal("500.00"),
            payment_method="CASH",
            actor=self.cashier,
            now=at(2026, 2, 3),
        )
        self.assertEqual(payment.status, InstallmentPaymentStatus.PAID)
        self.assertEqual(payment.amount_paid, Decimal("500.00"))
        self.assertEqual(payment.late_fee, Decimal("10.00"))
        self.assertEqual(payment.late_fee_paid, Decimal("0.00"))
        self.assertEqual(payment.total_amount_paid, Decimal("510.00"))
        self.assertEqual(payment.days_overdue, 0)
        plan.refresh_from_db()
        self.assertEqual(plan.total_paid, Decimal("500.00"))
        self.assertEqual(plan.total_outstanding, Decimal("500.00"))
        self.assertEqual(plan.payments_completed, 1)
        self.assertEqual(plan.payments_missed, 0)

    def test_money_above_amount_due_is_credited_to_the_late_fee(self):
        plan = self.create_plan(late_fee_fixed=Decimal("100.00"), late_fee_percentage=Decimal("5.00"))
        installment = self.installment(plan, 1)

        payment = services.apply_payment(
            payment_id=installment.id,
            amount=Decimal("300.00"),
            payment_method="CASH",
            actor=self.cashier,
            now=at(2026, 2, 10),
        )
        self.assertEqual(payment.late_fee, Decimal("125.00"))
        self.assertEqual(payment.late_fee_paid, Decimal("0.00"))
        self.assertEqual(payment.amount_paid, Decimal("300.00"))
        self.assertEqual(payment.status, InstallmentPaymentStatus.LATE)

        payment = services.apply_payment(
            payment_id=installment.id,
            amount=Decimal("325.00"),
            payment_method="BANK_TRANSFER",
            reference="TRX-1001",
            actor=self.cashier,
            now=at(2026, 2, 11),
        )
        self.assertEqual(payment.status, InstallmentPaymentStatus.PAID)
        self.assertEqual(payment.amount_paid, Decimal("625.00"))
        self.assertEqual(payment.late_fee_paid, Decimal("125.00"))
        self.assertEqual(payment.total_amount_paid, Decimal("750.00"))
        receipt = InstallmentReceipt.objects.get(reference="TRX-1001")
        self.assertEqual(receipt.principal_amount, Decimal("200.00"))
        self.assertEqual(receipt.late_fee_amount, Decimal("125.00"))
        plan.refresh_from_db()
        self.assertEqual(plan.total_paid, Decimal("625.00"))
        self.assertEqual(plan.total_outstanding, Decimal("375.00"))
        self.assertEqual(plan.payments_missed, 0)

    def test_overpayment_stays_on_the_installment(self):
        plan = self.create_plan()
        payment = services.apply_payment(
            payment_id=self.installment(plan, 1).id,
            amount=Decimal("650.00"),
            payment_method="CASH",
            actor=self.cashier,
            now=at(2026, 1, 20),
        )
        self.assertEqual(payment.status, InstallmentPaymentStatus.PAID)
        self.assertEqual(payment.amount_paid, Decimal("650.00"))
        self.assertEqual(self.installment(plan, 2).amount_paid, Decimal("0.00"))
        plan.refresh_from_db()
        self.assertEqual(plan.total_outstanding, Decimal("350.00"))

    def test_paid_installment_rejects_more_money(self):
        plan = self.create_plan()
        installment = self.installment(plan, 1)
        services.apply_payment(
            payment_id=installment.id,
            amount=Decimal("500.00"),
            payment_method="CASH",
            actor=self.cashier,
            now=at(2026, 1, 20),
        )
        with self.assertRaises(InvalidStateError):
            services.apply_payment(
                payment_id=installment.id,
                amount=Decimal("10.00"),
                payment_method="CASH",
                actor=self.cashier,
                now=at(2026, 1, 21),
            )

    def test_reused_reference_is_rejected(self):
        plan = self.create_plan()
        services.apply_payment(
            payment_id=self.installment(plan, 1).id,
            amount=Decimal("100.00"),
            payment_method="CARD",
            reference="POS-77",
            actor=self.cashier,
            now=at(2026, 1, 20),
        )
        with self.assertRaises(ValidationError) as ctx:
            services.apply_payment(
                payment_id=self.installment(plan, 1).id,
                amount=Decimal("100.00"),
                payment_method="CARD",
                reference="POS-77",
                actor=self.cashier,
                now=at(2026, 1, 20),
            )
        self.assertIn("reference", ctx.exception.detail)
        self.assertEqual(self.installment(plan, 1).amount_paid, Decimal("100.00"))

    def test_non_positive_amount_is_rejected(self):
        plan = self.create_plan()
        with self.assertRaises(ValidationError):
            services.apply_payment(
                payment_id=self.installment(plan, 1).id,
                amount=Decimal("0.00"),
                payment_method="CASH",
                actor=self.cashier,
            )
        self.assertFalse(InstallmentReceipt.objects.exists())


class CancelPlanTests(InstallmentServiceTestCase):
    def test_cancelled_plan_freezes_remaining_installments(self):
        plan = self.create_plan()
        services.cancel_plan(plan_id=plan.id, reason="Customer returned the phone", actor=self.admin)
        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.CANCELLED)
        self.assertIsNotNone(plan.cancelled_at)

        installment = self.installment(plan, 1)
        with self.assertRaises(InvalidStateError):
            services.apply_payment(
                payment_id=installment.id,
                amount=Decimal("500.00"),
                payment_method="CASH",
                actor=self.cashier,
                now=at(2026, 1, 20),
            )
        installment.refresh_from_db()
        self.assertEqual(installment.status, InstallmentPaymentStatus.PENDING)
        self.assertEqual(installment.amount_paid, Decimal("0.00"))
        self.assertFalse(InstallmentReceipt.objects.exists())

    def test_blank_reason_is_rejected(self):
        plan = self.create_plan()
        with self.assertRaises(ValidationError):
            services.cancel_plan(plan_id=plan.id, reason="   ", actor=self.admin)
        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.ACTIVE)

    def test_only_active_plans_can_be_cancelled(self):
        plan = self.create_plan()
        services.cancel_plan(plan_id=plan.id, reason="duplicate", actor=self.admin)
        with self.assertRaises(InvalidStateError):
            services.cancel_plan(plan_id=plan.id, reason="again", actor=self.admin)


class OverdueSweepTests(InstallmentServiceTestCase):
    def snapshot(self):
        payments = list(
            InstallmentPayment.objects.order_by("payment_number").values(
                "status",
                "days_overdue",
                "late_fee",
                "reminder_sent",
                "late_notification_sent",
                "owner_notified",
                "bank_notified",
                "employer_notified",
                "updated_at",
            )
        )
        plans = list(
            InstallmentPlan.objects.order_by("plan_number").values(
                "status", "total_paid", "payments_missed", "updated_at"
            )
        )
        return payments, plans, Notification.objects.count()

    def test_reminder_is_queued_once_before_due_date(self):
        plan = self.create_plan()
        result = services.run_overdue_sweep(today=date(2026, 1, 29))
        self.assertEqual(result["reminders_queued"], 1)
        installment = self.installment(plan, 1)
        self.assertTrue(installment.reminder_sent)
        self.assertEqual(installment.status, InstallmentPaymentStatus.PENDING)
        self.assertFalse(self.installment(plan, 2).reminder_sent)

        again = services.run_overdue_sweep(today=date(2026, 1, 30))
        self.assertEqual(again["reminders_queued"], 0)
        self.assertEqual(
            Notification.objects.filter(event_type=NotificationEvent.INSTALLMENT_PAYMENT_DUE).count(),
            1,
        )

    def test_overdue_installment_becomes_late_and_alerts_customer_and_owner(self):
        plan = self.create_plan(late_fee_fixed=Decimal("50.00"))
        result = services.run_overdue_sweep(today=date(2026, 2, 3))
        installment = self.installment(plan, 1)
        self.assertEqual(installment.status, InstallmentPaymentStatus.LATE)
        self.assertEqual(installment.days_overdue, 3)
        self.assertEqual(installment.late_fee, Decimal("50.00"))
        self.assertTrue(installment.late_notification_sent)
        self.assertTrue(installment.owner_notified)
        self.assertFalse(installment.bank_notified)
        self.assertEqual(result["payments_marked_late"], 1)
        self.assertEqual(result["owner_alerts_queued"], 1)
        self.assertTrue(
            Notification.objects.filter(
                recipient_type=RecipientType.OWNER,
                recipient="owner@shop.example",
                event_type=NotificationEvent.INSTALLMENT_PAYMENT_LATE,
            ).exists()
        )
        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.ACTIVE)
        self.assertEqual(plan.payments_missed, 1)

    def test_sweep_is_idempotent(self):
        self.create_plan(number_of_installments=3, late_fee_percentage=Decimal("2.00"))
        services.run_overdue_sweep(today=date(2026, 2, 10))
        before = self.snapshot()
        second = services.run_overdue_sweep(today=date(2026, 2, 10))
        self.assertEqual(self.snapshot(), before)
        self.assertEqual(second["plans_checked"], 1)
        self.assertEqual(sum(value for key, value in second.items() if key != "plans_checked"), 0)

    def test_grace_period_defaults_plan_and_escalates(self):
        plan = self.create_plan(number_of_installments=3)
        result = services.run_overdue_sweep(today=date(2026, 3, 3))

        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.DEFAULTED)
        self.assertIsNotNone(plan.defaulted_at)
        self.assertEqual(plan.payments_missed, 2)
        self.assertEqual(self.installment(plan, 1).status, InstallmentPaymentStatus.DEFAULTED)
        self.assertEqual(self.installment(plan, 2).status, InstallmentPaymentStatus.DEFAULTED)
        self.assertEqual(self.installment(plan, 3).status, InstallmentPaymentStatus.PENDING)
        self.assertEqual(result["plans_defaulted"], 1)

        first = self.installment(plan, 1)
        self.assertTrue(first.bank_notified)
        self.assertTrue(first.employer_notified)
        self.assertFalse(self.installment(plan, 2).bank_notified)
        self.assertTrue(
            Notification.objects.filter(recipient_type=RecipientType.BANK, recipient="Sampath Bank").exists()
        )
        self.assertTrue(
            Notification.objects.filter(
                recipient_type=RecipientType.EMPLOYER,
                recipient="payroll@lankamotors.example",
            ).exists()
        )

        self.assertEqual(services.run_overdue_sweep(today=date(2026, 3, 4))["plans_checked"], 0)

    @override_settings(INSTALLMENT_DEFAULT_MAX_MISSED=2, INSTALLMENT_DEFAULT_GRACE_DAYS=90)
    def test_missed_installment_count_defaults_plan(self):
        plan = self.create_plan(number_of_installments=3, frequency="WEEKLY", first_payment_date=date(2026, 1, 8))
        services.run_overdue_sweep(today=date(2026, 1, 12))
        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.ACTIVE)

        services.run_overdue_sweep(today=date(2026, 1, 19))
        plan.refresh_from_db()
        self.assertEqual(plan.status, InstallmentPlanStatus.DEFAULTED)

    def test_failure_on_one_plan_does_not_stop_the_sweep(self):
        broken = self.create_plan()
        healthy = self.create_plan()
        original = services._sweep_plan

        def sweep_plan(plan, context, counts):
            if plan.pk == broken.pk:
                raise DatabaseError("deadlock detected")
            return original(plan, context, counts)

        with mock.patch("apps.installments.services._sweep_plan", side_effect=sweep_plan):
            result = services.run_overdue_sweep(today=date(2026, 2, 3))

        self.assertEqual(result["errors"], 1)
        self.assertEqual(result["plans_checked"], 1)
        self.assertEqual(self.installment(broken, 1).status, InstallmentPaymentStatus.PENDING)
        self.assertEqual(self.installment(healthy, 1).status, InstallmentPaymentStatus.LATE)

    def test_paid_and_cancelled_plans_are_skipped(self):
        plan = self.create_plan()
        services.cancel_plan(plan_id=plan.id, reason="returned", actor=self.admin)
        result = services.run_overdue_sweep(today=date(2026, 3, 15))
        self.assertEqual(result["plans_checked"], 0)
        self.assertEqual(self.installment(plan, 1).status, InstallmentPaymentStatus.PENDING)

    def test_management_command_accepts_a_date(self):
        plan = self.create_plan()
        call_command("sweep_installments", "--date", "2026-02-03")
        self.assertEqual(self.installment(plan, 1).status, InstallmentPaymentStatus.LATE)


class PlanStatsTests(InstallmentServiceTestCase):
    def test_stats_summarize_portfolio(self):
        active = self.create_plan()
        cancelled = self.create_plan()
        services.cancel_plan(plan_id=cancelled.id, reason="returned", actor=self.admin)
        services.apply_payment(
            payment_id=self.installment(active, 1).id,
            amount=Decimal("500.00"),
            payment_method="CASH",
            actor=self.cashier,
            now=at(2026, 1, 20),
        )
        stats = services.plan_stats(today=date(2026, 2, 25))
        self.assertEqual(stats["total_plans"], 2)
        self.assertEqual(stats["plans_by_status"]["ACTIVE"], 1)
        self.assertEqual(stats["plans_by_status"]["CANCELLED"], 1)
        self.assertEqual(stats["total_financed"], Decimal("2000.00"))
        self.assertEqual(stats["total_collected"], Decimal("500.00"))
        self.assertEqual(stats["total_outstanding"], Decimal("500.00"))
        self.assertEqual(stats["overdue_installments"], 0)
        self.assertEqual(stats["due_next_7_days"], 1)


class InstallmentApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin_api", password="admin123", role="ADMIN")
        self.cashier = User.objects.create_user(username="cashier_api", password="cashier123", role="CASHIER")
        self.customer = make_customer(phone="0712223333", name="Dilani")

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def create_plan(self, **overrides):
        payload = {
            "customer": str(self.customer.id),
            "product_description": "Galaxy A55 128GB",
            "total_amount": "1000.00",
            "down_payment": "100.00",
            "number_of_installments": 3,
            "frequency": "MONTHLY",
            "start_date": "2026-01-01",
            "first_payment_date": "2026-01-31",
        }
        payload.update(overrides)
        return self.client.post("/api/v1/installment-plans/", payload, format="json")

    def test_cashier_creates_plan_with_schedule(self):
        self.auth_as("cashier_api", "cashier123")
        response = self.create_plan()
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["plan_number"], "INS0001")
        self.assertEqual(response.data["financed_amount"], "900.00")
        self.assertEqual(len(response.data["payments"]), 3)
        self.assertEqual(
            [row["due_date"] for row in response.data["payments"]],
            ["2026-01-31", "2026-02-28", "2026-03-31"],
        )

    def test_invalid_terms_use_error_envelope(self):
        self.auth_as("cashier_api", "cashier123")
        response = self.create_plan(down_payment="1000.00")
        self.assertEqual(response.status_code, 400)
        self.assertIn("down_payment", response.data["fields"])
        self.assertFalse(response.data["retryable"])
        self.assertFalse(InstallmentPlan.objects.exists())

    def test_pay_endpoint_applies_money(self):
        self.auth_as("cashier_api", "cashier123")
        plan_id = self.create_plan().data["id"]
        payment = InstallmentPayment.objects.get(plan_id=plan_id, installment_number=1)

        response = self.client.post(
            f"/api/v1/installment-payments/{payment.id}/pay/",
            {"amount": "300.00", "payment_method": "MOBILE_PAYMENT", "reference": "EZ-5001"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["amount_paid"], "300.00")
        self.assertEqual(len(response.data["receipts"]), 1)
        plan = InstallmentPlan.objects.get(pk=plan_id)
        self.assertEqual(plan.total_paid, Decimal("300.00"))

    def test_lock_failure_is_reported_as_retryable_conflict(self):
        self.auth_as("cashier_api", "cashier123")
        plan_id = self.create_plan().data["id"]
        payment = InstallmentPayment.objects.get(plan_id=plan_id, installment_number=1)

        with mock.patch.object(
            InstallmentPlan.objects,
            "select_for_update",
            side_effect=OperationalError("could not obtain lock"),
        ):
            response = self.client.post(
                f"/api/v1/installment-payments/{payment.id}/pay/",
                {"amount": "300.00", "payment_method": "CASH"},
                format="json",
            )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "concurrency_conflict")
        self.assertTrue(response.data["retryable"])
        payment.refresh_from_db()
        self.assertEqual(payment.amount_paid, Decimal("0.00"))

    def test_cancel_requires_admin(self):
        self.auth_as("cashier_api", "cashier123")
        plan_id = self.create_plan().data["id"]
        forbidden = self.client.post(f"/api/v1/installment-plans/{plan_id}/cancel/", {"reason": "x"}, format="json")
        self.assertEqual(forbidden.status_code, 403)

        self.auth_as("admin_api", "admin123")
        response = self.client.post(
            f"/api/v1/installment-plans/{plan_id}/cancel/",
            {"reason": "Device returned"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "CANCELLED")

        payment = InstallmentPayment.objects.get(plan_id=plan_id, installment_number=1)
        pay = self.client.post(
            f"/api/v1/installment-payments/{payment.id}/pay/",
            {"amount": "300.00", "payment_method": "CASH"},
            format="json",
        )
        self.assertEqual(pay.status_code, 400)
        self.assertEqual(pay.data["code"], "invalid_state")

    def test_sweep_and_stats_endpoints(self):
        self.auth_as("cashier_api", "cashier123")
        self.create_plan()
        self.assertEqual(self.client.post("/api/v1/installment-plans/sweep/", {}, format="json").status_code, 403)

        self.auth_as("admin_api", "admin123")
        sweep = self.client.post("/api/v1/installment-plans/sweep/", {"date": "2026-02-03"}, format="json")
        self.assertEqual(sweep.status_code, 200)
        self.assertEqual(sweep.data["payments_marked_late"], 1)

        stats = self.client.get("/api/v1/installment-plans/stats/")
        self.assertEqual(stats.status_code, 200)
        self.assertEqual(stats.data["plans_by_status"]["ACTIVE"], 1)

    def test_payment_filters(self):
        self.auth_as("cashier_api", "cashier123")
        plan_id = self.create_plan().data["id"]
        response = self.client.get("/api/v1/installment-payments/", {"plan": plan_id, "due_to": "2026-02-28"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 2)

    def test_malformed_filters_are_rejected_with_error_envelope(self):
        self.auth_as("cashier_api", "cashier123")
        self.create_plan()

        payments = self.client.get("/api/v1/installment-payments/", {"plan": "not-a-uuid"})
        self.assertEqual(payments.status_code, 400)
        self.assertIn("plan", payments.data["fields"])
        self.assertFalse(payments.data["retryable"])

        plans = self.client.get("/api/v1/installment-plans/", {"customer": "bogus", "start_date_from": "31/01/2026"})
        self.assertEqual(plans.status_code, 400)
        self.assertIn("customer", plans.data["fields"])
        self.assertIn("start_date_from", plans.data["fields"])

        blank = self.client.get("/api/v1/installment-plans/", {"customer": ""})
        self.assertEqual(blank.status_code, 200)
        self.assertEqual(blank.data["count"], 1)

    def test_too_many_installments_for_amount_is_a_validation_error(self):
        self.auth_as("cashier_api", "cashier123")
        response = self.create_plan(total_amount="0.05", down_payment="0.00", number_of_installments=10)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "invalid")
        self.assertIn("number_of_installments", response.data["fields"])
        self.assertFalse(response.data["retryable"])
