import logging
from datetime import timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import DatabaseError, IntegrityError, OperationalError, transaction
from django.db.models import Count, Q, Sum
from django.db.models.functions import Length
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from apps.accounts.models import User
from apps.audit.services import record_audit
from apps.common.exceptions import ConcurrencyConflict, InvalidStateError, NotFoundError
from apps.common.money import ZERO, floor_to_cents, to_money
from apps.customers.models import CustomerFinancialProfile
from apps.installments.models import (
    InstallmentFrequency,
    InstallmentPayment,
    InstallmentPaymentMethod,
    InstallmentPaymentStatus,
    InstallmentPlan,
    InstallmentPlanStatus,
    InstallmentReceipt,
    UNPAID_STATUSES,
)
from apps.notifications.models import NotificationChannel, NotificationEvent, RecipientType
from apps.notifications.services import enqueue
from apps.sales.models import SaleStatus

logger = logging.getLogger(__name__)

PLAN_NUMBER_PREFIX = "INS"


def add_periods(first_date, frequency, periods):
    if frequency == InstallmentFrequency.WEEKLY:
        return first_date + timedelta(days=7 * periods)
    if frequency == InstallmentFrequency.BIWEEKLY:
        return first_date + timedelta(days=14 * periods)
    # Always offset from the first date so a 31st does not drift to the 28th.
    return first_date + relativedelta(months=periods)


def build_schedule(financed_amount, number_of_installments, frequency, first_payment_date):
    """Return ``[(installment_number, due_date, amount_due), ...]``.

    Every installment gets the financed amount divided evenly and floored to
    the cent; the last one absorbs the remainder so the schedule sums exactly.
    """
    financed_amount = to_money(financed_amount)
    base = floor_to_cents(financed_amount / number_of_installments)
    last = financed_amount - base * (number_of_installments - 1)
    schedule = []
    for number in range(1, number_of_installments + 1):
        amount = last if number == number_of_installments else base
        schedule.append((number, add_periods(first_payment_date, frequency, number - 1), amount))
    return schedule


def next_plan_number():
    last = (
        InstallmentPlan.objects.annotate(number_length=Length("plan_number"))
        .order_by("-number_length", "-plan_number")
        .values_list("plan_number", flat=True)
        .first()
    )
    sequence = int(last[len(PLAN_NUMBER_PREFIX):]) + 1 if last else 1
    return f"{PLAN_NUMBER_PREFIX}{sequence:04d}"


def _get_financial_profile(customer):
    try:
        return customer.financial_profile
    except CustomerFinancialProfile.DoesNotExist:
        return None


def _validate_plan_terms(
    *,
    customer,
    sale,
    total_amount,
    down_payment,
    financed_amount,
    number_of_installments,
    frequency,
    start_date,
    first_payment_date,
    interest_rate,
    late_fee_percentage,
    late_fee_fixed,
):
    errors = {}

    profile = _get_financial_profile(customer)
    if profile is None:
        errors["customer"] = "The customer needs a financial profile before an installment plan can be created."
    elif settings.INSTALLMENT_REQUIRE_VERIFIED_PROFILE and not profile.is_verified:
        errors["customer"] = "The customer's financial profile must be verified first."

    if sale is not None:
        if sale.status != SaleStatus.CONFIRMED:
            errors["sale"] = "Only confirmed sales can be financed."
        elif sale.customer_id and sale.customer_id != customer.id:
            errors["sale"] = "The sale belongs to a different customer."

    if total_amount is None or total_amount <= 0:
        errors["total_amount"] = "total_amount must be greater than zero."
    if down_payment < 0:
        errors["down_payment"] = "down_payment cannot be negative."
    elif total_amount is not None and total_amount > 0 and down_payment >= total_amount:
        errors["down_payment"] = "down_payment must be lower than total_amount."
    if number_of_installments is None or number_of_installments < 1:
        errors["number_of_installments"] = "number_of_installments must be at least 1."
    if frequency not in InstallmentFrequency.values:
        errors["frequency"] = "Unsupported frequency."
    if first_payment_date < start_date:
        errors["first_payment_date"] = "first_payment_date cannot be before start_date."

    for field, value in (
        ("interest_rate", interest_rate),
        ("late_fee_percentage", late_fee_percentage),
        ("late_fee_fixed", late_fee_fixed),
    ):
        if value < 0:
            errors[field] = f"{field} cannot be negative."

    if financed_amount is not None and not errors.get("total_amount") and not errors.get("down_payment"):
        if to_money(financed_amount) != to_money(total_amount - down_payment):
            errors["financed_amount"] = "financed_amount must equal total_amount minus down_payment."

    if not any(errors.get(field) for field in ("total_amount", "down_payment", "number_of_installments")):
        if floor_to_cents((total_amount - down_payment) / number_of_installments) == ZERO:
            errors["number_of_installments"] = (
                "Too many installments for the financed amount; each installment must be at least 0.01."
            )

    if errors:
        raise ValidationError(errors)


def create_plan(
    *,
    actor,
    customer,
    number_of_installments,
    frequency=InstallmentFrequency.MONTHLY,
    total_amount=None,
    down_payment=ZERO,
    financed_amount=None,
    sale=None,
    start_date=None,
    first_payment_date=None,
    interest_rate=ZERO,
    late_fee_percentage=ZERO,
    late_fee_fixed=ZERO,
    product_description="",
    notes="",
    terms_and_conditions=None,
    today=None,
):
    if total_amount is None and sale is not None:
        total_amount = sale.total
    total_amount = to_money(total_amount) if total_amount is not None else None
    down_payment = to_money(down_payment or ZERO)
    start_date = start_date or today or timezone.localdate()
    first_payment_date = first_payment_date or add_periods(start_date, frequency, 1)

    _validate_plan_terms(
        customer=customer,
        sale=sale,
        total_amount=total_amount,
        down_payment=down_payment,
        financed_amount=financed_amount,
        number_of_installments=number_of_installments,
        frequency=frequency,
        start_date=start_date,
        first_payment_date=first_payment_date,
        interest_rate=to_money(interest_rate),
        late_fee_percentage=to_money(late_fee_percentage),
        late_fee_fixed=to_money(late_fee_fixed),
    )

    financed = total_amount - down_payment
    schedule = build_schedule(financed, number_of_installments, frequency, first_payment_date)
    plan_number = next_plan_number()

    try:
        with transaction.atomic():
            plan = InstallmentPlan.objects.create(
                plan_number=plan_number,
                customer=customer,
                sale=sale,
                created_by=actor,
                product_description=product_description,
                total_amount=total_amount,
                down_payment=down_payment,
                financed_amount=financed,
                number_of_installments=number_of_installments,
                installment_amount=schedule[0][2],
                frequency=frequency,
                interest_rate=to_money(interest_rate),
                late_fee_percentage=to_money(late_fee_percentage),
                late_fee_fixed=to_money(late_fee_fixed),
                start_date=start_date,
                first_payment_date=first_payment_date,
                end_date=schedule[-1][1],
                total_outstanding=financed,
                notes=notes,
                terms_and_conditions=terms_and_conditions or {},
            )
            InstallmentPayment.objects.bulk_create(
                [
                    InstallmentPayment(
                        plan=plan,
                        payment_number=f"{plan.plan_number}-{number:02d}",
                        installment_number=number,
                        due_date=due_date,
                        amount_due=amount,
                    )
                    for number, due_date, amount in schedule
                ]
            )
            enqueue(
                event_type=NotificationEvent.INSTALLMENT_PLAN_CREATED,
                recipient_type=RecipientType.CUSTOMER,
                recipient=customer.phone,
                channel=NotificationChannel.SMS,
                payload={
                    "plan_number": plan.plan_number,
                    "customer_name": customer.name,
                    "financed_amount": str(financed),
                    "number_of_installments": number_of_installments,
                    "first_payment_date": first_payment_date.isoformat(),
                    "installment_amount": str(plan.installment_amount),
                },
                reference_type="installment_plan",
                reference_id=plan.id,
                dedupe_key=f"plan:{plan.id}:created:customer",
            )
            record_audit(
                actor=actor,
                action="installment_plan.create",
                entity_type="installment_plan",
                entity_id=plan.id,
                payload={
                    "plan_number": plan.plan_number,
                    "customer_id": str(customer.id),
                    "sale_id": str(sale.id) if sale else None,
                    "financed_amount": str(financed),
                    "installments": number_of_installments,
                    "frequency": frequency,
                },
            )
    except IntegrityError as exc:
        if not InstallmentPlan.objects.filter(plan_number=plan_number).exists():
            raise
        logger.warning("Plan number %s collision while creating a plan for customer %s: %s", plan_number, customer.id, exc)
        raise ConcurrencyConflict("Another plan was created at the same time. Retry the operation.")

    logger.info("Created installment plan %s for customer %s", plan.plan_number, customer.id)
    return plan


def refresh_plan_totals(plan):
    """Recompute the plan aggregates from its payment rows. Returns changed field names."""
    totals = plan.payments.aggregate(
        total_paid=Sum("amount_paid"),
        completed=Count("id", filter=Q(status=InstallmentPaymentStatus.PAID)),
        missed=Count(
            "id",
            filter=Q(status__in=[InstallmentPaymentStatus.LATE, InstallmentPaymentStatus.DEFAULTED]),
        ),
    )
    total_paid = to_money(totals["total_paid"] or ZERO)
    values = {
        "total_paid": total_paid,
        "total_outstanding": to_money(plan.financed_amount - total_paid),
        "payments_completed": totals["completed"],
        "payments_missed": totals["missed"],
    }
    changed = []
    for field, value in values.items():
        if getattr(plan, field) != value:
            setattr(plan, field, value)
            changed.append(field)
    return changed


def compute_late_fee(plan, payment):
    percentage_fee = plan.late_fee_percentage / Decimal("100") * payment.amount_due
    return to_money(plan.late_fee_fixed + percentage_fee)


def mark_overdue(plan, payment, today):
    """Bring an unpaid installment's overdue state up to ``today``. Returns changed field names."""
    if not payment.is_unpaid or today <= payment.due_date:
        return []

    changed = []
    if payment.status == InstallmentPaymentStatus.PENDING:
        payment.transition_to(InstallmentPaymentStatus.LATE)
        changed.append("status")
    if payment.overdue_since != payment.due_date:
        payment.overdue_since = payment.due_date
        changed.append("overdue_since")
    days_overdue = (today - payment.due_date).days
    if payment.days_overdue != days_overdue:
        payment.days_overdue = days_overdue
        changed.append("days_overdue")
    if payment.late_fee == ZERO:
        late_fee = compute_late_fee(plan, payment)
        if late_fee != ZERO:
            payment.late_fee = late_fee
            changed.append("late_fee")
    return changed


def _lock_plan_and_payment(payment_id):
    plan_id = InstallmentPayment.objects.filter(pk=payment_id).values_list("plan_id", flat=True).first()
    if plan_id is None:
        raise NotFoundError("Installment not found.")
    try:
        plan = InstallmentPlan.objects.select_for_update().select_related("customer").get(pk=plan_id)
        payment = InstallmentPayment.objects.select_for_update().get(pk=payment_id)
    except OperationalError as exc:
        logger.warning("Could not lock installment %s: %s", payment_id, exc)
        raise ConcurrencyConflict()
    return plan, payment


def apply_payment(*, payment_id, amount, payment_method, actor, reference="", notes="", now=None):
    """Apply money received against one installment.

    The whole amount is added to ``amount_paid`` and the installment is PAID
    once ``amount_paid`` reaches ``amount_due``. Money above ``amount_due`` is
    credited to the late fee first, and any remainder stays in ``amount_paid``.
    """
    now = now or timezone.now()
    today = timezone.localdate(now)
    amount = to_money(amount)
    reference = (reference or "").strip()

    errors = {}
    if amount <= 0:
        errors["amount"] = "amount must be greater than zero."
    if payment_method not in InstallmentPaymentMethod.values:
        errors["payment_method"] = "Unsupported payment method."
    if errors:
        raise ValidationError(errors)

    with transaction.atomic():
        plan, payment = _lock_plan_and_payment(payment_id)

        if plan.status != InstallmentPlanStatus.ACTIVE:
            raise InvalidStateError(f"Plan {plan.plan_number} is {plan.status}; payments are not accepted.")
        if not payment.is_unpaid:
            raise InvalidStateError(f"Installment {payment.payment_number} is {payment.status}.")
        if reference and InstallmentReceipt.objects.filter(reference=reference).exists():
            raise ValidationError({"reference": "A payment with this reference was already recorded."})

        mark_overdue(plan, payment, today)

        previous_late_fee_paid = payment.late_fee_paid
        payment.amount_paid = to_money(payment.amount_paid + amount)
        excess = max(payment.amount_paid - payment.amount_due, ZERO)
        payment.late_fee_paid = min(payment.late_fee, excess)
        payment.total_amount_paid = to_money(payment.amount_paid + payment.late_fee)
        late_fee_part = payment.late_fee_paid - previous_late_fee_paid
        principal_part = amount - late_fee_part
        payment.payment_method = payment_method
        payment.payment_reference = reference
        payment.received_by = actor
        if notes:
            payment.notes = notes

        if payment.amount_paid >= payment.amount_due:
            payment.transition_to(InstallmentPaymentStatus.PAID)
            payment.payment_date = now
            payment.days_overdue = 0
        payment.save()

        try:
            with transaction.atomic():
                receipt = InstallmentReceipt.objects.create(
                    payment=payment,
                    amount=amount,
                    principal_amount=principal_part,
                    late_fee_amount=late_fee_part,
                    payment_method=payment_method,
                    reference=reference,
                    received_by=actor,
                )
        except IntegrityError:
            raise ValidationError({"reference": "A payment with this reference was already recorded."})

        changed = refresh_plan_totals(plan)
        completed = plan.payments_completed == plan.number_of_installments
        if completed:
            plan.transition_to(InstallmentPlanStatus.COMPLETED)
            plan.completed_at = now
            changed += ["status", "completed_at"]
        if changed:
            plan.save(update_fields=changed + ["updated_at"])

        enqueue(
            event_type=NotificationEvent.INSTALLMENT_PAYMENT_RECEIVED,
            recipient_type=RecipientType.CUSTOMER,
            recipient=plan.customer.phone,
            channel=NotificationChannel.SMS,
            payload={
                "plan_number": plan.plan_number,
                "payment_number": payment.payment_number,
                "amount": str(amount),
                "status": payment.status,
                "total_outstanding": str(plan.total_outstanding),
            },
            reference_type="installment_payment",
            reference_id=payment.id,
            dedupe_key=f"receipt:{receipt.id}:received:customer",
        )
        if completed:
            enqueue(
                event_type=NotificationEvent.INSTALLMENT_PLAN_COMPLETED,
                recipient_type=RecipientType.CUSTOMER,
                recipient=plan.customer.phone,
                channel=NotificationChannel.SMS,
                payload={"plan_number": plan.plan_number, "total_paid": str(plan.total_paid)},
                reference_type="installment_plan",
                reference_id=plan.id,
                dedupe_key=f"plan:{plan.id}:completed:customer",
            )

        record_audit(
            actor=actor,
            action="installment_payment.apply",
            entity_type="installment_payment",
            entity_id=payment.id,
            payload={
                "plan_number": plan.plan_number,
                "amount": str(amount),
                "principal": str(principal_part),
                "late_fee": str(late_fee_part),
                "method": payment_method,
                "reference": reference,
                "status": payment.status,
                "plan_status": plan.status,
            },
        )

    logger.info("Applied %s to %s (%s)", amount, payment.payment_number, payment.status)
    return payment


def cancel_plan(*, plan_id, reason, actor, now=None):
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError({"reason": "A cancellation reason is required."})

    now = now or timezone.now()
    with transaction.atomic():
        try:
            plan = InstallmentPlan.objects.select_for_update().filter(pk=plan_id).first()
        except OperationalError as exc:
            logger.warning("Could not lock plan %s: %s", plan_id, exc)
            raise ConcurrencyConflict()
        if plan is None:
            raise NotFoundError("Installment plan not found.")
        if plan.status != InstallmentPlanStatus.ACTIVE:
            raise InvalidStateError(f"Plan {plan.plan_number} is {plan.status} and cannot be cancelled.")

        plan.transition_to(InstallmentPlanStatus.CANCELLED)
        plan.cancelled_at = now
        plan.cancellation_reason = reason
        plan.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])
        record_audit(
            actor=actor,
            action="installment_plan.cancel",
            entity_type="installment_plan",
            entity_id=plan.id,
            payload={"plan_number": plan.plan_number, "reason": reason},
        )

    logger.info("Cancelled installment plan %s", plan.plan_number)
    return plan


class _SweepContext:
    def __init__(self, today, now):
        self.today = today
        self.now = now
        self.reminder_days = settings.INSTALLMENT_REMINDER_DAYS
        self.escalation_days = settings.INSTALLMENT_ESCALATION_DAYS
        self.grace_days = settings.INSTALLMENT_DEFAULT_GRACE_DAYS
        self.max_missed = settings.INSTALLMENT_DEFAULT_MAX_MISSED
        self.owners = list(User.owner_recipients())


SWEEP_COUNTERS = (
    "plans_checked",
    "payments_marked_late",
    "reminders_queued",
    "late_notices_queued",
    "owner_alerts_queued",
    "bank_notices_queued",
    "employer_notices_queued",
    "plans_defaulted",
)


def _notify_once(payment, flag, context, **notification):
    setattr(payment, flag, True)
    setattr(payment, f"{flag}_at", context.now)
    enqueue(**notification)
    return [flag, f"{flag}_at"]


def _payment_payload(plan, payment):
    return {
        "plan_number": plan.plan_number,
        "payment_number": payment.payment_number,
        "customer_name": plan.customer.name,
        "customer_phone": plan.customer.phone,
        "due_date": payment.due_date.isoformat(),
        "amount_due": str(payment.amount_due),
        "late_fee": str(payment.late_fee),
        "days_overdue": payment.days_overdue,
    }


def _sweep_payment(plan, payment, profile, context, counts):
    changed = mark_overdue(plan, payment, context.today)
    if "status" in changed:
        counts["payments_marked_late"] += 1

    payload = _payment_payload(plan, payment)
    reference = {"reference_type": "installment_payment", "reference_id": payment.id}

    if payment.status == InstallmentPaymentStatus.PENDING and not payment.reminder_sent:
        days_until_due = (payment.due_date - context.today).days
        if 0 <= days_until_due <= context.reminder_days:
            changed += _notify_once(
                payment,
                "reminder_sent",
                context,
                event_type=NotificationEvent.INSTALLMENT_PAYMENT_DUE,
                recipient_type=RecipientType.CUSTOMER,
                recipient=plan.customer.phone,
                channel=NotificationChannel.SMS,
                payload=payload,
                dedupe_key=f"installment:{payment.id}:due:customer",
                **reference,
            )
            counts["reminders_queued"] += 1

    if payment.status != InstallmentPaymentStatus.LATE:
        return changed

    if not payment.late_notification_sent:
        changed += _notify_once(
            payment,
            "late_notification_sent",
            context,
            event_type=NotificationEvent.INSTALLMENT_PAYMENT_LATE,
            recipient_type=RecipientType.CUSTOMER,
            recipient=plan.customer.phone,
            channel=NotificationChannel.SMS,
            payload=payload,
            dedupe_key=f"installment:{payment.id}:late:customer",
            **reference,
        )
        counts["late_notices_queued"] += 1

    if not payment.owner_notified:
        if context.owners:
            payment.owner_notified = True
            payment.owner_notified_at = context.now
            changed += ["owner_notified", "owner_notified_at"]
            for owner in context.owners:
                enqueue(
                    event_type=NotificationEvent.INSTALLMENT_PAYMENT_LATE,
                    recipient_type=RecipientType.OWNER,
                    recipient=owner.email,
                    channel=NotificationChannel.EMAIL,
                    payload=payload,
                    dedupe_key=f"installment:{payment.id}:late:owner:{owner.pk}",
                    **reference,
                )
                counts["owner_alerts_queued"] += 1
        else:
            logger.warning("No owner recipients configured; %s owner alert deferred", payment.payment_number)

    if payment.days_overdue >= context.escalation_days and not (payment.bank_notified and payment.employer_notified):
        if profile is None:
            logger.warning(
                "Customer %s has no financial profile; cannot escalate %s",
                plan.customer_id,
                payment.payment_number,
            )
            return changed
        escalation = {
            **payload,
            "national_id": profile.national_id,
            "bank_name": profile.bank_name,
            "bank_branch": profile.bank_branch,
            "account_number": profile.account_number,
            "company_name": profile.company_name,
            "company_phone": profile.company_phone,
            "supervisor_name": profile.supervisor_name,
            "supervisor_phone": profile.supervisor_phone,
        }
        if not payment.bank_notified:
            changed += _notify_once(
                payment,
                "bank_notified",
                context,
                event_type=NotificationEvent.INSTALLMENT_DEFAULTED,
                recipient_type=RecipientType.BANK,
                recipient=profile.bank_name,
                channel=NotificationChannel.EMAIL,
                payload=escalation,
                dedupe_key=f"installment:{payment.id}:escalation:bank",
                **reference,
            )
            counts["bank_notices_queued"] += 1
        if not payment.employer_notified:
            changed += _notify_once(
                payment,
                "employer_notified",
                context,
                event_type=NotificationEvent.INSTALLMENT_DEFAULTED,
                recipient_type=RecipientType.EMPLOYER,
                recipient=profile.company_email or profile.company_name,
                channel=NotificationChannel.EMAIL,
                payload=escalation,
                dedupe_key=f"installment:{payment.id}:escalation:employer",
                **reference,
            )
            counts["employer_notices_queued"] += 1
    return changed


def _should_default(payments, context):
    late = [payment for payment in payments if payment.status == InstallmentPaymentStatus.LATE]
    if len(late) >= context.max_missed:
        return True
    return any(payment.days_overdue >= context.grace_days for payment in late)


def _sweep_plan(plan, context, counts):
    profile = _get_financial_profile(plan.customer)
    payments = list(
        plan.payments.select_for_update().filter(status__in=UNPAID_STATUSES).order_by("installment_number")
    )

    dirty = {}
    for payment in payments:
        changed = _sweep_payment(plan, payment, profile, context, counts)
        if changed:
            dirty[payment.pk] = (payment, changed)

    defaulted = _should_default(payments, context)
    if defaulted:
        for payment in payments:
            if payment.status == InstallmentPaymentStatus.LATE:
                payment.transition_to(InstallmentPaymentStatus.DEFAULTED)
                _, changed = dirty.setdefault(payment.pk, (payment, []))
                changed.append("status")

    for payment, changed in dirty.values():
        payment.save(update_fields=sorted(set(changed)) + ["updated_at"])

    plan_changed = refresh_plan_totals(plan)
    if defaulted:
        plan.transition_to(InstallmentPlanStatus.DEFAULTED)
        plan.defaulted_at = context.now
        plan_changed += ["status", "defaulted_at"]
        counts["plans_defaulted"] += 1
        recipients = [(RecipientType.CUSTOMER, plan.customer.phone, NotificationChannel.SMS, "customer")]
        recipients += [(RecipientType.OWNER, owner.email, NotificationChannel.EMAIL, f"owner:{owner.pk}") for owner in context.owners]
        for recipient_type, recipient, channel, key in recipients:
            enqueue(
                event_type=NotificationEvent.INSTALLMENT_DEFAULTED,
                recipient_type=recipient_type,
                recipient=recipient,
                channel=channel,
                payload={
                    "plan_number": plan.plan_number,
                    "customer_name": plan.customer.name,
                    "total_outstanding": str(plan.total_outstanding),
                    "payments_missed": plan.payments_missed,
                },
                reference_type="installment_plan",
                reference_id=plan.id,
                dedupe_key=f"plan:{plan.id}:defaulted:{key}",
            )
        record_audit(
            actor=None,
            action="installment_plan.default.auto",
            entity_type="installment_plan",
            entity_id=plan.id,
            payload={"plan_number": plan.plan_number, "payments_missed": plan.payments_missed},
        )
        logger.info("Installment plan %s defaulted", plan.plan_number)

    if plan_changed:
        plan.save(update_fields=plan_changed + ["updated_at"])


def run_overdue_sweep(today=None, now=None):
    """Mark overdue installments, queue reminders and escalations, and default plans.

    Each plan is processed in its own transaction; a database failure on one
    plan is logged and counted under ``errors`` without stopping the sweep.
    Re-running on unchanged data writes nothing.
    """
    now = now or timezone.now()
    today = today or timezone.localdate(now)
    context = _SweepContext(today, now)
    totals = dict.fromkeys(SWEEP_COUNTERS, 0)
    totals["errors"] = 0

    plan_ids = list(
        InstallmentPlan.objects.filter(status=InstallmentPlanStatus.ACTIVE).order_by("created_at").values_list("id", flat=True)
    )
    for plan_id in plan_ids:
        counts = dict.fromkeys(SWEEP_COUNTERS, 0)
        try:
            with transaction.atomic():
                plan = (
                    InstallmentPlan.objects.select_for_update()
                    .select_related("customer")
                    .filter(pk=plan_id, status=InstallmentPlanStatus.ACTIVE)
                    .first()
                )
                if plan is None:
                    continue
                _sweep_plan(plan, context, counts)
        except DatabaseError:
            logger.exception("Overdue sweep failed for installment plan %s", plan_id)
            totals["errors"] += 1
            continue
        counts["plans_checked"] = 1
        for key, value in counts.items():
            totals[key] += value

    logger.info("Overdue sweep for %s: %s", today.isoformat(), totals)
    return totals


def plan_stats(today=None):
    today = today or timezone.localdate()
    by_status = {
        row["status"]: row["count"] for row in InstallmentPlan.objects.values("status").annotate(count=Count("id"))
    }
    totals = InstallmentPlan.objects.aggregate(
        financed=Sum("financed_amount"),
        collected=Sum("total_paid"),
        outstanding=Sum("total_outstanding", filter=Q(status=InstallmentPlanStatus.ACTIVE)),
    )
    unpaid = InstallmentPayment.objects.filter(
        status__in=UNPAID_STATUSES,
        plan__status=InstallmentPlanStatus.ACTIVE,
    )
    return {
        "plans_by_status": {status: by_status.get(status, 0) for status in InstallmentPlanStatus.values},
        "total_plans": sum(by_status.values()),
        "total_financed": to_money(totals["financed"] or ZERO),
        "total_collected": to_money(totals["collected"] or ZERO),
        "total_outstanding": to_money(totals["outstanding"] or ZERO),
        "overdue_installments": unpaid.filter(due_date__lt=today).count(),
        "due_next_7_days": unpaid.filter(due_date__gte=today, due_date__lte=today + timedelta(days=7)).count(),
    }
