from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.installments.services import run_overdue_sweep


class Command(BaseCommand):
    help = "Marks overdue installments, queues reminders and escalations, and defaults delinquent plans."

    def add_arguments(self, parser):
        parser.add_argument("--date", help="Evaluate as of this date (YYYY-MM-DD). Defaults to today.")

    def handle(self, *args, **options):
        today = None
        if options["date"]:
            try:
                today = date.fromisoformat(options["date"])
            except ValueError:
                raise CommandError(f"Invalid --date value: {options['date']}")

        result = run_overdue_sweep(today=today)
        summary = ", ".join(f"{key}={value}" for key, value in result.items())
        style = self.style.WARNING if result["errors"] else self.style.SUCCESS
        self.stdout.write(style(f"Installment sweep: {summary}"))
