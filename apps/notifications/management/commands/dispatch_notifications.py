from django.core.management.base import BaseCommand

from apps.notifications.services import dispatch_pending


class Command(BaseCommand):
    help = "Delivers pending outbox notifications through the configured dispatcher."

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=None, help="Maximum number of notifications to process.")

    def handle(self, *args, **options):
        result = dispatch_pending(limit=options["limit"])
        self.stdout.write(
            self.style.SUCCESS(
                f"Notifications sent={result['sent']} retried={result['retried']} failed={result['failed']}"
            )
        )
