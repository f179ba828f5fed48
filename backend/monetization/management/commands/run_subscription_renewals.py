"""Management command to run the subscription renewal batch outside of Celery beat."""
from __future__ import annotations

from typing import Optional

from django.core.management.base import BaseCommand, CommandError

from monetization.services.subscriptions import due_subscription_ids, process_renewals


class Command(BaseCommand):
    help = "Charge due subscriptions through the same pipeline the scheduled renewal task uses."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of subscriptions to renew in this run.",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            default=None,
            help="Override SUBSCRIPTION_RENEWAL_BATCH_SIZE for this run.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List subscriptions that are due without charging them.",
        )

    def handle(self, *args, **options) -> None:
        limit: Optional[int] = options.get("limit")
        batch_size: Optional[int] = options.get("batch_size")
        dry_run: bool = options.get("dry_run")

        if dry_run:
            due = due_subscription_ids(limit=limit)
            if not due:
                self.stdout.write(self.style.WARNING("No subscriptions are due for renewal."))
                return
            for subscription_id in due:
                self.stdout.write(f"Due for renewal: {subscription_id}")
            self.stdout.write(self.style.WARNING(f"Dry run complete. {len(due)} subscriptions would be renewed."))
            return

        summary = process_renewals(batch_size=batch_size, limit=limit)
        for failure in summary.errors:
            self.stdout.write(f"Renewal failed for {failure.subscription_id}: {failure.error}")

        message = (
            f"Renewal complete: {summary.succeeded} renewed, {summary.failed} failed, "
            f"{summary.cancelled} auto-cancelled, {summary.skipped} already renewed, {summary.processed} total."
        )
        if summary.failed and not summary.succeeded:
            raise CommandError(message)
        self.stdout.write(self.style.SUCCESS(message))
