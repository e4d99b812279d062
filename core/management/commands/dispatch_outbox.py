# Dispatch Outbox Management Command
from django.core.management.base import BaseCommand, CommandError

from core.notifications import dispatch_outbox


class Command(BaseCommand):
    help = 'Delivers pending notification outbox events.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--batch-size',
            type=int,
            default=100,
            help='Maximum number of events to deliver in this run.',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Count pending events without delivering them.',
        )

    def handle(self, *args, **options):
        batch_size = options['batch_size']
        dry_run = options['dry_run']

        if batch_size < 1:
            raise CommandError('--batch-size must be at least 1.')

        summary = dispatch_outbox(batch_size=batch_size, dry_run=dry_run)

        if dry_run:
            self.stdout.write(self.style.SUCCESS(
                f"Dry run completed. {summary['pending']} event(s) pending."
            ))
            return

        self.stdout.write(f"Sent: {summary['sent']}, Failed: {summary['failed']}")
        if summary['failed']:
            self.stdout.write(self.style.WARNING(
                f"{summary['failed']} event(s) failed and will be retried."
            ))
        else:
            self.stdout.write(self.style.SUCCESS('Outbox dispatch completed successfully.'))
