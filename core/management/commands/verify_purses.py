# Verify Purses Management Command
from django.core.management.base import BaseCommand
from django.db import transaction

from core.ledger import purse_drift, repair_purse
from core.models import Purse


class Command(BaseCommand):
    help = 'Checks that every purse balance equals the sum of its ledger lines.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix',
            action='store_true',
            help='Reset drifted purses to their ledger totals.',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report what --fix would change without saving.',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=1000,
            help='Chunk size used when iterating purses.',
        )

    def handle(self, *args, **options):
        fix = options['fix']
        dry_run = options['dry_run']
        batch_size = options['batch_size']

        self.stdout.write('Verifying purse balances...')
        checked = 0
        drifted = 0

        for purse in Purse.objects.select_related('user').iterator(chunk_size=batch_size):
            checked += 1
            drift = purse_drift(purse)
            if not drift:
                continue

            drifted += 1
            for field, (expected, stored) in drift.items():
                self.stdout.write(self.style.WARNING(
                    f'  {purse}: {field} is {stored:.2f}, ledger says {expected:.2f}'
                ))

            if fix and not dry_run:
                with transaction.atomic():
                    locked = Purse.objects.select_for_update().get(pk=purse.pk)
                    repair_purse(locked)
                self.stdout.write(f'  [FIXED] {purse}')
            elif fix:
                self.stdout.write(f'  [DRY-RUN] {purse} would be reset to its ledger totals')

        self.stdout.write(f'Checked {checked} purses, {drifted} drifted.')

        if drifted and not fix:
            self.stdout.write(self.style.ERROR('Purse drift found. Re-run with --fix to repair.'))
        elif dry_run:
            self.stdout.write(self.style.SUCCESS('Dry run completed. No changes saved.'))
        else:
            self.stdout.write(self.style.SUCCESS('Purse verification completed successfully.'))
