# loans/management/commands/recalculate_loans.py

"""
Periodic recalculation of open loans.

Brings mora, debt and status up to date for every loan that is not closed.
Meant to run once a day from cron or a scheduler.

USAGE EXAMPLES:
===============

# Recalculate all open loans as of today
python manage.py recalculate_loans

# Recalculate a single loan
python manage.py recalculate_loans --loan 3f1c2a9e-...

# Recalculate as of a given date
python manage.py recalculate_loans --as-of 2025-05-01

# Dry run (show what would change)
python manage.py recalculate_loans --dry-run
"""

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from datetime import date
import logging

from core.context import AuthContext
from loans.exceptions import LoanEngineError
from loans.models import Loan
from loans.services import LoanService

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Recalculate mora, debt and status of open loans'

    def add_arguments(self, parser):
        parser.add_argument(
            '--loan',
            type=str,
            help='ID of a single loan to recalculate'
        )
        parser.add_argument(
            '--as-of',
            type=str,
            help='Calculation date (YYYY-MM-DD), defaults to today'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would change without saving'
        )

    def handle(self, *args, **options):
        as_of = timezone.localdate()
        if options['as_of']:
            try:
                as_of = date.fromisoformat(options['as_of'])
            except ValueError:
                raise CommandError(f"Invalid --as-of date: {options['as_of']}")

        if options['loan']:
            try:
                loans = Loan.objects.filter(pk=options['loan'])
                found = loans.exists()
            except ValidationError:
                raise CommandError(f"Invalid loan ID: {options['loan']}")
            if not found:
                raise CommandError(f"Loan '{options['loan']}' not found")
        else:
            loans = Loan.get_open_loans()

        dry_run = options['dry_run']
        context = AuthContext.system()

        self.stdout.write(self.style.SUCCESS('=' * 60))
        self.stdout.write(self.style.SUCCESS(f'LOAN RECALCULATION AS OF {as_of}'))
        self.stdout.write(self.style.SUCCESS('=' * 60))

        if dry_run:
            self.stdout.write(self.style.WARNING('DRY RUN MODE - No changes will be saved'))

        stats = {'processed': 0, 'changed': 0, 'failed': 0}

        for loan in loans.order_by('due_date'):
            stats['processed'] += 1
            preview = LoanService.preview_recalculation(loan, as_of)
            changed = (
                preview['debt'] != loan.debt
                or preview['mora_accrued'] != loan.mora_accrued
                or preview['status'] != loan.status
            )

            if changed:
                stats['changed'] += 1
                self.stdout.write(
                    f"  {loan.pk}: debt {loan.debt} -> {preview['debt']}, "
                    f"mora {loan.mora_accrued} -> {preview['mora_accrued']}, "
                    f"status {loan.status} -> {preview['status']}"
                )

            if dry_run:
                continue

            try:
                LoanService.recalculate(loan.pk, as_of=as_of, context=context)
            except LoanEngineError as e:
                stats['failed'] += 1
                self.stderr.write(self.style.ERROR(f"  Error recalculating {loan.pk}: {e}"))
                logger.error(f"Error recalculating loan {loan.pk}: {e}")

        self.stdout.write(f"\nProcessed: {stats['processed']}")
        self.stdout.write(f"Changed: {stats['changed']}")

        if stats['failed']:
            self.stdout.write(self.style.ERROR(f"Failed: {stats['failed']}"))
            raise CommandError(f"Recalculation failed for {stats['failed']} loan(s)")

        self.stdout.write(self.style.SUCCESS('Recalculation completed'))
        logger.info(f"Recalculated {stats['processed']} loans as of {as_of} ({stats['changed']} changed)")
