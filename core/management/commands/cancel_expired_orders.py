# Cancel Expired Orders Management Command
from django.core.management.base import BaseCommand, CommandError

from core.expiration import ExpirationSweeper


class Command(BaseCommand):
    help = 'Cancels unpaid orders past their payment deadline and releases their bicycles.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List expired orders without cancelling them.',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=None,
            help='Number of orders processed per batch (defaults to SWEEPER_BATCH_SIZE).',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        batch_size = options['batch_size']

        if batch_size is not None and batch_size < 1:
            raise CommandError('--batch-size must be a positive integer.')

        sweeper = ExpirationSweeper()

        if dry_run:
            for order in sweeper.find_expired_orders().select_related('bicycle'):
                self.stdout.write(
                    f'  [DRY-RUN] Order {order.order_number} (ID: {order.id}): '
                    f'bicycle {order.bicycle_id} ({order.bicycle.status}), expired at {order.expires_at}'
                )

        count = sweeper.cancel_expired_orders(batch_size=batch_size, dry_run=dry_run)

        if dry_run:
            self.stdout.write(self.style.SUCCESS(f'Dry run completed. {count} expired orders found. No changes saved.'))
        else:
            self.stdout.write(self.style.SUCCESS(f'Cancelled {count} expired orders.'))
