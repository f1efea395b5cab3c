import time

from django.core.management.base import BaseCommand

from apps.payments.reconciliation import pending_callbacks, process_callback


class Command(BaseCommand):
    help = "Reconcile stored M-Pesa callbacks that are still received or failed."

    def add_arguments(self, parser):
        parser.add_argument("--batch-size", type=int, default=100)
        parser.add_argument("--loop", action="store_true", help="Keep polling instead of exiting when drained.")
        parser.add_argument("--interval", type=float, default=5.0, help="Seconds between polls with --loop.")

    def handle(self, *args, batch_size, loop, interval, **options):
        while True:
            ids = pending_callbacks(limit=batch_size)
            counts = {}
            for callback_id in ids:
                state = process_callback(callback_id)
                counts[state] = counts.get(state, 0) + 1
            if ids:
                summary = ", ".join(f"{state}={n}" for state, n in sorted(counts.items(), key=lambda kv: str(kv[0])))
                self.stdout.write(f"processed {len(ids)} callback(s): {summary}")
            if not loop:
                if not ids:
                    self.stdout.write("no pending callbacks")
                return
            if len(ids) < batch_size:
                time.sleep(interval)
