"""
Clock driver: ticks every isotope context on a fixed interval.

    python manage.py run_radiopharmacy_clock                 # ticks forever
    python manage.py run_radiopharmacy_clock --once f18 ga68
"""

import time

from django.core.management.base import BaseCommand, CommandError

from radiopharmacy.conf import get_setting
from radiopharmacy.context import get_facility
from radiopharmacy.exceptions import UnknownEntity


class Command(BaseCommand):
    help = "Recompute decay and patient workflow state and raise due alerts on a fixed interval."

    def add_arguments(self, parser):
        parser.add_argument(
            'isotopes',
            nargs='*',
            help="Isotope ids to tick (default: every known isotope)",
        )
        parser.add_argument(
            '--once',
            action='store_true',
            help="Run a single tick and exit",
        )
        parser.add_argument(
            '--interval',
            type=float,
            default=None,
            help="Seconds between ticks (default: TICK_SECONDS setting)",
        )

    def handle(self, *args, **options):
        facility = get_facility()
        isotope_ids = options['isotopes'] or sorted(facility.isotopes)
        interval = options['interval'] or get_setting('TICK_SECONDS')
        if interval <= 0:
            raise CommandError("Tick interval must be positive")

        try:
            for isotope_id in isotope_ids:
                facility.context(isotope_id)
        except UnknownEntity as e:
            raise CommandError(str(e)) from e

        self.stdout.write(f"Ticking {', '.join(isotope_ids)} every {interval:g}s")
        try:
            while True:
                self._tick(facility, isotope_ids)
                if options['once']:
                    break
                time.sleep(interval)
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING("Clock stopped"))

    def _tick(self, facility, isotope_ids):
        for result in facility.tick(isotope_ids):
            alerts = result['alerts']
            if alerts:
                kinds = ', '.join(f"{a['kind']}:{a['patient_name'] or result['isotope']}" for a in alerts)
                self.stdout.write(self.style.SUCCESS(f"[{result['isotope']}] {len(alerts)} alert(s): {kinds}"))
            if result['diagnostics']:
                self.stdout.write(self.style.WARNING(
                    f"[{result['isotope']}] {result['diagnostics']} record(s) skipped, see diagnostics"
                ))
