"""
Clock collaborators. The core reads "now" only through one of these.
"""

from datetime import timedelta

from django.utils import timezone


class SystemClock:

    def now(self):
        return timezone.now()


class FixedClock:
    """Manually advanced clock for tests and replays"""

    def __init__(self, start=None):
        self.current = start or timezone.now()

    def now(self):
        return self.current

    def advance(self, **kwargs):
        """advance(minutes=61), advance(hours=6), ..."""
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, when):
        self.current = when
        return self.current
