"""
Facility configuration for the radiopharmacy app.

Values come from the RADIOPHARMACY dict in Django settings; anything not
set there falls back to the reference values below.
"""

from django.conf import settings


DEFAULTS = {
    # Injection rooms, fixed at startup
    'ROOMS': ['B1', 'B2', 'B3', 'B4', 'B5', 'A1', 'A2'],

    # Waste tiers by current activity (mCi), checked top-down
    'WASTE_TIERS': [
        ('hot', 100.0),
        ('warm', 10.0),
        ('cold', 0.1),
    ],

    # Activity below which waste may go to normal disposal (mCi)
    'CLEARANCE_THRESHOLD': 0.001,

    # Empirical fraction of equilibrium parent activity recovered in a
    # first extraction. Only validated for Mo-99/Tc-99m.
    'FIRST_EXTRACTION_YIELD': 0.87,

    # Uptake thresholds in minutes: bathroom, ready, delayed, critical
    'UPTAKE_THRESHOLDS': {
        'long': (45, 60, 75, 90),
        'short': (30, 45, 60, 75),
    },

    'ADDITIONAL_IMAGING_MINUTES': (60, 90, 120),

    # Stock (mCi) at or below which a lowStock alert is raised
    'LOW_STOCK_THRESHOLD': 5.0,

    # Clock driver interval (seconds)
    'TICK_SECONDS': 30,

    # Extra isotopes: {id: {'nuclide': 'Cu-64', 'name': ..., 'parent': ..., 'uptake_class': ...}}
    'EXTRA_ISOTOPES': {},

    # Collaborators used by get_facility(), as dotted paths
    'STORE_CLASS': 'radiopharmacy.storage.DatabaseStore',
    'NOTIFIER_CLASS': 'radiopharmacy.notifications.DatabaseNotifier',
    'AUDIT_CLASS': 'radiopharmacy.audit.DatabaseAuditTrail',
    'CLOCK_CLASS': 'radiopharmacy.clock.SystemClock',
}


def get_setting(name):
    """Return a RADIOPHARMACY setting, falling back to DEFAULTS"""
    overrides = getattr(settings, 'RADIOPHARMACY', {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
