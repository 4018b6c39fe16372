"""
Generator Tracker

Holds at most one active parent-isotope generator (e.g. Mo-99 -> Tc-99m)
for an isotope context. Two states:

- absent: no generator recorded
- active: one generator recorded, extractions feed vials into the ledger

The factory calibration is usually unknown at the bench, so the parent
activity is back-solved from the first extraction:

    estimated_parent = extracted / (first_extraction_yield * efficiency)

first_extraction_yield (0.87 by default) is an empirical figure for
Mo-99/Tc-99m generators and should be reviewed for any other pairing.
"""

import logging
import math

from . import decay
from .conf import get_setting
from .diagnostics import Diagnostics
from .exceptions import InvalidRequest, UnknownEntity
from .records import LOAD_ERRORS, Generator, new_id, record_id

logger = logging.getLogger(__name__)

STATE_ABSENT = 'absent'
STATE_ACTIVE = 'active'


class GeneratorTracker:

    def __init__(self, isotope, ledger, first_extraction_yield=None, diagnostics=None):
        self.isotope = isotope
        self.ledger = ledger
        self.first_extraction_yield = (first_extraction_yield if first_extraction_yield is not None
                                       else get_setting('FIRST_EXTRACTION_YIELD'))
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.generator = None

    @property
    def state(self):
        return STATE_ACTIVE if self.generator is not None else STATE_ABSENT

    def _require_generator(self):
        if self.generator is None:
            raise UnknownEntity(f"No active generator for {self.isotope.id}")
        return self.generator

    def add_generator(self, extracted_activity, volume_ml, efficiency, now):
        """
        Activate a generator from its first extraction

        Args:
            extracted_activity: daughter activity measured in the first eluate
            volume_ml: eluate volume
            efficiency: assumed extraction efficiency as a fraction (0-1]
            now: timestamp of the extraction, becomes the generator's receipt time

        Returns:
            tuple: (Generator, Vial for the first eluate)
        """
        if not self.isotope.has_generator:
            raise InvalidRequest(f"{self.isotope.name} is not generator-produced")
        for label, value in (('Extracted activity', extracted_activity), ('Eluate volume', volume_ml)):
            if value is None or not math.isfinite(value) or value <= 0:
                raise InvalidRequest(f"{label} must be positive")
        if efficiency is None or not (0 < efficiency <= 1):
            raise InvalidRequest("Extraction efficiency must be a fraction in (0, 1]")

        estimated_parent = extracted_activity / (self.first_extraction_yield * efficiency)

        if self.generator is not None:
            logger.info(f"Replacing generator {self.generator.id} for {self.isotope.id}")

        self.generator = Generator(
            id=new_id('gen'),
            isotope_id=self.isotope.id,
            parent_initial_activity=estimated_parent,
            received_at=now,
            efficiency=float(efficiency),
        )
        logger.info(
            f"Generator {self.generator.id} active: estimated {self.isotope.parent.nuclide} "
            f"{estimated_parent:.2f} mCi from first extraction of {extracted_activity:.2f} mCi"
        )

        vial = self.record_extraction(extracted_activity, volume_ml, now)
        return self.generator, vial

    def record_extraction(self, amount, volume_ml, now):
        """Elute the generator into a new vial"""
        generator = self._require_generator()

        vial = self.ledger.add_vial(
            amount,
            volume_ml,
            now,
            label=f"Elution {now.strftime('%H:%M')}",
        )
        generator.last_extraction_at = now
        generator.extraction_count += 1
        return vial

    def remove_generator(self):
        generator = self._require_generator()
        self.generator = None
        logger.info(f"Removed generator {generator.id} for {self.isotope.id}")
        return generator

    def parent_activity(self, now):
        generator = self._require_generator()
        return decay.activity_at(
            generator.parent_initial_activity,
            self.isotope.parent.half_life_hours,
            decay.elapsed_hours(generator.received_at, now),
        )

    def hours_since_extraction(self, now):
        generator = self._require_generator()
        reference = generator.last_extraction_at or generator.received_at
        return decay.elapsed_hours(reference, now)

    def accumulated_available(self, now):
        """Daughter activity that could be eluted right now (0 with no generator)"""
        if self.generator is None:
            return 0.0
        return decay.generator_accumulation(
            self.generator.parent_initial_activity,
            self.isotope.parent.half_life_hours,
            self.isotope.half_life_hours,
            decay.elapsed_hours(self.generator.received_at, now),
            self.hours_since_extraction(now),
            self.generator.efficiency,
        )

    def status(self, now):
        if self.generator is None:
            return {'state': STATE_ABSENT}

        generator = self.generator
        return {
            'state': STATE_ACTIVE,
            'id': generator.id,
            'parent_nuclide': self.isotope.parent.nuclide,
            'parent_initial_activity': generator.parent_initial_activity,
            'parent_current_activity': self.parent_activity(now),
            'received_at': generator.received_at.isoformat(),
            'efficiency': generator.efficiency,
            'last_extraction_at': (generator.last_extraction_at.isoformat()
                                   if generator.last_extraction_at else None),
            'extraction_count': generator.extraction_count,
            'hours_since_extraction': self.hours_since_extraction(now),
            'accumulated_available': self.accumulated_available(now),
        }

    def dump(self):
        return self.generator.to_dict() if self.generator else None

    def restore(self, data):
        self.generator = None
        if not data:
            return
        try:
            self.generator = Generator.from_dict(data)
        except LOAD_ERRORS as e:
            self.diagnostics.report('generator', record_id(data), e)
