"""
Tests for the Mo-99/Tc-99m generator tracker
"""

from datetime import timedelta

from django.test import TestCase

from radiopharmacy.exceptions import InvalidRequest, UnknownEntity
from radiopharmacy.generator import STATE_ABSENT, STATE_ACTIVE, GeneratorTracker
from radiopharmacy.inventory import InventoryLedger
from radiopharmacy.isotopes import get_isotope
from tests.fixtures.reference_data import GENERATOR, HALF_LIVES, T0


class GeneratorTrackerTests(TestCase):

    def setUp(self):
        self.isotope = get_isotope('tc99m')
        self.ledger = InventoryLedger(self.isotope)
        self.tracker = GeneratorTracker(self.isotope, self.ledger,
                                        first_extraction_yield=GENERATOR['first_extraction_yield'])

    def _activate(self):
        return self.tracker.add_generator(
            GENERATOR['first_extraction_activity'],
            GENERATOR['first_extraction_volume_ml'],
            GENERATOR['efficiency'],
            T0,
        )

    def test_starts_absent(self):
        self.assertEqual(self.tracker.state, STATE_ABSENT)
        self.assertEqual(self.tracker.accumulated_available(T0), 0.0)
        self.assertEqual(self.tracker.status(T0), {'state': STATE_ABSENT})

    def test_first_extraction_back_solves_parent(self):
        generator, vial = self._activate()

        self.assertEqual(self.tracker.state, STATE_ACTIVE)
        self.assertAlmostEqual(generator.parent_initial_activity, GENERATOR['estimated_parent'], places=9)
        self.assertEqual(generator.received_at, T0)
        self.assertEqual(generator.last_extraction_at, T0)
        self.assertEqual(generator.extraction_count, 1)
        self.assertIn(vial.id, self.ledger.vials)
        self.assertEqual(vial.initial_activity, GENERATOR['first_extraction_activity'])

    def test_back_solve_uses_efficiency(self):
        generator, _ = self.tracker.add_generator(87.0, 5.0, 0.5, T0)
        self.assertAlmostEqual(generator.parent_initial_activity, 200.0, places=9)

    def test_configurable_yield(self):
        tracker = GeneratorTracker(self.isotope, self.ledger, first_extraction_yield=0.5)
        generator, _ = tracker.add_generator(50.0, 5.0, 1.0, T0)
        self.assertAlmostEqual(generator.parent_initial_activity, 100.0, places=9)

    def test_record_extraction_keeps_identity(self):
        generator, _ = self._activate()
        later = T0 + timedelta(hours=23)
        vial = self.tracker.record_extraction(400.0, 8.0, later)

        self.assertIs(self.tracker.generator, generator)
        self.assertEqual(generator.last_extraction_at, later)
        self.assertEqual(generator.extraction_count, 2)
        self.assertEqual(vial.received_at, later)
        self.assertEqual(len(self.ledger.vials), 2)

    def test_accumulation_restarts_after_extraction(self):
        self._activate()
        later = T0 + timedelta(hours=23)
        self.assertGreater(self.tracker.accumulated_available(later), 0.0)
        self.tracker.record_extraction(100.0, 5.0, later)
        self.assertEqual(self.tracker.accumulated_available(later), 0.0)

    def test_parent_activity_decays(self):
        self._activate()
        later = T0 + timedelta(hours=HALF_LIVES['mo99'])
        self.assertAlmostEqual(self.tracker.parent_activity(later), GENERATOR['estimated_parent'] / 2, places=6)

    def test_remove_generator(self):
        self._activate()
        self.tracker.remove_generator()
        self.assertEqual(self.tracker.state, STATE_ABSENT)
        # Eluted vials stay in the inventory
        self.assertEqual(len(self.ledger.vials), 1)

    def test_operations_without_generator(self):
        with self.assertRaises(UnknownEntity):
            self.tracker.record_extraction(10.0, 1.0, T0)
        with self.assertRaises(UnknownEntity):
            self.tracker.remove_generator()

    def test_invalid_first_extraction(self):
        for activity, volume, efficiency in ((0.0, 5.0, 0.9), (10.0, 0.0, 0.9), (10.0, 5.0, 0.0),
                                             (10.0, 5.0, 1.5), (10.0, 5.0, None)):
            with self.subTest(activity=activity, volume=volume, efficiency=efficiency):
                with self.assertRaises(InvalidRequest):
                    self.tracker.add_generator(activity, volume, efficiency, T0)
        self.assertEqual(self.tracker.state, STATE_ABSENT)
        self.assertEqual(self.ledger.vials, {})

    def test_isotope_without_parent(self):
        isotope = get_isotope('f18')
        tracker = GeneratorTracker(isotope, InventoryLedger(isotope))
        with self.assertRaises(InvalidRequest):
            tracker.add_generator(10.0, 1.0, 0.9, T0)

    def test_status_and_round_trip(self):
        generator, _ = self._activate()
        status = self.tracker.status(T0 + timedelta(hours=6))
        self.assertEqual(status['state'], STATE_ACTIVE)
        self.assertEqual(status['extraction_count'], 1)
        self.assertAlmostEqual(status['hours_since_extraction'], 6.0)

        restored = GeneratorTracker(self.isotope, self.ledger)
        restored.restore(self.tracker.dump())
        self.assertEqual(restored.generator, generator)
