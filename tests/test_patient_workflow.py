"""
Tests for the patient uptake workflow engine

Validates:
- Stage derivation from elapsed time (room start or injection)
- Exactly-once alerts, including 1000 ticks past each threshold
- Room, imaging and additional-imaging transitions
- Round trip through dump/restore
"""

from datetime import datetime, timedelta

from django.test import TestCase

from radiopharmacy.diagnostics import Diagnostics
from radiopharmacy.exceptions import InvalidRequest, RoomUnavailable, UnknownEntity
from radiopharmacy.isotopes import get_isotope
from radiopharmacy.notifications import ALERT_CRITICAL, ALERT_ROOM_READY
from radiopharmacy.records import AdditionalImagingRequest, PatientCase
from radiopharmacy.rooms import RoomAllocator
from radiopharmacy.workflow import (
    STAGE_ADDITIONAL_PENDING, STAGE_BATHROOM, STAGE_COMPLETED, STAGE_DELAYED, STAGE_IMAGING,
    STAGE_IN_ROOM, STAGE_READY, STAGE_WAITING, AlertFlag, PatientRecord, PatientWorkflowEngine,
)
from tests.fixtures.reference_data import ROOMS, T0, UPTAKE_THRESHOLDS


def minutes(n):
    return T0 + timedelta(minutes=n)


def kinds(events):
    return [e.kind for e in events]


class WorkflowTestCase(TestCase):
    isotope_id = 'f18'

    def setUp(self):
        self.rooms = RoomAllocator(ROOMS)
        self.engine = PatientWorkflowEngine(get_isotope(self.isotope_id), self.rooms)
        self.patient = self.engine.register_injection('Jane Roe', 'FDG PET/CT', T0)
        self.pid = self.patient.id

    def collect(self, until, start=0, step=1):
        """Evaluate once per `step` minutes and return every event raised"""
        events = []
        for m in range(start, until + 1, step):
            events.extend(self.engine.evaluate(minutes(m)))
        return events


class ThresholdTests(WorkflowTestCase):

    def test_thresholds_by_uptake_class(self):
        t = self.engine.thresholds
        expected = UPTAKE_THRESHOLDS['long']
        self.assertEqual((t.bathroom, t.ready, t.delayed, t.critical),
                         (expected['bathroom'], expected['ready'], expected['delayed'], expected['critical']))

        ga68 = PatientWorkflowEngine(get_isotope('ga68'), self.rooms).thresholds
        self.assertEqual(ga68.ready, UPTAKE_THRESHOLDS['short']['ready'])

    def test_unassigned_stages(self):
        expectations = [(0, STAGE_WAITING), (44, STAGE_WAITING), (45, STAGE_BATHROOM),
                        (60, STAGE_READY), (75, STAGE_DELAYED), (300, STAGE_DELAYED)]
        for m, stage in expectations:
            with self.subTest(minute=m):
                self.assertEqual(self.engine.stage_of(self.pid, minutes(m)), stage)

    def test_room_stages_count_from_room_start(self):
        self.engine.assign_room(self.pid, 'B1', minutes(30))
        self.assertEqual(self.engine.stage_of(self.pid, minutes(30)), STAGE_IN_ROOM)
        self.assertEqual(self.engine.stage_of(self.pid, minutes(80)), STAGE_BATHROOM)
        self.assertEqual(self.engine.stage_of(self.pid, minutes(91)), STAGE_READY)
        self.assertEqual(self.engine.elapsed_minutes(self.pid, minutes(91)), 61.0)

    def test_registration_input_checked(self):
        bad = [
            (None, 'FDG', T0, None),
            (12345, 'FDG', T0, None),
            ('   ', 'FDG', T0, None),
            ('Jane Roe', 7, T0, None),
            ('Jane Roe', 'FDG', '2026-03-02T08:00:00Z', None),
            ('Jane Roe', 'FDG', datetime(2026, 3, 2, 8, 0), None),
            ('Jane Roe', 'FDG', T0, -1.0),
            ('Jane Roe', 'FDG', T0, float('inf')),
            ('Jane Roe', 'FDG', T0, True),
        ]
        for name, procedure, injected_at, dose in bad:
            with self.subTest(name=name, procedure=procedure, injected_at=injected_at, dose=dose):
                with self.assertRaises(InvalidRequest):
                    self.engine.register_injection(name, procedure, injected_at, dose_activity=dose)
        self.assertEqual(list(self.engine.patients), [self.pid])

    def test_registration_strips_text(self):
        case = self.engine.register_injection('  John Doe ', None, T0, dose_activity=10)
        self.assertEqual(case.patient_name, 'John Doe')
        self.assertEqual(case.procedure, '')
        self.assertEqual(case.dose_activity, 10.0)


class RoomAlertScenarioTests(WorkflowTestCase):
    """Injected and placed in B1 at t=0 on FDG"""

    def setUp(self):
        super().setUp()
        self.engine.assign_room(self.pid, 'B1', T0)

    def test_ready_then_critical(self):
        events = self.collect(61)
        self.assertEqual(self.engine.stage_of(self.pid, minutes(61)), STAGE_READY)
        self.assertEqual(kinds(events), ['roomReady'])

        events += self.collect(91, start=62)
        self.assertEqual(kinds(events), ['roomReady', 'critical'])

    def test_critical_fires_after_jump(self):
        """A missed window skips roomReady but still raises critical"""
        self.assertEqual(kinds(self.engine.evaluate(minutes(95))), ['critical'])

    def test_thousand_ticks_past_thresholds(self):
        events = self.collect(61)
        for _ in range(1000):
            events.extend(self.engine.evaluate(minutes(70)))
        self.assertEqual(kinds(events), ['roomReady'])

        for i in range(1000):
            events.extend(self.engine.evaluate(minutes(91) + timedelta(seconds=30 * i)))
        self.assertEqual(kinds(events).count('roomReady'), 1)
        self.assertEqual(kinds(events).count('critical'), 1)

    def test_alert_payload(self):
        event = self.engine.evaluate(minutes(61))[0]
        self.assertEqual(event.patient_id, self.pid)
        self.assertEqual(event.patient_name, 'Jane Roe')
        self.assertEqual(event.raised_at, minutes(61))
        self.assertEqual(event.context['room_id'], 'B1')
        self.assertEqual(event.context['isotope_id'], 'f18')


class UnassignedAlertTests(WorkflowTestCase):

    def test_waiting_patient_alerts(self):
        events = self.collect(120)
        self.assertEqual(kinds(events), ['bathroom', 'ready', 'delayed'])

    def test_no_room_alerts_while_unassigned(self):
        events = self.collect(200, step=5)
        self.assertNotIn('roomReady', kinds(events))
        self.assertNotIn('critical', kinds(events))


class RoomAssignmentTests(WorkflowTestCase):

    def test_occupied_room_refused_without_side_effects(self):
        other = self.engine.register_injection('John Doe', 'FDG PET/CT', T0)
        self.engine.assign_room(self.pid, 'B1', T0)

        with self.assertRaises(RoomUnavailable):
            self.engine.assign_room(other.id, 'B1', minutes(5))

        assignment = self.rooms.room_of(self.pid)
        self.assertEqual(assignment.room_id, 'B1')
        self.assertEqual(assignment.started_at, T0)
        self.assertIsNone(self.rooms.room_of(other.id))

    def test_moving_rooms_releases_previous(self):
        self.engine.assign_room(self.pid, 'B1', T0)
        self.engine.assign_room(self.pid, 'B2', minutes(10))
        self.assertFalse(self.rooms.is_occupied('B1'))
        self.assertEqual(self.rooms.room_of(self.pid).started_at, minutes(10))

    def test_refused_move_keeps_previous_room(self):
        other = self.engine.register_injection('John Doe', 'FDG PET/CT', T0)
        self.engine.assign_room(other.id, 'B2', T0)
        self.engine.assign_room(self.pid, 'B1', T0)
        with self.assertRaises(RoomUnavailable):
            self.engine.assign_room(self.pid, 'B2', minutes(5))
        self.assertEqual(self.rooms.room_of(self.pid).room_id, 'B1')

    def test_same_room_is_noop(self):
        first = self.engine.assign_room(self.pid, 'B1', T0)
        self.assertEqual(self.engine.assign_room(self.pid, 'B1', minutes(10)), first)

    def test_moving_rooms_keeps_fired_alerts(self):
        self.engine.assign_room(self.pid, 'B1', T0)
        self.assertEqual(kinds(self.collect(61)), [ALERT_ROOM_READY])

        self.engine.assign_room(self.pid, 'B2', minutes(62))
        # New room clock: ready again at 122 (already announced), critical at 152
        self.assertEqual(kinds(self.collect(160, start=62)), [ALERT_CRITICAL])

    def test_release_returns_to_waiting(self):
        self.engine.assign_room(self.pid, 'B1', minutes(10))
        self.engine.release_room(self.pid)
        self.assertEqual(self.engine.stage_of(self.pid, minutes(11)), STAGE_WAITING)
        self.assertIsNone(self.engine.release_room(self.pid))

    def test_unknown_patient(self):
        with self.assertRaises(UnknownEntity):
            self.engine.assign_room('pt_missing', 'B1', T0)


class ImagingTests(WorkflowTestCase):

    def test_start_imaging_releases_room(self):
        self.engine.assign_room(self.pid, 'B1', T0)
        session = self.engine.start_imaging(self.pid, minutes(62))
        self.assertFalse(session.is_additional)
        self.assertFalse(self.rooms.is_occupied('B1'))
        self.assertEqual(self.engine.stage_of(self.pid, minutes(63)), STAGE_IMAGING)

    def test_no_alerts_during_imaging(self):
        self.engine.start_imaging(self.pid, minutes(10))
        self.assertEqual(self.collect(200, step=5), [])

    def test_finish_completes_case(self):
        self.engine.start_imaging(self.pid, minutes(62))
        case = self.engine.finish_imaging(self.pid, False, minutes(80))
        self.assertEqual(case.completed_at, minutes(80))
        self.assertEqual(self.engine.stage_of(self.pid, minutes(81)), STAGE_COMPLETED)
        self.assertNotIn(self.pid, self.engine.patients)

    def test_finish_without_session(self):
        with self.assertRaises(UnknownEntity):
            self.engine.finish_imaging(self.pid, False, minutes(80))

    def test_invalid_additional_keeps_session(self):
        self.engine.start_imaging(self.pid, minutes(62))
        for region, delay in (('', 90), ('Pelvis', 45), ('Pelvis', None), ('Pelvis', 'soon')):
            with self.subTest(region=region, delay=delay):
                with self.assertRaises(InvalidRequest):
                    self.engine.finish_imaging(self.pid, True, minutes(80), region=region, scheduled_minutes=delay)
        self.assertIn(self.pid, self.engine.imaging)

    def test_additional_imaging_cycle(self):
        self.engine.start_imaging(self.pid, minutes(62))
        request = self.engine.finish_imaging(self.pid, True, minutes(80), region='Pelvis', scheduled_minutes=60)
        self.assertIsInstance(request, AdditionalImagingRequest)
        self.assertEqual(self.engine.stage_of(self.pid, minutes(81)), STAGE_ADDITIONAL_PENDING)

        session = self.engine.start_imaging(self.pid, minutes(140))
        self.assertTrue(session.is_additional)
        self.assertNotIn(self.pid, self.engine.additional)

        # An additional scan completes the case whatever the flag says
        case = self.engine.finish_imaging(self.pid, True, minutes(150), region='Lung', scheduled_minutes=60)
        self.assertEqual(case.completed_at, minutes(150))


class AdditionalImagingTests(WorkflowTestCase):

    def setUp(self):
        super().setUp()
        self.engine.start_imaging(self.pid, T0)
        self.engine.finish_imaging(self.pid, False, T0)

    def test_ninety_minute_request(self):
        """Completed case re-scanned at 90 min: ready exactly at 90, one alert"""
        self.engine.request_additional_imaging(self.pid, 'Pelvis', 90, T0)

        events = self.collect(89)
        self.assertFalse(self.engine.is_additional_ready(self.pid, minutes(89)))
        self.assertEqual(events, [])

        events = self.collect(200, start=90)
        self.assertTrue(self.engine.is_additional_ready(self.pid, minutes(90)))
        self.assertEqual(kinds(events), ['additionalReady'])
        self.assertEqual(events[0].raised_at, minutes(90))
        self.assertEqual(events[0].context['region'], 'Pelvis')

    def test_new_request_rearms_alert(self):
        self.engine.request_additional_imaging(self.pid, 'Pelvis', 60, T0)
        self.assertEqual(kinds(self.engine.evaluate(minutes(60))), ['additionalReady'])

        self.engine.start_imaging(self.pid, minutes(61))
        self.engine.finish_imaging(self.pid, False, minutes(70))
        self.engine.request_additional_imaging(self.pid, 'Brain', 60, minutes(70))
        self.assertEqual(self.engine.patients[self.pid].flags, AlertFlag.NONE)
        self.assertEqual(kinds(self.engine.evaluate(minutes(130))), ['additionalReady'])

    def test_cancel_after_imaging_completes_case(self):
        self.engine.request_additional_imaging(self.pid, 'Pelvis', 60, T0)
        self.engine.cancel_additional_imaging(self.pid, minutes(20))
        self.assertEqual(self.engine.stage_of(self.pid, minutes(21)), STAGE_COMPLETED)

    def test_cancel_before_imaging_returns_to_waiting(self):
        other = self.engine.register_injection('John Doe', 'FDG PET/CT', T0)
        self.engine.request_additional_imaging(other.id, 'Liver', 120, T0)
        self.engine.cancel_additional_imaging(other.id, minutes(5))
        self.assertEqual(self.engine.stage_of(other.id, minutes(6)), STAGE_WAITING)
        with self.assertRaises(UnknownEntity):
            self.engine.cancel_additional_imaging(other.id, minutes(6))

    def test_refused_while_in_room(self):
        other = self.engine.register_injection('John Doe', 'FDG PET/CT', T0)
        self.engine.assign_room(other.id, 'B1', T0)
        with self.assertRaises(InvalidRequest):
            self.engine.request_additional_imaging(other.id, 'Pelvis', 60, T0)

    def test_unknown_patient(self):
        with self.assertRaises(UnknownEntity):
            self.engine.request_additional_imaging('pt_missing', 'Pelvis', 60, T0)


class BoardAndPersistenceTests(WorkflowTestCase):

    def test_board_counts(self):
        other = self.engine.register_injection('John Doe', 'FDG PET/CT', minutes(10))
        self.engine.assign_room(other.id, 'B2', minutes(10))
        board = self.engine.board(minutes(50))

        self.assertEqual([row['id'] for row in board['patients']], [self.pid, other.id])
        self.assertEqual(board['stats'][STAGE_BATHROOM], 1)
        self.assertEqual(board['stats'][STAGE_IN_ROOM], 1)
        self.assertEqual(board['stats']['active'], 2)
        self.assertNotIn('B2', board['available_rooms'])

    def test_round_trip(self):
        other = self.engine.register_injection('John Doe', 'FDG PET/CT', T0)
        self.engine.assign_room(self.pid, 'B1', T0)
        self.engine.evaluate(minutes(61))
        self.engine.start_imaging(other.id, minutes(5))
        state = self.engine.dump()

        rooms = RoomAllocator(ROOMS)
        restored = PatientWorkflowEngine(get_isotope('f18'), rooms)
        restored.restore(state)

        self.assertEqual(rooms.room_of(self.pid).room_id, 'B1')
        self.assertIn(other.id, restored.imaging)
        self.assertIn(AlertFlag.ROOM_READY, restored.patients[self.pid].flags)
        # Already fired before the restart
        self.assertEqual(restored.evaluate(minutes(62)), [])

    def test_corrupt_records_skipped(self):
        diagnostics = Diagnostics()
        state = self.engine.dump()
        state['patients'].append({'case': {'id': 'pt_bad', 'patient_name': 'X', 'injected_at': 'yesterday',
                                           'isotope_id': 'f18'}})
        state['rooms'].append({'room_id': 'B9', 'patient_id': self.pid, 'patient_name': 'Jane Roe',
                               'started_at': T0.isoformat()})

        restored = PatientWorkflowEngine(get_isotope('f18'), RoomAllocator(ROOMS), diagnostics=diagnostics)
        restored.restore(state)

        self.assertIn(self.pid, restored.patients)
        self.assertNotIn('pt_bad', restored.patients)
        self.assertEqual([d.entity_id for d in diagnostics.entries()], ['pt_bad', 'B9'])

    def test_missing_timestamps_skipped_on_restore(self):
        diagnostics = Diagnostics()
        other = self.engine.register_injection('John Doe', 'FDG PET/CT', T0)
        self.engine.start_imaging(other.id, minutes(5))
        state = self.engine.dump()
        state['patients'].append({'case': {'id': 'pt_null', 'patient_name': 'X', 'injected_at': None,
                                           'isotope_id': 'f18'}})
        state['imaging'][0]['started_at'] = None
        state['additional'].append({'patient_id': self.pid, 'region': 'Pelvis', 'added_at': None,
                                    'scheduled_minutes': 60})

        restored = PatientWorkflowEngine(get_isotope('f18'), RoomAllocator(ROOMS), diagnostics=diagnostics)
        restored.restore(state)

        self.assertNotIn('pt_null', restored.patients)
        self.assertEqual(restored.imaging, {})
        self.assertEqual(restored.additional, {})
        self.assertEqual(len(diagnostics), 3)
        board = restored.board(minutes(10))
        self.assertEqual(board['stats']['active'], 2)

    def test_board_skips_unreadable_patient(self):
        diagnostics = Diagnostics()
        engine = PatientWorkflowEngine(get_isotope('f18'), RoomAllocator(ROOMS), diagnostics=diagnostics)
        good = engine.register_injection('Jane Roe', 'FDG PET/CT', T0)
        naive = PatientCase(id='pt_naive', patient_name='X', injected_at=datetime(2026, 3, 2, 8, 0),
                            procedure='', isotope_id='f18')
        engine.patients[naive.id] = PatientRecord(case=naive)

        board = engine.board(minutes(10))
        self.assertEqual([row['id'] for row in board['patients']], [good.id])
        self.assertEqual([d.entity_id for d in diagnostics.entries()], ['pt_naive'])

    def test_dose_statistics(self):
        self.engine.register_injection('John Doe', 'FDG PET/CT', T0, dose_activity=12.0)
        done = self.engine.register_injection('Mary Major', 'FDG PET/CT', T0, dose_activity=8.0)
        self.engine.archive(done.id, minutes(90))
        self.assertEqual(self.engine.dose_statistics(),
                         {'count': 2, 'total_activity': 20.0, 'average_activity': 10.0})
