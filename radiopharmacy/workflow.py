"""
Patient Workflow Engine

Tracks injected patients through uptake, imaging and additional imaging
for one isotope context. A patient's stage is never stored: it is derived
on every call from recorded timestamps and the uptake thresholds.

Stage flow:

    waiting -> in_room -> bathroom -> ready -> delayed -> imaging -> completed
                                                            |
                                                            +-> additional_pending -> imaging -> completed

Reference time is the room start once a room is assigned, otherwise the
injection time. Alerts fire once per patient per threshold; a bitset of
fired flags lives on each PatientRecord and is reset only when the case
is archived.
"""

import enum
import logging
import math
from dataclasses import dataclass

from .conf import get_setting
from .diagnostics import Diagnostics
from .exceptions import InvalidRequest, RoomUnavailable, UnknownEntity
from .notifications import (
    ALERT_ADDITIONAL_READY, ALERT_BATHROOM, ALERT_CRITICAL, ALERT_DELAYED,
    ALERT_READY, ALERT_ROOM_READY, AlertEvent,
)
from .records import (
    LOAD_ERRORS, AdditionalImagingRequest, ImagingSession, PatientCase,
    RoomAssignment, new_id, record_id, require_text, require_timestamp,
)

logger = logging.getLogger(__name__)

STAGE_WAITING = 'waiting'
STAGE_IN_ROOM = 'in_room'
STAGE_BATHROOM = 'bathroom'
STAGE_READY = 'ready'
STAGE_DELAYED = 'delayed'
STAGE_IMAGING = 'imaging'
STAGE_ADDITIONAL_PENDING = 'additional_pending'
STAGE_COMPLETED = 'completed'

STAGE_CHOICES = [
    (STAGE_WAITING, 'Waiting for room'),
    (STAGE_IN_ROOM, 'In uptake room'),
    (STAGE_BATHROOM, 'Bathroom break'),
    (STAGE_READY, 'Ready for imaging'),
    (STAGE_DELAYED, 'Delayed'),
    (STAGE_IMAGING, 'Imaging'),
    (STAGE_ADDITIONAL_PENDING, 'Additional imaging pending'),
    (STAGE_COMPLETED, 'Completed'),
]

# Suggested regions for additional imaging; free text is accepted too
ADDITIONAL_IMAGING_REGIONS = [
    'Pelvis', 'Lung', 'Brain', 'Bone focus', 'Thorax', 'Abdomen', 'Heart', 'Liver',
]

WORKFLOW_ERRORS = LOAD_ERRORS + (UnknownEntity,)


class AlertFlag(enum.Flag):
    NONE = 0
    BATHROOM = enum.auto()
    READY = enum.auto()
    DELAYED = enum.auto()
    ROOM_READY = enum.auto()
    CRITICAL = enum.auto()
    ADDITIONAL_READY = enum.auto()


@dataclass(frozen=True)
class WorkflowThresholds:
    """Uptake thresholds in minutes"""

    bathroom: float
    ready: float
    delayed: float
    critical: float

    @classmethod
    def for_isotope(cls, isotope):
        # Isotopes without an uptake class run on the long-uptake table
        table = get_setting('UPTAKE_THRESHOLDS')
        values = table.get(isotope.uptake_class or 'long', table['long'])
        thresholds = cls(*values)
        if not (0 <= thresholds.bathroom <= thresholds.ready <= thresholds.delayed <= thresholds.critical):
            raise ValueError(f"Uptake thresholds must be non-decreasing: {values}")
        return thresholds


@dataclass
class PatientRecord:
    case: PatientCase
    flags: AlertFlag = AlertFlag.NONE
    imaged: bool = False

    def to_dict(self):
        return {'case': self.case.to_dict(), 'flags': self.flags.value, 'imaged': self.imaged}

    @classmethod
    def from_dict(cls, data):
        return cls(
            case=PatientCase.from_dict(data['case']),
            flags=AlertFlag(int(data.get('flags', 0))),
            imaged=bool(data.get('imaged', False)),
        )


def _minutes_between(start, end):
    return max((end - start).total_seconds() / 60.0, 0.0)


class PatientWorkflowEngine:
    """
    Uptake workflow for one isotope

    Args:
        isotope: Isotope the patients were injected with
        rooms: RoomAllocator, shared with the other contexts of the facility
        thresholds: WorkflowThresholds, defaults to the isotope's uptake class
        additional_minutes: allowed additional-imaging delays
        diagnostics: side channel for skipped records
    """

    def __init__(self, isotope, rooms, thresholds=None, additional_minutes=None, diagnostics=None):
        self.isotope = isotope
        self.rooms = rooms
        self.thresholds = thresholds or WorkflowThresholds.for_isotope(isotope)
        self.additional_minutes = tuple(additional_minutes if additional_minutes is not None
                                        else get_setting('ADDITIONAL_IMAGING_MINUTES'))
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.patients = {}
        self.archived = {}
        self.imaging = {}
        self.additional = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _record(self, patient_id):
        """Active record; archived cases are refused"""
        record = self.patients.get(patient_id)
        if record is not None:
            return record
        if patient_id in self.archived:
            raise InvalidRequest(f"Case {patient_id} is already completed")
        raise UnknownEntity(f"Unknown patient '{patient_id}'")

    def get_case(self, patient_id):
        record = self.patients.get(patient_id) or self.archived.get(patient_id)
        if record is None:
            raise UnknownEntity(f"Unknown patient '{patient_id}'")
        return record.case

    def room_of(self, patient_id):
        return self.rooms.room_of(patient_id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def register_injection(self, patient_name, procedure, injected_at, dose_activity=None):
        """
        Log an administered dose; the case enters the waiting stage

        dose_activity is in mCi and optional (additional scans without a
        new dose are registered without one).
        """
        patient_name = require_text(patient_name, "Patient name")
        procedure = require_text(procedure, "Procedure", required=False)
        injected_at = require_timestamp(injected_at, "Injection time")
        if dose_activity is not None:
            if isinstance(dose_activity, bool) or not math.isfinite(dose_activity) or dose_activity < 0:
                raise InvalidRequest(f"Dose activity must be a non-negative number, got {dose_activity!r}")
            dose_activity = float(dose_activity)

        case = PatientCase(
            id=new_id('pt'),
            patient_name=patient_name,
            injected_at=injected_at,
            procedure=procedure,
            isotope_id=self.isotope.id,
            dose_activity=dose_activity,
        )
        self.patients[case.id] = PatientRecord(case=case)
        logger.info(f"Registered {case.id} injected with {self.isotope.id} at {injected_at.isoformat()}")
        return case

    def assign_room(self, patient_id, room_id, now):
        """
        Move a patient into an uptake room

        A prior room of the same patient is released only after the new
        assignment succeeds, so a refused assignment changes nothing.
        Alert flags survive the move: a patient already announced as
        ready is not announced again from the new room.
        """
        record = self._record(patient_id)
        if patient_id in self.imaging:
            raise InvalidRequest(f"{record.case.patient_name} is being imaged")
        if patient_id in self.additional:
            raise InvalidRequest(f"{record.case.patient_name} is waiting for additional imaging")

        previous = self.rooms.room_of(patient_id)
        if previous is not None and previous.room_id == room_id:
            return previous

        assignment = self.rooms.assign(room_id, patient_id, record.case.patient_name, now)
        if previous is not None:
            self.rooms.release(previous.room_id)
        return assignment

    def release_room(self, patient_id):
        """Send a patient back to waiting"""
        self._record(patient_id)
        return self.rooms.release_patient(patient_id)

    def start_imaging(self, patient_id, now):
        record = self._record(patient_id)
        if patient_id in self.imaging:
            raise InvalidRequest(f"{record.case.patient_name} is already being imaged")

        self.rooms.release_patient(patient_id)
        request = self.additional.pop(patient_id, None)
        session = ImagingSession(patient_id=patient_id, started_at=now, is_additional=request is not None)
        self.imaging[patient_id] = session
        logger.info(f"Imaging started for {patient_id}{' (additional)' if session.is_additional else ''}")
        return session

    def finish_imaging(self, patient_id, needs_additional, now, region=None, scheduled_minutes=None):
        """
        End the imaging session

        Returns:
            AdditionalImagingRequest when further imaging was requested,
            otherwise the completed PatientCase. An additional scan always
            completes the case.
        """
        record = self._record(patient_id)
        session = self.imaging.get(patient_id)
        if session is None:
            raise UnknownEntity(f"No imaging session for {record.case.patient_name}")

        if needs_additional and not session.is_additional:
            region, scheduled_minutes = self._check_additional(region, scheduled_minutes)
            del self.imaging[patient_id]
            record.imaged = True
            return self._add_request(record, region, scheduled_minutes, now)

        del self.imaging[patient_id]
        record.imaged = True
        return self.archive(patient_id, now)

    def request_additional_imaging(self, patient_id, region, scheduled_minutes, now):
        """
        Schedule a delayed re-scan

        Completed cases are brought back to the active set.
        """
        region, scheduled_minutes = self._check_additional(region, scheduled_minutes)

        record = self.patients.get(patient_id)
        if record is None:
            record = self.archived.pop(patient_id, None)
            if record is None:
                raise UnknownEntity(f"Unknown patient '{patient_id}'")
            record.case.completed_at = None
            self.patients[patient_id] = record
            logger.info(f"Reactivated {patient_id} for additional imaging")
        elif self.rooms.room_of(patient_id) is not None:
            raise InvalidRequest(f"{record.case.patient_name} is in an uptake room")
        elif patient_id in self.imaging:
            raise InvalidRequest(f"{record.case.patient_name} is being imaged")

        return self._add_request(record, region, scheduled_minutes, now)

    def cancel_additional_imaging(self, patient_id, now):
        """
        Drop a pending request

        A patient who has already been imaged is done; one who has not
        goes back to waiting.
        """
        record = self._record(patient_id)
        request = self.additional.pop(patient_id, None)
        if request is None:
            raise UnknownEntity(f"No additional imaging pending for {record.case.patient_name}")
        if record.imaged:
            self.archive(patient_id, now)
        return request

    def archive(self, patient_id, now):
        """Complete a case and drop it from the active set"""
        record = self._record(patient_id)
        self.rooms.release_patient(patient_id)
        self.imaging.pop(patient_id, None)
        self.additional.pop(patient_id, None)

        del self.patients[patient_id]
        record.case.completed_at = now
        record.flags = AlertFlag.NONE
        self.archived[patient_id] = record
        logger.info(f"Completed case {patient_id}")
        return record.case

    def _check_additional(self, region, scheduled_minutes):
        region = require_text(region, "Additional imaging region")
        try:
            minutes = int(scheduled_minutes)
        except (TypeError, ValueError):
            raise InvalidRequest(f"Invalid additional imaging delay {scheduled_minutes!r}") from None
        if minutes not in self.additional_minutes:
            raise InvalidRequest(f"Additional imaging delay must be one of {list(self.additional_minutes)}")
        return region, minutes

    def _add_request(self, record, region, minutes, now):
        request = AdditionalImagingRequest(
            patient_id=record.case.id,
            region=region,
            added_at=now,
            scheduled_minutes=minutes,
        )
        self.additional[record.case.id] = request
        # New request, new readiness alert
        record.flags &= ~AlertFlag.ADDITIONAL_READY
        logger.info(f"Additional imaging for {record.case.id}: {region} in {minutes} min")
        return request

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def reference_time(self, patient_id):
        record = self._record(patient_id)
        assignment = self.rooms.room_of(patient_id)
        return assignment.started_at if assignment else record.case.injected_at

    def elapsed_minutes(self, patient_id, now):
        """Minutes since the start of the patient's current stage"""
        if patient_id in self.imaging:
            return _minutes_between(self.imaging[patient_id].started_at, now)
        if patient_id in self.additional:
            return _minutes_between(self.additional[patient_id].added_at, now)
        return _minutes_between(self.reference_time(patient_id), now)

    def is_additional_ready(self, patient_id, now):
        request = self.additional.get(patient_id)
        if request is None:
            raise UnknownEntity(f"No additional imaging pending for '{patient_id}'")
        return _minutes_between(request.added_at, now) >= request.scheduled_minutes

    def minutes_until_additional(self, patient_id, now):
        request = self.additional.get(patient_id)
        if request is None:
            raise UnknownEntity(f"No additional imaging pending for '{patient_id}'")
        return max(request.scheduled_minutes - _minutes_between(request.added_at, now), 0.0)

    def stage_of(self, patient_id, now):
        if patient_id in self.archived and patient_id not in self.patients:
            return STAGE_COMPLETED
        self._record(patient_id)
        if patient_id in self.imaging:
            return STAGE_IMAGING
        if patient_id in self.additional:
            return STAGE_ADDITIONAL_PENDING

        minutes = self.elapsed_minutes(patient_id, now)
        t = self.thresholds
        if minutes >= t.delayed:
            return STAGE_DELAYED
        if minutes >= t.ready:
            return STAGE_READY
        if minutes >= t.bathroom:
            return STAGE_BATHROOM
        return STAGE_IN_ROOM if self.rooms.room_of(patient_id) else STAGE_WAITING

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def evaluate(self, now):
        """
        Recompute every active patient against `now`

        Returns the alerts that became due on this call. Calling it again
        with the same or a later `now` never repeats an alert.
        """
        events = []
        for patient_id, record in list(self.patients.items()):
            try:
                events.extend(self._evaluate_patient(record, now))
            except WORKFLOW_ERRORS as e:
                self.diagnostics.report('workflow', patient_id, e)
        return events

    def _fire(self, record, flag, kind, now, **context):
        record.flags |= flag
        context['isotope_id'] = self.isotope.id
        return AlertEvent(
            kind=kind,
            patient_id=record.case.id,
            patient_name=record.case.patient_name,
            raised_at=now,
            context=context,
        )

    def _evaluate_patient(self, record, now):
        patient_id = record.case.id
        if patient_id in self.imaging:
            return []

        events = []
        request = self.additional.get(patient_id)
        if request is not None:
            if (AlertFlag.ADDITIONAL_READY not in record.flags
                    and _minutes_between(request.added_at, now) >= request.scheduled_minutes):
                events.append(self._fire(record, AlertFlag.ADDITIONAL_READY, ALERT_ADDITIONAL_READY, now,
                                         region=request.region,
                                         scheduled_minutes=request.scheduled_minutes))
            return events

        t = self.thresholds
        assignment = self.rooms.room_of(patient_id)
        if assignment is not None:
            minutes = _minutes_between(assignment.started_at, now)
            if t.ready <= minutes < t.critical and AlertFlag.ROOM_READY not in record.flags:
                events.append(self._fire(record, AlertFlag.ROOM_READY, ALERT_ROOM_READY, now,
                                         room_id=assignment.room_id, elapsed_minutes=minutes))
            if minutes >= t.critical and AlertFlag.CRITICAL not in record.flags:
                events.append(self._fire(record, AlertFlag.CRITICAL, ALERT_CRITICAL, now,
                                         room_id=assignment.room_id, elapsed_minutes=minutes))
            return events

        minutes = _minutes_between(record.case.injected_at, now)
        if t.bathroom <= minutes < t.ready and AlertFlag.BATHROOM not in record.flags:
            events.append(self._fire(record, AlertFlag.BATHROOM, ALERT_BATHROOM, now, elapsed_minutes=minutes))
        elif t.ready <= minutes < t.delayed and AlertFlag.READY not in record.flags:
            events.append(self._fire(record, AlertFlag.READY, ALERT_READY, now, elapsed_minutes=minutes))
        elif minutes >= t.delayed and AlertFlag.DELAYED not in record.flags:
            events.append(self._fire(record, AlertFlag.DELAYED, ALERT_DELAYED, now, elapsed_minutes=minutes))
        return events

    def dose_statistics(self):
        """Administered doses (mCi) over active and completed cases"""
        doses = [
            record.case.dose_activity
            for record in list(self.patients.values()) + list(self.archived.values())
            if isinstance(record.case.dose_activity, float)
        ]
        total = sum(doses)
        return {
            'count': len(doses),
            'total_activity': total,
            'average_activity': total / len(doses) if doses else 0.0,
        }

    def board(self, now):
        """Every active patient with stage and timing, plus stage and dose counts"""
        rows = []
        for patient_id, record in list(self.patients.items()):
            try:
                stage = self.stage_of(patient_id, now)
                assignment = self.rooms.room_of(patient_id)
                request = self.additional.get(patient_id)
                injected_at = record.case.injected_at
                row = {
                    'id': patient_id,
                    'patient_name': record.case.patient_name,
                    'procedure': record.case.procedure,
                    'injected_at': injected_at.isoformat(),
                    'dose_activity': record.case.dose_activity,
                    'stage': stage,
                    'room_id': assignment.room_id if assignment else None,
                    'elapsed_minutes': self.elapsed_minutes(patient_id, now),
                    'minutes_since_injection': _minutes_between(injected_at, now),
                    'additional_region': request.region if request else None,
                    'additional_ready': self.is_additional_ready(patient_id, now) if request else None,
                    'minutes_until_additional': self.minutes_until_additional(patient_id, now) if request else None,
                }
            except WORKFLOW_ERRORS as e:
                self.diagnostics.report('workflow', patient_id, e)
                continue
            rows.append((injected_at, row))
        rows = [row for _, row in sorted(rows, key=lambda pair: pair[0])]

        stats = {stage: 0 for stage, _ in STAGE_CHOICES}
        for row in rows:
            stats[row['stage']] += 1
        stats[STAGE_COMPLETED] = len(self.archived)
        stats['active'] = len(rows)

        return {
            'patients': rows,
            'stats': stats,
            'doses': self.dose_statistics(),
            'available_rooms': self.rooms.available_rooms(),
            'additional_regions': ADDITIONAL_IMAGING_REGIONS,
            'thresholds': {
                'bathroom': self.thresholds.bathroom,
                'ready': self.thresholds.ready,
                'delayed': self.thresholds.delayed,
                'critical': self.thresholds.critical,
            },
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def dump(self):
        room_assignments = [
            a.to_dict() for a in self.rooms.assignments().values() if a.patient_id in self.patients
        ]
        return {
            'patients': [r.to_dict() for r in self.patients.values()],
            'archived': [r.to_dict() for r in self.archived.values()],
            'imaging': [s.to_dict() for s in self.imaging.values()],
            'additional': [r.to_dict() for r in self.additional.values()],
            'rooms': room_assignments,
        }

    def _load_records(self, raws, component):
        records = {}
        for raw in raws:
            try:
                record = PatientRecord.from_dict(raw)
            except LOAD_ERRORS as e:
                self.diagnostics.report(component, record_id(raw.get('case') if isinstance(raw, dict) else raw), e)
                continue
            records[record.case.id] = record
        return records

    def restore(self, data):
        for patient_id in list(self.patients):
            self.rooms.release_patient(patient_id)

        self.patients = self._load_records(data.get('patients', []), 'workflow')
        self.archived = self._load_records(data.get('archived', []), 'workflow')
        self.imaging = {}
        self.additional = {}

        for raw in data.get('imaging', []):
            try:
                session = ImagingSession.from_dict(raw)
            except LOAD_ERRORS as e:
                self.diagnostics.report('imaging', record_id(raw), e)
                continue
            if session.patient_id in self.patients:
                self.imaging[session.patient_id] = session

        for raw in data.get('additional', []):
            try:
                request = AdditionalImagingRequest.from_dict(raw)
            except LOAD_ERRORS as e:
                self.diagnostics.report('additional', record_id(raw), e)
                continue
            if request.patient_id in self.patients:
                self.additional[request.patient_id] = request

        for raw in data.get('rooms', []):
            try:
                assignment = RoomAssignment.from_dict(raw)
                if assignment.patient_id in self.patients:
                    self.rooms.restore_assignment(assignment)
            except LOAD_ERRORS + (RoomUnavailable, UnknownEntity) as e:
                self.diagnostics.report('rooms', record_id(raw), e)
