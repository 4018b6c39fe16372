"""
Isotope contexts and the facility that owns them

Each isotope gets its own InventoryLedger, GeneratorTracker and
PatientWorkflowEngine, bundled in an IsotopeContext. Contexts are picked
explicitly with Facility.context(isotope_id); there is no "current
isotope" shared between callers.

Every command and every tick runs under the facility lock, so no caller
can observe a half-applied transition. Commands return result dicts:

    {'success': True, ...payload}
    {'success': False, 'error': 'RoomUnavailable', 'error_message': '...'}

Persistence, audit and alert callouts run after the in-memory change has
been applied; their failures are logged and never reach the caller.
"""

import logging
import threading

from django.utils.module_loading import import_string

from . import decay
from .audit import (
    ACTION_ADDITIONAL_CANCELLED, ACTION_ADDITIONAL_REQUESTED, ACTION_GENERATOR_ADDED,
    ACTION_GENERATOR_ELUTED, ACTION_GENERATOR_REMOVED, ACTION_IMAGING_FINISHED,
    ACTION_IMAGING_STARTED, ACTION_PATIENT_INJECTED, ACTION_ROOM_ASSIGNED,
    ACTION_ROOM_RELEASED, ACTION_VIAL_ADDED, ACTION_VIAL_REMOVED, ACTION_WASTE_BIN_ADDED,
    ACTION_WASTE_BIN_EMPTIED, ACTION_WASTE_BIN_SEALED, ACTION_WASTE_DISPOSED,
    NullAuditTrail,
)
from .clock import SystemClock
from .conf import get_setting
from .diagnostics import Diagnostics
from .exceptions import InvalidRequest, RadiopharmacyError
from .generator import GeneratorTracker
from .inventory import RECOMPUTE_ERRORS, InventoryLedger
from .isotopes import get_isotope, load_isotopes
from .notifications import ALERT_LOW_STOCK, AlertEvent, LoggingNotifier
from .records import AdditionalImagingRequest
from .rooms import RoomAllocator
from .storage import MemoryStore, context_key, dumps, loads
from .workflow import PatientWorkflowEngine

logger = logging.getLogger(__name__)


def error_result(error):
    return {
        'success': False,
        'error': error.kind,
        'error_message': str(error),
    }


class IsotopeContext:
    """Ledger, generator and patient workflow for one isotope"""

    def __init__(self, facility, isotope):
        self.facility = facility
        self.isotope = isotope
        self.key = context_key(isotope.id)
        self.diagnostics = Diagnostics()
        self.ledger = InventoryLedger(isotope, isotopes=facility.isotopes, diagnostics=self.diagnostics)
        self.generator = GeneratorTracker(isotope, self.ledger, diagnostics=self.diagnostics)
        self.workflow = PatientWorkflowEngine(isotope, facility.rooms, diagnostics=self.diagnostics)
        self.low_stock_threshold = get_setting('LOW_STOCK_THRESHOLD')
        self.low_stock_alerted = False

    @property
    def lock(self):
        return self.facility.lock

    def now(self):
        return self.facility.clock.now()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, apply, persist=True):
        """
        Run one command or query under the facility lock

        `apply(now)` returns (payload, audit_entries); audit entries are
        (action, resource, resource_id, changes) tuples recorded once the
        change has been applied.
        """
        with self.lock:
            now = self.now()
            try:
                payload, audit_entries = apply(now)
            except RadiopharmacyError as e:
                logger.info(f"[{self.isotope.id}] rejected: {e.kind}: {e}")
                return error_result(e)
            except (TypeError, ValueError) as e:
                logger.info(f"[{self.isotope.id}] rejected malformed input: {e}")
                return error_result(InvalidRequest(str(e)))

            if persist:
                self.save()
            for entry in audit_entries:
                self.facility.record_audit(*entry)

        result = {'success': True}
        result.update(payload)
        return result

    # ------------------------------------------------------------------
    # Inventory commands
    # ------------------------------------------------------------------

    def add_vial(self, initial_activity, initial_volume_ml=0.0, label='', received_at=None, unit=decay.UNIT_MCI):
        def apply(now):
            activity = decay.convert_activity(initial_activity, unit, decay.UNIT_MCI)
            vial = self.ledger.add_vial(activity, initial_volume_ml, received_at or now, label=label)
            data = vial.to_dict()
            return {'vial': data}, [(ACTION_VIAL_ADDED, 'vial', vial.id, data)]
        return self._execute(apply)

    def dispose_vial(self, vial_id, bin_id=None):
        def apply(now):
            self.ledger.get_vial(vial_id)
            target = bin_id or self.ledger.default_bin('solid').id
            item = self.ledger.dispose_vial(vial_id, target, now)
            data = item.to_dict()
            return {'waste_item': data}, [
                (ACTION_VIAL_REMOVED, 'vial', vial_id, {'bin_id': target}),
                (ACTION_WASTE_DISPOSED, 'waste_bin', target, data),
            ]
        return self._execute(apply)

    def add_waste_bin(self, name, category='solid'):
        def apply(now):
            waste_bin = self.ledger.add_bin(name, category)
            data = {'id': waste_bin.id, 'name': waste_bin.name, 'category': waste_bin.category}
            return {'bin': data}, [(ACTION_WASTE_BIN_ADDED, 'waste_bin', waste_bin.id, data)]
        return self._execute(apply)

    def dispose_activity(self, bin_id, activity, source='other', description='', unit=decay.UNIT_MCI):
        def apply(now):
            amount = decay.convert_activity(activity, unit, decay.UNIT_MCI)
            item = self.ledger.dispose_activity(bin_id, amount, now, source=source, description=description)
            data = item.to_dict()
            return {'waste_item': data}, [(ACTION_WASTE_DISPOSED, 'waste_bin', bin_id, data)]
        return self._execute(apply)

    def seal_bin(self, bin_id):
        def apply(now):
            waste_bin = self.ledger.seal_bin(bin_id, now)
            return ({'bin_id': waste_bin.id, 'sealed_at': waste_bin.sealed_at.isoformat()},
                    [(ACTION_WASTE_BIN_SEALED, 'waste_bin', waste_bin.id, {})])
        return self._execute(apply)

    def empty_bin(self, bin_id):
        def apply(now):
            removed = self.ledger.empty_bin(bin_id)
            return ({'bin_id': bin_id, 'removed_items': removed},
                    [(ACTION_WASTE_BIN_EMPTIED, 'waste_bin', bin_id, {'removed_items': removed})])
        return self._execute(apply)

    # ------------------------------------------------------------------
    # Generator commands
    # ------------------------------------------------------------------

    def add_generator(self, extracted_activity, volume_ml, efficiency):
        def apply(now):
            generator, vial = self.generator.add_generator(extracted_activity, volume_ml, efficiency, now)
            data = {'generator': generator.to_dict(), 'vial': vial.to_dict()}
            return data, [
                (ACTION_GENERATOR_ADDED, 'generator', generator.id, data['generator']),
                (ACTION_VIAL_ADDED, 'vial', vial.id, data['vial']),
            ]
        return self._execute(apply)

    def record_extraction(self, amount, volume_ml):
        def apply(now):
            vial = self.generator.record_extraction(amount, volume_ml, now)
            data = vial.to_dict()
            return {'vial': data}, [
                (ACTION_GENERATOR_ELUTED, 'generator', self.generator.generator.id, {'vial_id': vial.id}),
                (ACTION_VIAL_ADDED, 'vial', vial.id, data),
            ]
        return self._execute(apply)

    def remove_generator(self):
        def apply(now):
            generator = self.generator.remove_generator()
            return ({'generator': generator.to_dict()},
                    [(ACTION_GENERATOR_REMOVED, 'generator', generator.id, {})])
        return self._execute(apply)

    # ------------------------------------------------------------------
    # Patient commands
    # ------------------------------------------------------------------

    def register_injection(self, patient_name, procedure='', injected_at=None, dose_activity=None,
                           unit=decay.UNIT_MCI):
        def apply(now):
            dose = None
            if dose_activity is not None:
                dose = decay.convert_activity(dose_activity, unit, decay.UNIT_MCI)
            case = self.workflow.register_injection(patient_name, procedure, injected_at or now, dose_activity=dose)
            data = case.to_dict()
            return {'patient': data}, [(ACTION_PATIENT_INJECTED, 'patient', case.id, data)]
        return self._execute(apply)

    def assign_room(self, patient_id, room_id):
        def apply(now):
            assignment = self.workflow.assign_room(patient_id, room_id, now)
            data = assignment.to_dict()
            return {'assignment': data}, [(ACTION_ROOM_ASSIGNED, 'room', room_id, data)]
        return self._execute(apply)

    def release_room(self, patient_id):
        def apply(now):
            assignment = self.workflow.release_room(patient_id)
            if assignment is None:
                return {'released': None}, []
            return ({'released': assignment.room_id},
                    [(ACTION_ROOM_RELEASED, 'room', assignment.room_id, {'patient_id': patient_id})])
        return self._execute(apply)

    def start_imaging(self, patient_id):
        def apply(now):
            session = self.workflow.start_imaging(patient_id, now)
            data = session.to_dict()
            return {'session': data}, [(ACTION_IMAGING_STARTED, 'patient', patient_id, data)]
        return self._execute(apply)

    def finish_imaging(self, patient_id, needs_additional=False, region=None, scheduled_minutes=None):
        def apply(now):
            outcome = self.workflow.finish_imaging(
                patient_id, needs_additional, now, region=region, scheduled_minutes=scheduled_minutes,
            )
            if isinstance(outcome, AdditionalImagingRequest):
                data = {'completed': False, 'additional_request': outcome.to_dict()}
                return data, [
                    (ACTION_IMAGING_FINISHED, 'patient', patient_id, {'completed': False}),
                    (ACTION_ADDITIONAL_REQUESTED, 'patient', patient_id, data['additional_request']),
                ]
            data = {'completed': True, 'patient': outcome.to_dict()}
            return data, [(ACTION_IMAGING_FINISHED, 'patient', patient_id, {'completed': True})]
        return self._execute(apply)

    def request_additional_imaging(self, patient_id, region, scheduled_minutes):
        def apply(now):
            request = self.workflow.request_additional_imaging(patient_id, region, scheduled_minutes, now)
            data = request.to_dict()
            return {'additional_request': data}, [(ACTION_ADDITIONAL_REQUESTED, 'patient', patient_id, data)]
        return self._execute(apply)

    def cancel_additional_imaging(self, patient_id):
        def apply(now):
            request = self.workflow.cancel_additional_imaging(patient_id, now)
            return ({'cancelled': request.to_dict()},
                    [(ACTION_ADDITIONAL_CANCELLED, 'patient', patient_id, {})])
        return self._execute(apply)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def inventory_status(self, unit=decay.UNIT_MCI):
        def apply(now):
            vials = self.ledger.vial_report(now)
            total = self.ledger.total_active_inventory(now)
            if unit != decay.UNIT_MCI:
                total = decay.convert_activity(total, decay.UNIT_MCI, unit)
                for vial in vials:
                    vial['current_activity'] = decay.convert_activity(vial['current_activity'], decay.UNIT_MCI, unit)
            return {
                'isotope': self.isotope.id,
                'half_life_hours': self.isotope.half_life_hours,
                'unit': unit,
                'vials': vials,
                'total_activity': total,
                'total_volume_ml': self.ledger.total_volume(),
                'concentration': self.ledger.concentration(now),
                'as_of': now.isoformat(),
            }, []
        return self._execute(apply, persist=False)

    def draw_volume(self, amount, unit=decay.UNIT_MCI):
        """Volume to draw from stock for a dose at the current concentration"""
        def apply(now):
            dose = decay.convert_activity(amount, unit, decay.UNIT_MCI)
            return {
                'amount': amount,
                'unit': unit,
                'concentration': self.ledger.concentration(now),
                'required_volume_ml': self.ledger.required_volume(dose, now),
                'as_of': now.isoformat(),
            }, []
        return self._execute(apply, persist=False)

    def waste_status(self):
        def apply(now):
            report = self.ledger.waste_report(now)
            report['as_of'] = now.isoformat()
            return report, []
        return self._execute(apply, persist=False)

    def generator_status(self):
        def apply(now):
            return {'generator': self.generator.status(now)}, []
        return self._execute(apply, persist=False)

    def patient_board(self):
        def apply(now):
            board = self.workflow.board(now)
            board['as_of'] = now.isoformat()
            return board, []
        return self._execute(apply, persist=False)

    def diagnostics_report(self):
        with self.lock:
            return {
                'success': True,
                'diagnostics': [
                    {'component': d.component, 'entity_id': d.entity_id, 'message': d.message}
                    for d in self.diagnostics.entries()
                ],
            }

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self):
        """
        Recompute every derived value against the clock and raise due alerts

        Never fails; problem records end up in diagnostics.
        """
        with self.lock:
            now = self.now()
            events = self.workflow.evaluate(now)
            total = self.ledger.total_active_inventory(now)
            alerted = self.low_stock_alerted
            events.extend(self._check_low_stock(total, now))
            waste = self.ledger.waste_report(now)['stats']
            try:
                generator = self.generator.status(now)
            except RECOMPUTE_ERRORS as e:
                self.diagnostics.report('generator', self.generator.generator.id, e)
                generator = None
            if events or alerted != self.low_stock_alerted:
                self.save()

        self.facility.dispatch(events)
        return {
            'success': True,
            'isotope': self.isotope.id,
            'as_of': now.isoformat(),
            'alerts': [e.to_dict() for e in events],
            'total_activity': total,
            'waste': waste,
            'generator': generator,
            'diagnostics': len(self.diagnostics),
        }

    def _check_low_stock(self, total, now):
        """One lowStock alert per dip to or below the threshold; re-armed once stock recovers"""
        if total > self.low_stock_threshold:
            self.low_stock_alerted = False
            return []
        if total <= 0 or self.low_stock_alerted:
            return []
        self.low_stock_alerted = True
        return [AlertEvent(
            kind=ALERT_LOW_STOCK,
            patient_id='',
            patient_name='',
            raised_at=now,
            context={'isotope_id': self.isotope.id, 'total_activity': total,
                     'threshold': self.low_stock_threshold},
        )]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def dump(self):
        return {
            'isotope': self.isotope.id,
            'inventory': self.ledger.dump(),
            'generator': self.generator.dump(),
            'workflow': self.workflow.dump(),
            'low_stock_alerted': self.low_stock_alerted,
        }

    def restore(self, state):
        self.ledger.restore(state.get('inventory') or {})
        self.generator.restore(state.get('generator'))
        self.workflow.restore(state.get('workflow') or {})
        self.low_stock_alerted = bool(state.get('low_stock_alerted', False))

    def save(self):
        try:
            self.facility.store.save(self.key, dumps(self.dump()))
        except Exception:
            logger.exception(f"Could not save state for {self.key}")

    def load(self):
        """Restore from the store; returns False when nothing usable was stored"""
        try:
            payload = self.facility.store.load(self.key)
        except Exception:
            logger.exception(f"Could not load state for {self.key}")
            return False
        if payload is None:
            return False

        try:
            state = loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            self.diagnostics.report('storage', self.key, e)
            return False
        if not isinstance(state, dict):
            self.diagnostics.report('storage', self.key, f"unexpected payload type {type(state).__name__}")
            return False

        self.restore(state)
        logger.info(f"Loaded {self.key}: {len(self.ledger.vials)} vials, "
                    f"{len(self.workflow.patients)} active patients")
        return True


class Facility:
    """
    One department: shared rooms, one lock, and an IsotopeContext per isotope

    Args:
        clock: object with now()
        notifier: object with notify(AlertEvent)
        store: object with load(key) / save(key, payload)
        audit: object with record(action, resource, resource_id, changes)
        room_ids: fixed room pool, defaults to the ROOMS setting
        isotopes: isotope table, defaults to load_isotopes()
    """

    def __init__(self, clock=None, notifier=None, store=None, audit=None, room_ids=None, isotopes=None):
        self.clock = clock or SystemClock()
        self.notifier = notifier or LoggingNotifier()
        self.store = store or MemoryStore()
        self.audit = audit or NullAuditTrail()
        self.isotopes = isotopes if isotopes is not None else load_isotopes()
        self.rooms = RoomAllocator(room_ids)
        self.lock = threading.RLock()
        self._contexts = {}

    def context(self, isotope_id):
        """Context for an isotope, loaded from the store on first use"""
        with self.lock:
            context = self._contexts.get(isotope_id)
            if context is None:
                context = IsotopeContext(self, get_isotope(isotope_id, self.isotopes))
                self._contexts[isotope_id] = context
                context.load()
            return context

    def contexts(self):
        with self.lock:
            return list(self._contexts.values())

    def tick(self, isotope_ids=None):
        if isotope_ids is not None:
            contexts = [self.context(isotope_id) for isotope_id in isotope_ids]
        else:
            contexts = self.contexts()
        return [context.tick() for context in contexts]

    def room_status(self):
        with self.lock:
            return {'success': True, 'rooms': self.rooms.status()}

    def dispatch(self, events):
        for event in events:
            try:
                self.notifier.notify(event)
            except Exception:
                logger.exception(f"Notifier failed for {event.kind} alert on {event.patient_id}")

    def record_audit(self, action, resource, resource_id, changes=None):
        try:
            self.audit.record(action, resource, resource_id, changes)
        except Exception:
            logger.exception(f"Audit trail failed for {action} on {resource} {resource_id}")


_facility = None
_facility_lock = threading.Lock()


def build_facility():
    """Facility wired with the collaborators named in settings"""
    return Facility(
        clock=import_string(get_setting('CLOCK_CLASS'))(),
        notifier=import_string(get_setting('NOTIFIER_CLASS'))(),
        store=import_string(get_setting('STORE_CLASS'))(),
        audit=import_string(get_setting('AUDIT_CLASS'))(),
    )


def get_facility():
    """Process-wide facility used by the HTTP API and the clock command"""
    global _facility
    with _facility_lock:
        if _facility is None:
            _facility = build_facility()
        return _facility


def configure_facility(facility):
    """Replace the process-wide facility (tests, custom wiring); None resets it"""
    global _facility
    with _facility_lock:
        _facility = facility
    return facility
