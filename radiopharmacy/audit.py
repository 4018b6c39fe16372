"""
Audit trail collaborators

Fed from the command surface after each committed change. This is an
operational history, not a legally traceable record.
"""

import logging

logger = logging.getLogger(__name__)

ACTION_VIAL_ADDED = 'vial_added'
ACTION_VIAL_REMOVED = 'vial_removed'
ACTION_WASTE_DISPOSED = 'waste_disposed'
ACTION_WASTE_BIN_ADDED = 'waste_bin_added'
ACTION_WASTE_BIN_SEALED = 'waste_bin_sealed'
ACTION_WASTE_BIN_EMPTIED = 'waste_bin_emptied'
ACTION_GENERATOR_ADDED = 'generator_added'
ACTION_GENERATOR_ELUTED = 'generator_eluted'
ACTION_GENERATOR_REMOVED = 'generator_removed'
ACTION_PATIENT_INJECTED = 'patient_injected'
ACTION_ROOM_ASSIGNED = 'room_assigned'
ACTION_ROOM_RELEASED = 'room_released'
ACTION_IMAGING_STARTED = 'imaging_started'
ACTION_IMAGING_FINISHED = 'imaging_finished'
ACTION_ADDITIONAL_REQUESTED = 'additional_imaging_requested'
ACTION_ADDITIONAL_CANCELLED = 'additional_imaging_cancelled'

ACTION_CHOICES = [
    (ACTION_VIAL_ADDED, 'Vial added'),
    (ACTION_VIAL_REMOVED, 'Vial removed'),
    (ACTION_WASTE_DISPOSED, 'Waste disposed'),
    (ACTION_WASTE_BIN_ADDED, 'Waste bin added'),
    (ACTION_WASTE_BIN_SEALED, 'Waste bin sealed'),
    (ACTION_WASTE_BIN_EMPTIED, 'Waste bin emptied'),
    (ACTION_GENERATOR_ADDED, 'Generator added'),
    (ACTION_GENERATOR_ELUTED, 'Generator eluted'),
    (ACTION_GENERATOR_REMOVED, 'Generator removed'),
    (ACTION_PATIENT_INJECTED, 'Patient injected'),
    (ACTION_ROOM_ASSIGNED, 'Room assigned'),
    (ACTION_ROOM_RELEASED, 'Room released'),
    (ACTION_IMAGING_STARTED, 'Imaging started'),
    (ACTION_IMAGING_FINISHED, 'Imaging finished'),
    (ACTION_ADDITIONAL_REQUESTED, 'Additional imaging requested'),
    (ACTION_ADDITIONAL_CANCELLED, 'Additional imaging cancelled'),
]


class NullAuditTrail:

    def record(self, action, resource, resource_id, changes=None):
        pass


class MemoryAuditTrail:

    def __init__(self):
        self.entries = []

    def record(self, action, resource, resource_id, changes=None):
        self.entries.append((action, resource, resource_id, changes or {}))

    def actions(self):
        return [entry[0] for entry in self.entries]


class DatabaseAuditTrail:
    """One AuditEntry row per committed command"""

    def record(self, action, resource, resource_id, changes=None):
        from .models import AuditEntry

        AuditEntry.objects.create(
            action=action,
            resource=resource,
            resource_id=resource_id or '',
            changes=changes or {},
        )
