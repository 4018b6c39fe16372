"""
Room Allocator

Fixed pool of injection (uptake) rooms. The pool is known at startup and
never grows; PET isotopes share it, so one allocator serves every
isotope context of a facility.
"""

import logging

from .conf import get_setting
from .exceptions import RoomUnavailable, UnknownEntity
from .records import RoomAssignment

logger = logging.getLogger(__name__)


class RoomAllocator:

    def __init__(self, room_ids=None):
        room_ids = list(room_ids if room_ids is not None else get_setting('ROOMS'))
        if len(set(room_ids)) != len(room_ids):
            raise ValueError(f"Duplicate room ids in {room_ids}")
        self.room_ids = tuple(room_ids)
        self._assignments = {}  # room_id -> RoomAssignment

    def _check_room(self, room_id):
        if room_id not in self.room_ids:
            raise UnknownEntity(f"Unknown room '{room_id}'")

    def assign(self, room_id, patient_id, patient_name, now):
        """
        Put a patient in a room

        Raises:
            UnknownEntity: room is not part of the pool
            RoomUnavailable: room already holds a patient
        """
        self._check_room(room_id)
        current = self._assignments.get(room_id)
        if current is not None:
            raise RoomUnavailable(f"Room {room_id} is occupied by {current.patient_name}")

        assignment = RoomAssignment(
            room_id=room_id,
            patient_id=patient_id,
            patient_name=patient_name,
            started_at=now,
        )
        self._assignments[room_id] = assignment
        logger.info(f"Room {room_id} assigned to {patient_id}")
        return assignment

    def restore_assignment(self, assignment):
        """Re-seat a persisted assignment; refuses conflicts like assign()"""
        self._check_room(assignment.room_id)
        current = self._assignments.get(assignment.room_id)
        if current is not None and current.patient_id != assignment.patient_id:
            raise RoomUnavailable(f"Room {assignment.room_id} is occupied by {current.patient_name}")
        self._assignments[assignment.room_id] = assignment

    def release(self, room_id):
        """Free a room. Releasing a free room is a no-op."""
        self._check_room(room_id)
        assignment = self._assignments.pop(room_id, None)
        if assignment is not None:
            logger.info(f"Room {room_id} released by {assignment.patient_id}")
        return assignment

    def release_patient(self, patient_id):
        assignment = self.room_of(patient_id)
        if assignment is None:
            return None
        return self.release(assignment.room_id)

    def room_of(self, patient_id):
        for assignment in self._assignments.values():
            if assignment.patient_id == patient_id:
                return assignment
        return None

    def is_occupied(self, room_id):
        self._check_room(room_id)
        return room_id in self._assignments

    def available_rooms(self):
        return [room_id for room_id in self.room_ids if room_id not in self._assignments]

    def assignments(self):
        return dict(self._assignments)

    def status(self):
        return [
            {
                'room_id': room_id,
                'occupied': room_id in self._assignments,
                'patient_id': self._assignments[room_id].patient_id if room_id in self._assignments else None,
                'patient_name': self._assignments[room_id].patient_name if room_id in self._assignments else None,
                'started_at': (self._assignments[room_id].started_at.isoformat()
                               if room_id in self._assignments else None),
            }
            for room_id in self.room_ids
        ]
