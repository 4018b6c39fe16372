"""
In-memory records owned by the ledger, generator tracker and workflow engine.

Each record converts to and from a plain dict so the persistence
collaborator can store it as JSON. Timestamps are timezone-aware
datetimes; on the way back in they are parsed with Django's dateparse.
"""

import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .exceptions import InvalidRequest

# What from_dict can raise on a corrupt stored record
LOAD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def new_id(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def record_id(raw):
    """Best-effort id of a raw stored record, for diagnostics"""
    if isinstance(raw, dict):
        return raw.get('id') or raw.get('room_id') or raw.get('patient_id') or '?'
    return '?'


def require_text(value, what, required=True):
    """Stripped text from a caller, InvalidRequest for anything else"""
    if value is None and not required:
        return ''
    if not isinstance(value, str):
        raise InvalidRequest(f"{what} must be text, got {type(value).__name__}")
    value = value.strip()
    if required and not value:
        raise InvalidRequest(f"{what} is required")
    return value


def require_timestamp(value, what):
    if not isinstance(value, datetime) or not timezone.is_aware(value):
        raise InvalidRequest(f"{what} must be a timezone-aware datetime, got {value!r}")
    return value


def _dt(value):
    """Parse an ISO timestamp from storage (None passes through)"""
    if value is None or isinstance(value, datetime):
        return value
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Malformed timestamp: {value!r}")
    return parsed


def _required_dt(value):
    if value is None:
        raise ValueError("Missing timestamp")
    return _dt(value)


def _optional_float(value):
    return float(value) if value is not None else None


def _positive(value):
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Expected a positive activity, got {value!r}")
    return value


def _iso(value):
    return value.isoformat() if value is not None else None


@dataclass
class Vial:
    id: str
    isotope_id: str
    initial_activity: float
    initial_volume_ml: float
    received_at: datetime
    label: str = ''

    def to_dict(self):
        data = asdict(self)
        data['received_at'] = _iso(self.received_at)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            isotope_id=data['isotope_id'],
            initial_activity=_positive(data['initial_activity']),
            initial_volume_ml=float(data.get('initial_volume_ml') or 0.0),
            received_at=_required_dt(data['received_at']),
            label=data.get('label', ''),
        )


@dataclass(frozen=True)
class WasteItem:
    id: str
    isotope_id: str
    bin_id: str
    activity: float
    disposed_at: datetime
    source: str = 'other'
    description: str = ''

    def to_dict(self):
        data = asdict(self)
        data['disposed_at'] = _iso(self.disposed_at)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            isotope_id=data['isotope_id'],
            bin_id=data['bin_id'],
            activity=float(data['activity']),
            disposed_at=_required_dt(data['disposed_at']),
            source=data.get('source', 'other'),
            description=data.get('description', ''),
        )


@dataclass
class WasteBin:
    id: str
    name: str
    category: str
    items: List[WasteItem] = field(default_factory=list)
    is_sealed: bool = False
    sealed_at: Optional[datetime] = None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'items': [item.to_dict() for item in self.items],
            'is_sealed': self.is_sealed,
            'sealed_at': _iso(self.sealed_at),
        }

    @classmethod
    def from_dict(cls, data):
        # Items are restored separately by the ledger so one corrupt item
        # does not take the whole bin down with it
        return cls(
            id=data['id'],
            name=data['name'],
            category=data['category'],
            is_sealed=bool(data.get('is_sealed', False)),
            sealed_at=_dt(data.get('sealed_at')),
        )


@dataclass
class Generator:
    id: str
    isotope_id: str
    parent_initial_activity: float
    received_at: datetime
    efficiency: float
    last_extraction_at: Optional[datetime] = None
    extraction_count: int = 0

    def to_dict(self):
        data = asdict(self)
        data['received_at'] = _iso(self.received_at)
        data['last_extraction_at'] = _iso(self.last_extraction_at)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            isotope_id=data['isotope_id'],
            parent_initial_activity=float(data['parent_initial_activity']),
            received_at=_required_dt(data['received_at']),
            efficiency=float(data['efficiency']),
            last_extraction_at=_dt(data.get('last_extraction_at')),
            extraction_count=int(data.get('extraction_count', 0)),
        )


@dataclass
class PatientCase:
    id: str
    patient_name: str
    injected_at: datetime
    procedure: str
    isotope_id: str
    completed_at: Optional[datetime] = None
    # Administered dose in mCi, None when not recorded
    dose_activity: Optional[float] = None

    def to_dict(self):
        data = asdict(self)
        data['injected_at'] = _iso(self.injected_at)
        data['completed_at'] = _iso(self.completed_at)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            patient_name=data['patient_name'],
            injected_at=_required_dt(data['injected_at']),
            procedure=data.get('procedure', ''),
            isotope_id=data['isotope_id'],
            completed_at=_dt(data.get('completed_at')),
            dose_activity=_optional_float(data.get('dose_activity')),
        )


@dataclass(frozen=True)
class RoomAssignment:
    room_id: str
    patient_id: str
    patient_name: str
    started_at: datetime

    def to_dict(self):
        data = asdict(self)
        data['started_at'] = _iso(self.started_at)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            room_id=data['room_id'],
            patient_id=data['patient_id'],
            patient_name=data['patient_name'],
            started_at=_required_dt(data['started_at']),
        )


@dataclass(frozen=True)
class ImagingSession:
    patient_id: str
    started_at: datetime
    is_additional: bool = False

    def to_dict(self):
        data = asdict(self)
        data['started_at'] = _iso(self.started_at)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            patient_id=data['patient_id'],
            started_at=_required_dt(data['started_at']),
            is_additional=bool(data.get('is_additional', False)),
        )


@dataclass(frozen=True)
class AdditionalImagingRequest:
    patient_id: str
    region: str
    added_at: datetime
    scheduled_minutes: int

    def to_dict(self):
        data = asdict(self)
        data['added_at'] = _iso(self.added_at)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            patient_id=data['patient_id'],
            region=data['region'],
            added_at=_required_dt(data['added_at']),
            scheduled_minutes=int(data['scheduled_minutes']),
        )
