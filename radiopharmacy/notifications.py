"""
Alert events and the notifier collaborators that receive them.

The workflow engine only decides that an alert is due and what it says;
how it reaches staff is up to the notifier.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

logger = logging.getLogger(__name__)

ALERT_READY = 'ready'
ALERT_CRITICAL = 'critical'
ALERT_ADDITIONAL_READY = 'additionalReady'
ALERT_ROOM_READY = 'roomReady'
ALERT_BATHROOM = 'bathroom'
ALERT_DELAYED = 'delayed'
ALERT_LOW_STOCK = 'lowStock'

ALERT_KIND_CHOICES = [
    (ALERT_READY, 'Ready for imaging'),
    (ALERT_CRITICAL, 'Critical uptake time'),
    (ALERT_ADDITIONAL_READY, 'Additional imaging ready'),
    (ALERT_ROOM_READY, 'Room patient ready'),
    (ALERT_BATHROOM, 'Bathroom break'),
    (ALERT_DELAYED, 'Imaging delayed'),
    (ALERT_LOW_STOCK, 'Low stock'),
]


@dataclass(frozen=True)
class AlertEvent:
    kind: str
    # Empty for facility-level alerts such as lowStock
    patient_id: str
    patient_name: str
    raised_at: datetime
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return {
            'kind': self.kind,
            'patient_id': self.patient_id,
            'patient_name': self.patient_name,
            'raised_at': self.raised_at.isoformat(),
            'context': dict(self.context),
        }


class LoggingNotifier:
    """Writes alerts to the log; the default when nothing else is configured"""

    def notify(self, event):
        if event.patient_id:
            logger.info(f"ALERT {event.kind}: {event.patient_name} ({event.patient_id}) {event.context}")
        else:
            logger.warning(f"ALERT {event.kind}: {event.context}")


class MemoryNotifier:
    """Collects alerts in a list, for tests and the API's recent-alerts view"""

    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def of_kind(self, kind, patient_id=None):
        return [
            e for e in self.events
            if e.kind == kind and (patient_id is None or e.patient_id == patient_id)
        ]

    def clear(self):
        self.events = []


class DatabaseNotifier:
    """Stores alerts as NotificationRecord rows (notification history)"""

    def notify(self, event):
        from .models import NotificationRecord

        NotificationRecord.objects.create(
            kind=event.kind,
            patient_id=event.patient_id,
            patient_name=event.patient_name,
            isotope_id=event.context.get('isotope_id', ''),
            context=event.context,
            raised_at=event.raised_at,
        )
