from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from .audit import ACTION_CHOICES
from .notifications import ALERT_KIND_CHOICES


class StoredRecord(models.Model):
    """
    Opaque state blob for one isotope context

    The core decides what goes into the payload; this table only keeps
    the bytes under their key.
    """

    key = models.CharField(
        max_length=100,
        unique=True,
        help_text="Context key, e.g. 'radiopharmacy:f18'"
    )
    payload = models.BinaryField(
        help_text="Serialized context state (JSON, UTF-8)"
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['key']
        verbose_name = 'Stored Context State'
        verbose_name_plural = 'Stored Context States'

    def __str__(self):
        return f"{self.key} ({len(self.payload or b'')} bytes)"


class NotificationRecord(models.Model):
    """Alert history as raised by the workflow engine"""

    kind = models.CharField(
        max_length=30,
        choices=ALERT_KIND_CHOICES,
    )
    patient_id = models.CharField(
        max_length=40,
        blank=True,
        db_index=True,
        help_text="Empty for stock alerts"
    )
    patient_name = models.CharField(max_length=200, blank=True)
    isotope_id = models.CharField(
        max_length=20,
        blank=True,
        help_text="Isotope context the alert came from"
    )
    context = models.JSONField(
        default=dict,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Room, elapsed minutes, region and similar details"
    )
    raised_at = models.DateTimeField(
        help_text="Tick time at which the threshold crossing was detected"
    )
    acknowledged = models.BooleanField(default=False)

    class Meta:
        ordering = ['-raised_at']
        verbose_name = 'Notification'
        verbose_name_plural = 'Notifications'

    def __str__(self):
        return f"{self.get_kind_display()} - {self.patient_name or self.isotope_id}"


class AuditEntry(models.Model):
    """Operational history of committed commands"""

    action = models.CharField(
        max_length=40,
        choices=ACTION_CHOICES,
    )
    resource = models.CharField(
        max_length=40,
        help_text="Entity type: vial, waste_bin, generator, patient, room"
    )
    resource_id = models.CharField(max_length=40, blank=True)
    changes = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Audit Entry'
        verbose_name_plural = 'Audit Entries'

    def __str__(self):
        return f"{self.get_action_display()} {self.resource} {self.resource_id}"
