from django.contrib import admin
from django.utils.html import format_html

from .models import AuditEntry, NotificationRecord, StoredRecord


@admin.register(StoredRecord)
class StoredRecordAdmin(admin.ModelAdmin):
    """Read-only view of persisted context state"""

    list_display = ['key', 'payload_size', 'updated_at']
    search_fields = ['key']
    readonly_fields = ['key', 'payload_preview', 'updated_at']
    exclude = ['payload']

    def payload_size(self, obj):
        return f"{len(obj.payload or b'')} bytes"
    payload_size.short_description = 'Size'

    def payload_preview(self, obj):
        text = bytes(obj.payload or b'').decode('utf-8', errors='replace')
        return format_html('<pre style="max-height: 400px; overflow: auto;">{}</pre>', text[:5000])
    payload_preview.short_description = 'Payload'

    def has_add_permission(self, request):
        return False


@admin.register(NotificationRecord)
class NotificationRecordAdmin(admin.ModelAdmin):
    """Alert history"""

    list_display = ['raised_at', 'kind_badge', 'patient_name', 'isotope_id', 'acknowledged']
    list_filter = ['kind', 'isotope_id', 'acknowledged', 'raised_at']
    search_fields = ['patient_name', 'patient_id']
    readonly_fields = ['kind', 'patient_id', 'patient_name', 'isotope_id', 'context', 'raised_at']
    list_editable = ['acknowledged']

    fieldsets = (
        ('Alert', {
            'fields': ('kind', 'raised_at', 'acknowledged')
        }),
        ('Patient', {
            'fields': ('patient_id', 'patient_name', 'isotope_id')
        }),
        ('Details', {
            'fields': ('context',),
            'classes': ('collapse',)
        }),
    )

    def kind_badge(self, obj):
        colors = {
            'critical': '#dc3545',
            'delayed': '#fd7e14',
            'roomReady': '#28a745',
            'ready': '#28a745',
            'additionalReady': '#17a2b8',
            'bathroom': '#6c757d',
            'lowStock': '#ffc107',
        }
        color = colors.get(obj.kind, '#6c757d')
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
            color,
            obj.get_kind_display()
        )
    kind_badge.short_description = 'Kind'


@admin.register(AuditEntry)
class AuditEntryAdmin(admin.ModelAdmin):
    """Command history"""

    list_display = ['created_at', 'action', 'resource', 'resource_id']
    list_filter = ['action', 'resource', 'created_at']
    search_fields = ['resource_id']
    readonly_fields = ['action', 'resource', 'resource_id', 'changes', 'created_at']

    def has_add_permission(self, request):
        return False
