from django import forms

from .conf import get_setting
from .decay import ACTIVITY_UNITS, UNIT_MCI
from .inventory import BIN_CATEGORIES, WASTE_SOURCES

UNIT_CHOICES = [(unit, unit) for unit in ACTIVITY_UNITS]


class VialForm(forms.Form):
    """New stock vial"""

    initial_activity = forms.FloatField(
        help_text="Activity at receipt"
    )
    unit = forms.ChoiceField(choices=UNIT_CHOICES, required=False)
    initial_volume_ml = forms.FloatField(min_value=0, required=False)
    label = forms.CharField(max_length=200, required=False)
    received_at = forms.DateTimeField(
        required=False,
        help_text="Defaults to now"
    )

    def clean_unit(self):
        return self.cleaned_data.get('unit') or UNIT_MCI

    def clean_initial_volume_ml(self):
        return self.cleaned_data.get('initial_volume_ml') or 0.0


class DisposeVialForm(forms.Form):
    bin_id = forms.CharField(
        max_length=40,
        required=False,
        help_text="Defaults to the first open solid waste bin"
    )


class WasteBinForm(forms.Form):
    name = forms.CharField(max_length=100)
    category = forms.ChoiceField(
        choices=[(c, c.title()) for c in BIN_CATEGORIES],
        required=False,
    )

    def clean_category(self):
        return self.cleaned_data.get('category') or 'solid'


class DisposeActivityForm(forms.Form):
    """Residual activity (syringes, swabs, gloves) into a bin"""

    activity = forms.FloatField(min_value=0)
    unit = forms.ChoiceField(choices=UNIT_CHOICES, required=False)
    source = forms.ChoiceField(
        choices=[(s, s.title()) for s in WASTE_SOURCES],
        required=False,
    )
    description = forms.CharField(max_length=200, required=False)

    def clean_unit(self):
        return self.cleaned_data.get('unit') or UNIT_MCI

    def clean_source(self):
        return self.cleaned_data.get('source') or 'other'


class GeneratorForm(forms.Form):
    """First extraction of a newly delivered generator"""

    extracted_activity = forms.FloatField()
    volume_ml = forms.FloatField()
    efficiency = forms.FloatField(
        min_value=0,
        max_value=1,
        help_text="Assumed extraction efficiency as a fraction, e.g. 0.9"
    )


class ExtractionForm(forms.Form):
    amount = forms.FloatField()
    volume_ml = forms.FloatField()


class InjectionForm(forms.Form):
    patient_name = forms.CharField(max_length=200)
    procedure = forms.CharField(max_length=200, required=False)
    dose_activity = forms.FloatField(
        min_value=0,
        required=False,
        help_text="Administered dose; leave empty when no dose was drawn"
    )
    unit = forms.ChoiceField(choices=UNIT_CHOICES, required=False)
    injected_at = forms.DateTimeField(
        required=False,
        help_text="Defaults to now"
    )

    def clean_unit(self):
        return self.cleaned_data.get('unit') or UNIT_MCI


class DrawVolumeForm(forms.Form):
    """Dose to draw from the current stock"""

    amount = forms.FloatField(min_value=0)
    unit = forms.ChoiceField(choices=UNIT_CHOICES, required=False)

    def clean_unit(self):
        return self.cleaned_data.get('unit') or UNIT_MCI


class AssignRoomForm(forms.Form):
    room_id = forms.CharField(max_length=20)


def _minutes_choices():
    return [(m, f"{m} minutes") for m in get_setting('ADDITIONAL_IMAGING_MINUTES')]


class AdditionalImagingForm(forms.Form):
    region = forms.CharField(max_length=100)
    scheduled_minutes = forms.TypedChoiceField(coerce=int)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['scheduled_minutes'].choices = _minutes_choices()


class FinishImagingForm(forms.Form):
    needs_additional = forms.BooleanField(required=False)
    region = forms.CharField(max_length=100, required=False)
    scheduled_minutes = forms.TypedChoiceField(coerce=int, required=False, empty_value=None)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['scheduled_minutes'].choices = [('', '---')] + _minutes_choices()

    def clean(self):
        """Additional imaging needs both a region and a delay"""
        cleaned_data = super().clean()
        if cleaned_data.get('needs_additional'):
            if not cleaned_data.get('region'):
                self.add_error('region', 'Region is required for additional imaging.')
            if cleaned_data.get('scheduled_minutes') is None:
                self.add_error('scheduled_minutes', 'Delay is required for additional imaging.')
        return cleaned_data
