"""
JSON API over the isotope context command surface

Views only validate input and pick the context; every state change goes
through IsotopeContext, which returns a result dict that is passed back
as-is. Error kinds map to HTTP statuses through the exception classes.
"""

import json
from functools import wraps

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .context import error_result, get_facility
from .decay import ACTIVITY_UNITS, UNIT_MCI
from .exceptions import ArithmeticPrecondition, InvalidRequest, RoomUnavailable, UnknownEntity
from .forms import (
    AdditionalImagingForm, AssignRoomForm, DisposeActivityForm, DisposeVialForm, DrawVolumeForm, ExtractionForm,
    FinishImagingForm, GeneratorForm, InjectionForm, VialForm, WasteBinForm,
)

STATUS_BY_ERROR = {
    cls.kind: cls.http_status
    for cls in (InvalidRequest, UnknownEntity, RoomUnavailable, ArithmeticPrecondition)
}


def _respond(result):
    if result.get('success'):
        return JsonResponse(result)
    return JsonResponse(result, status=STATUS_BY_ERROR.get(result.get('error'), 400))


def _request_data(request):
    """Form-encoded POST data or a JSON object body"""
    if request.content_type == 'application/json':
        try:
            data = json.loads(request.body or b'{}')
        except ValueError as e:
            raise InvalidRequest(f"Malformed JSON body: {e}") from e
        if not isinstance(data, dict):
            raise InvalidRequest("JSON body must be an object")
        return data
    return request.POST


def _form_errors(form):
    result = error_result(InvalidRequest('Invalid input'))
    result['errors'] = form.errors.get_json_data()
    return JsonResponse(result, status=400)


def _isotope_command(form_class=None):
    """
    Decorator for views that act on one isotope context

    Resolves the context (404 for an unknown isotope), validates the
    request with form_class if given, and turns the result into a response.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(request, isotope_id, *args, **kwargs):
            try:
                context = get_facility().context(isotope_id)
                data = _request_data(request) if request.method == 'POST' else request.GET
            except (UnknownEntity, InvalidRequest) as e:
                return _respond(error_result(e))

            if form_class is not None:
                form = form_class(data)
                if not form.is_valid():
                    return _form_errors(form)
                return _respond(view(request, context, form.cleaned_data, *args, **kwargs))
            return _respond(view(request, context, *args, **kwargs))
        return wrapper
    return decorator


@require_GET
def isotope_list(request):
    """Isotopes the facility can track"""
    facility = get_facility()
    isotopes = [
        {
            'id': iso.id,
            'name': iso.name,
            'nuclide': iso.nuclide,
            'half_life_hours': iso.half_life_hours,
            'parent': iso.parent.id if iso.parent else None,
            'uptake_class': iso.uptake_class,
        }
        for iso in sorted(facility.isotopes.values(), key=lambda i: i.id)
    ]
    return JsonResponse({'success': True, 'isotopes': isotopes})


@require_GET
def room_status(request):
    return JsonResponse(get_facility().room_status())


# ----------------------------------------------------------------------
# Inventory
# ----------------------------------------------------------------------

@require_GET
@_isotope_command()
def inventory_status(request, context):
    unit = request.GET.get('unit', UNIT_MCI)
    if unit not in ACTIVITY_UNITS:
        return error_result(InvalidRequest(f"Unknown activity unit: {unit}"))
    return context.inventory_status(unit=unit)


@csrf_exempt
@require_POST
@_isotope_command(VialForm)
def add_vial(request, context, data):
    return context.add_vial(
        data['initial_activity'],
        data['initial_volume_ml'],
        label=data['label'],
        received_at=data['received_at'],
        unit=data['unit'],
    )


@csrf_exempt
@require_POST
@_isotope_command(DisposeVialForm)
def dispose_vial(request, context, data, vial_id):
    return context.dispose_vial(vial_id, bin_id=data['bin_id'] or None)


@require_GET
@_isotope_command(DrawVolumeForm)
def draw_volume(request, context, data):
    return context.draw_volume(data['amount'], unit=data['unit'])


@require_GET
@_isotope_command()
def waste_status(request, context):
    return context.waste_status()


@csrf_exempt
@require_POST
@_isotope_command(WasteBinForm)
def add_waste_bin(request, context, data):
    return context.add_waste_bin(data['name'], data['category'])


@csrf_exempt
@require_POST
@_isotope_command(DisposeActivityForm)
def dispose_activity(request, context, data, bin_id):
    return context.dispose_activity(
        bin_id,
        data['activity'],
        source=data['source'],
        description=data['description'],
        unit=data['unit'],
    )


@csrf_exempt
@require_POST
@_isotope_command()
def seal_bin(request, context, bin_id):
    return context.seal_bin(bin_id)


@csrf_exempt
@require_POST
@_isotope_command()
def empty_bin(request, context, bin_id):
    return context.empty_bin(bin_id)


# ----------------------------------------------------------------------
# Generator
# ----------------------------------------------------------------------

@csrf_exempt
@require_http_methods(['GET', 'POST'])
def generator(request, isotope_id):
    """GET: generator status. POST: activate from a first extraction."""
    if request.method == 'GET':
        return _generator_status(request, isotope_id)
    return _add_generator(request, isotope_id)


@_isotope_command()
def _generator_status(request, context):
    return context.generator_status()


@_isotope_command(GeneratorForm)
def _add_generator(request, context, data):
    return context.add_generator(data['extracted_activity'], data['volume_ml'], data['efficiency'])


@csrf_exempt
@require_POST
@_isotope_command(ExtractionForm)
def record_extraction(request, context, data):
    return context.record_extraction(data['amount'], data['volume_ml'])


@csrf_exempt
@require_POST
@_isotope_command()
def remove_generator(request, context):
    return context.remove_generator()


# ----------------------------------------------------------------------
# Patients
# ----------------------------------------------------------------------

@csrf_exempt
@require_http_methods(['GET', 'POST'])
def patients(request, isotope_id):
    """GET: patient board. POST: register an injection."""
    if request.method == 'GET':
        return _patient_board(request, isotope_id)
    return _register_injection(request, isotope_id)


@_isotope_command()
def _patient_board(request, context):
    return context.patient_board()


@_isotope_command(InjectionForm)
def _register_injection(request, context, data):
    return context.register_injection(
        data['patient_name'],
        data['procedure'],
        injected_at=data['injected_at'],
        dose_activity=data['dose_activity'],
        unit=data['unit'],
    )


@csrf_exempt
@require_POST
@_isotope_command(AssignRoomForm)
def assign_room(request, context, data, patient_id):
    return context.assign_room(patient_id, data['room_id'])


@csrf_exempt
@require_POST
@_isotope_command()
def release_room(request, context, patient_id):
    return context.release_room(patient_id)


@csrf_exempt
@require_POST
@_isotope_command()
def start_imaging(request, context, patient_id):
    return context.start_imaging(patient_id)


@csrf_exempt
@require_POST
@_isotope_command(FinishImagingForm)
def finish_imaging(request, context, data, patient_id):
    return context.finish_imaging(
        patient_id,
        needs_additional=data['needs_additional'],
        region=data['region'],
        scheduled_minutes=data['scheduled_minutes'],
    )


@csrf_exempt
@require_POST
@_isotope_command(AdditionalImagingForm)
def request_additional_imaging(request, context, data, patient_id):
    return context.request_additional_imaging(patient_id, data['region'], data['scheduled_minutes'])


@csrf_exempt
@require_POST
@_isotope_command()
def cancel_additional_imaging(request, context, patient_id):
    return context.cancel_additional_imaging(patient_id)


# ----------------------------------------------------------------------
# Clock and diagnostics
# ----------------------------------------------------------------------

@csrf_exempt
@require_POST
@_isotope_command()
def tick(request, context):
    """Run one tick now instead of waiting for the clock driver"""
    return context.tick()


@require_GET
@_isotope_command()
def diagnostics(request, context):
    return context.diagnostics_report()
