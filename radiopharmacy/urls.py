from django.urls import path
from . import views

app_name = 'radiopharmacy'

urlpatterns = [
    path('isotopes/', views.isotope_list, name='isotope_list'),
    path('rooms/', views.room_status, name='room_status'),

    # Inventory and waste
    path('<str:isotope_id>/inventory/', views.inventory_status, name='inventory_status'),
    path('<str:isotope_id>/vials/', views.add_vial, name='add_vial'),
    path('<str:isotope_id>/draw/', views.draw_volume, name='draw_volume'),
    path('<str:isotope_id>/vials/<str:vial_id>/dispose/', views.dispose_vial, name='dispose_vial'),
    path('<str:isotope_id>/waste/', views.waste_status, name='waste_status'),
    path('<str:isotope_id>/waste/bins/', views.add_waste_bin, name='add_waste_bin'),
    path('<str:isotope_id>/waste/bins/<str:bin_id>/dispose/', views.dispose_activity, name='dispose_activity'),
    path('<str:isotope_id>/waste/bins/<str:bin_id>/seal/', views.seal_bin, name='seal_bin'),
    path('<str:isotope_id>/waste/bins/<str:bin_id>/empty/', views.empty_bin, name='empty_bin'),

    # Generator
    path('<str:isotope_id>/generator/', views.generator, name='generator'),
    path('<str:isotope_id>/generator/extract/', views.record_extraction, name='record_extraction'),
    path('<str:isotope_id>/generator/remove/', views.remove_generator, name='remove_generator'),

    # Patient workflow
    path('<str:isotope_id>/patients/', views.patients, name='patients'),
    path('<str:isotope_id>/patients/<str:patient_id>/room/', views.assign_room, name='assign_room'),
    path('<str:isotope_id>/patients/<str:patient_id>/room/release/', views.release_room, name='release_room'),
    path('<str:isotope_id>/patients/<str:patient_id>/imaging/start/', views.start_imaging, name='start_imaging'),
    path('<str:isotope_id>/patients/<str:patient_id>/imaging/finish/', views.finish_imaging, name='finish_imaging'),
    path('<str:isotope_id>/patients/<str:patient_id>/additional/', views.request_additional_imaging,
         name='request_additional_imaging'),
    path('<str:isotope_id>/patients/<str:patient_id>/additional/cancel/', views.cancel_additional_imaging,
         name='cancel_additional_imaging'),

    # Clock and diagnostics
    path('<str:isotope_id>/tick/', views.tick, name='tick'),
    path('<str:isotope_id>/diagnostics/', views.diagnostics, name='diagnostics'),
]
