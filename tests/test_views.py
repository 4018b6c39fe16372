"""
Tests for the JSON API
"""

import json

from django.test import TestCase
from django.urls import reverse

from radiopharmacy.clock import FixedClock
from radiopharmacy.context import Facility, configure_facility
from radiopharmacy.notifications import MemoryNotifier
from radiopharmacy.storage import MemoryStore
from tests.fixtures.reference_data import ROOMS, T0


class ApiTestCase(TestCase):

    def setUp(self):
        self.clock = FixedClock(T0)
        self.notifier = MemoryNotifier()
        configure_facility(Facility(clock=self.clock, notifier=self.notifier, store=MemoryStore(), room_ids=ROOMS))

    def tearDown(self):
        configure_facility(None)

    def post_json(self, name, data=None, **kwargs):
        return self.client.post(reverse(f'radiopharmacy:{name}', kwargs=kwargs),
                                data=json.dumps(data or {}), content_type='application/json')


class InventoryApiTests(ApiTestCase):

    def test_add_and_list_vials(self):
        response = self.post_json('add_vial', {'initial_activity': 10, 'initial_volume_ml': 2, 'label': 'Batch 1'},
                                  isotope_id='f18')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['success'])

        response = self.client.get(reverse('radiopharmacy:inventory_status', kwargs={'isotope_id': 'f18'}))
        data = response.json()
        self.assertEqual(len(data['vials']), 1)
        self.assertAlmostEqual(data['total_activity'], 10.0)

    def test_form_post_accepted(self):
        response = self.client.post(reverse('radiopharmacy:add_vial', kwargs={'isotope_id': 'f18'}),
                                    {'initial_activity': '370', 'unit': 'MBq'})
        self.assertEqual(response.json()['vial']['initial_activity'], 10.0)

    def test_invalid_form(self):
        response = self.post_json('add_vial', {'initial_activity': 'a lot'}, isotope_id='f18')
        self.assertEqual(response.status_code, 400)
        self.assertIn('initial_activity', response.json()['errors'])

    def test_core_rejection_maps_to_status(self):
        response = self.post_json('add_vial', {'initial_activity': -3}, isotope_id='f18')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'InvalidRequest')

        response = self.post_json('dispose_vial', isotope_id='f18', vial_id='vial_missing')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'UnknownEntity')

    def test_unknown_isotope(self):
        response = self.client.get(reverse('radiopharmacy:inventory_status', kwargs={'isotope_id': 'xx999'}))
        self.assertEqual(response.status_code, 404)

    def test_malformed_json(self):
        response = self.client.post(reverse('radiopharmacy:add_vial', kwargs={'isotope_id': 'f18'}),
                                    data='{not json', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_waste_flow(self):
        bin_id = self.post_json('add_waste_bin', {'name': 'Sharps', 'category': 'sharp'},
                                isotope_id='f18').json()['bin']['id']
        self.assertTrue(self.post_json('dispose_activity', {'activity': 0.5, 'source': 'preparation'},
                                       isotope_id='f18', bin_id=bin_id).json()['success'])
        self.assertTrue(self.post_json('seal_bin', isotope_id='f18', bin_id=bin_id).json()['success'])

        response = self.post_json('dispose_activity', {'activity': 0.5}, isotope_id='f18', bin_id=bin_id)
        self.assertEqual(response.status_code, 400)

        waste = self.client.get(reverse('radiopharmacy:waste_status', kwargs={'isotope_id': 'f18'})).json()
        self.assertEqual(waste['stats']['cold_items'], 1)

        self.assertEqual(self.post_json('empty_bin', isotope_id='f18', bin_id=bin_id).json()['removed_items'], 1)

    def test_get_only_endpoints_refuse_post(self):
        response = self.client.post(reverse('radiopharmacy:waste_status', kwargs={'isotope_id': 'f18'}))
        self.assertEqual(response.status_code, 405)

    def test_draw_volume(self):
        self.post_json('add_vial', {'initial_activity': 20, 'initial_volume_ml': 4}, isotope_id='f18')
        url = reverse('radiopharmacy:draw_volume', kwargs={'isotope_id': 'f18'})

        data = self.client.get(url, {'amount': '10'}).json()
        self.assertAlmostEqual(data['required_volume_ml'], 2.0)
        self.assertAlmostEqual(data['concentration'], 5.0)

        self.assertEqual(self.client.get(url).status_code, 400)
        self.assertEqual(self.client.get(url, {'amount': '-1'}).status_code, 400)


class GeneratorApiTests(ApiTestCase):

    def test_generator_lifecycle(self):
        url = reverse('radiopharmacy:generator', kwargs={'isotope_id': 'tc99m'})
        self.assertEqual(self.client.get(url).json()['generator']['state'], 'absent')

        response = self.post_json('generator', {'extracted_activity': 870, 'volume_ml': 10, 'efficiency': 1},
                                  isotope_id='tc99m')
        self.assertAlmostEqual(response.json()['generator']['parent_initial_activity'], 1000.0)

        self.clock.advance(hours=24)
        self.assertTrue(self.post_json('record_extraction', {'amount': 500, 'volume_ml': 10},
                                       isotope_id='tc99m').json()['success'])
        self.assertTrue(self.post_json('remove_generator', isotope_id='tc99m').json()['success'])
        self.assertEqual(self.post_json('remove_generator', isotope_id='tc99m').status_code, 404)

    def test_efficiency_must_be_fraction(self):
        response = self.post_json('generator', {'extracted_activity': 870, 'volume_ml': 10, 'efficiency': 90},
                                  isotope_id='tc99m')
        self.assertEqual(response.status_code, 400)


class PatientApiTests(ApiTestCase):

    def register(self, name='Jane Roe'):
        return self.post_json('patients', {'patient_name': name, 'procedure': 'FDG PET/CT'},
                              isotope_id='f18').json()['patient']['id']

    def test_register_with_dose(self):
        response = self.post_json('patients', {'patient_name': 'Jane Roe', 'procedure': 'FDG PET/CT',
                                               'dose_activity': 370, 'unit': 'MBq'}, isotope_id='f18')
        self.assertEqual(response.json()['patient']['dose_activity'], 10.0)

        board = self.client.get(reverse('radiopharmacy:patients', kwargs={'isotope_id': 'f18'})).json()
        self.assertEqual(board['doses']['count'], 1)
        self.assertEqual(board['patients'][0]['dose_activity'], 10.0)

    def test_room_conflict_is_409(self):
        first, second = self.register(), self.register('John Doe')
        self.assertEqual(self.post_json('assign_room', {'room_id': 'B1'}, isotope_id='f18',
                                        patient_id=first).status_code, 200)
        response = self.post_json('assign_room', {'room_id': 'B1'}, isotope_id='f18', patient_id=second)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'RoomUnavailable')

        rooms = self.client.get(reverse('radiopharmacy:room_status')).json()['rooms']
        self.assertEqual([r['patient_id'] for r in rooms if r['room_id'] == 'B1'], [first])

    def test_full_workflow(self):
        pid = self.register()
        self.post_json('assign_room', {'room_id': 'B2'}, isotope_id='f18', patient_id=pid)

        self.clock.advance(minutes=61)
        tick = self.post_json('tick', isotope_id='f18').json()
        self.assertEqual([a['kind'] for a in tick['alerts']], ['roomReady'])

        board = self.client.get(reverse('radiopharmacy:patients', kwargs={'isotope_id': 'f18'})).json()
        self.assertEqual(board['patients'][0]['stage'], 'ready')
        self.assertEqual(board['patients'][0]['room_id'], 'B2')

        self.post_json('start_imaging', isotope_id='f18', patient_id=pid)
        response = self.post_json('finish_imaging', {'needs_additional': True, 'region': 'Pelvis',
                                                     'scheduled_minutes': 90}, isotope_id='f18', patient_id=pid)
        self.assertFalse(response.json()['completed'])

        self.clock.advance(minutes=90)
        tick = self.post_json('tick', isotope_id='f18').json()
        self.assertEqual([a['kind'] for a in tick['alerts']], ['additionalReady'])

        self.post_json('start_imaging', isotope_id='f18', patient_id=pid)
        response = self.post_json('finish_imaging', {}, isotope_id='f18', patient_id=pid)
        self.assertTrue(response.json()['completed'])

    def test_finish_imaging_needs_region_for_additional(self):
        pid = self.register()
        self.post_json('start_imaging', isotope_id='f18', patient_id=pid)
        response = self.post_json('finish_imaging', {'needs_additional': True}, isotope_id='f18', patient_id=pid)
        self.assertEqual(response.status_code, 400)
        self.assertIn('region', response.json()['errors'])

    def test_additional_request_and_cancel(self):
        pid = self.register()
        response = self.post_json('request_additional_imaging', {'region': 'Lung', 'scheduled_minutes': 45},
                                  isotope_id='f18', patient_id=pid)
        self.assertEqual(response.status_code, 400)

        response = self.post_json('request_additional_imaging', {'region': 'Lung', 'scheduled_minutes': 60},
                                  isotope_id='f18', patient_id=pid)
        self.assertTrue(response.json()['success'])
        self.assertTrue(self.post_json('cancel_additional_imaging', isotope_id='f18',
                                       patient_id=pid).json()['success'])

    def test_diagnostics_endpoint(self):
        response = self.client.get(reverse('radiopharmacy:diagnostics', kwargs={'isotope_id': 'f18'}))
        self.assertEqual(response.json(), {'success': True, 'diagnostics': []})

    def test_isotope_list(self):
        isotopes = self.client.get(reverse('radiopharmacy:isotope_list')).json()['isotopes']
        tc = next(i for i in isotopes if i['id'] == 'tc99m')
        self.assertEqual(tc['parent'], 'mo99')
