# apps/consultation/tests.py

import json
from datetime import date, datetime, timedelta, timezone as dt_timezone

import jwt
import requests
from django.conf import settings
from django.contrib.sessions.backends.db import SessionStore
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase, override_settings
from unittest.mock import MagicMock, patch

from common.exceptions import PreconditionFailed, StaleReference
from common.guards import lock_key
from common.hms_client import HMSAPIException
from apps.encounters.resolver import Encounter
from apps.requisitions.builder import RequisitionOrderBuilder

from .session import SESSION_KEY, WorkspaceSession
from .tasks import followup_event_at, normalize_phone, schedule_followup_reminder
from .workspace import ConsultationWorkspace

VISIT = {
    'id': 7,
    'patient': 12,
    'patient_details': {'id': 12, 'full_name': 'Asha Rao', 'mobile_primary': '98765 43210'},
    'doctor_details': {'id': 2, 'full_name': 'Dr. Mehta'},
}

TEMPLATE = {
    'id': 3,
    'name': 'General Examination',
    'fields': [
        {'id': 1, 'field_label': 'Complaint', 'field_type': 'text', 'display_order': 1},
        {'id': 2, 'field_label': 'Pulse', 'field_type': 'number', 'display_order': 2},
    ],
}


def response_payload(response_id=40, sequence=1, created_at='2025-01-05T10:00:00Z', **extra):
    data = {
        'id': response_id,
        'template': 3,
        'encounter_type': 'visit',
        'object_id': 7,
        'response_sequence': sequence,
        'status': 'draft',
        'created_at': created_at,
        'filled_by_id': 'doc-1',
    }
    data.update(extra)
    return data


def make_client():
    client = MagicMock()
    client.tenant_id = 'tenant-1'
    client.get_visit.return_value = VISIT
    client.list_admissions.return_value = []
    client.list_templates.return_value = [{'id': 3, 'name': 'General Examination'}]
    client.get_template.return_value = TEMPLATE
    client.list_attachments.return_value = []
    return client


def make_request(store=None):
    request = MagicMock()
    request.session = {} if store is None else store
    request.user_id = 'doc-1'
    return request


class WorkspaceSessionTestCase(SimpleTestCase):

    def setUp(self):
        cache.clear()

    def test_each_visit_has_its_own_state(self):
        store = {}
        first = WorkspaceSession(store, 7)
        second = WorkspaceSession(store, 8)
        first.set_active_response(40)
        self.assertIsNone(second.active_response_id)
        self.assertEqual(set(store[SESSION_KEY]), {'7', '8'})

    def test_encounter_switch_clears_scoped_state(self):
        """Test the active response, draft and staged files belong to one encounter"""
        session = WorkspaceSession({}, 7)
        session.set_active_response(40)
        session.set_builder_state({'items': [1]})
        session.set_staged_files([{'id': 'abc'}])

        session.set_encounter_type('admission')

        self.assertEqual(session.encounter_type, 'admission')
        self.assertIsNone(session.active_response_id)
        self.assertIsNone(session.builder_state)
        self.assertEqual(session.staged_files, [])

    def test_unknown_tab_rejected(self):
        session = WorkspaceSession({}, 7)
        with self.assertRaises(ValueError):
            session.set_active_tab('history')
        session.set_active_tab('preview')
        self.assertEqual(session.active_tab, 'preview')

    def test_close_drops_state(self):
        store = {}
        session = WorkspaceSession(store, 7, owner='doc-1')
        session.set_builder_state({'items': [1]})
        session.set_staged_files([{'id': 'abc'}])

        session.close()

        self.assertNotIn('7', store[SESSION_KEY])
        reopened = WorkspaceSession(store, 7, owner='doc-1')
        self.assertIsNone(reopened.builder_state)
        self.assertEqual(reopened.staged_files, [])

    def test_draft_kept_per_clinician(self):
        WorkspaceSession({}, 7, owner='doc-1').set_builder_state({'items': [1]})
        self.assertIsNone(WorkspaceSession({}, 7, owner='doc-2').builder_state)
        self.assertEqual(WorkspaceSession({}, 7, owner='doc-1').builder_state, {'items': [1]})


class OverlappingRequestsTestCase(TestCase):
    """Two requests of one browser session interleaving over the session store"""

    def setUp(self):
        cache.clear()
        store = SessionStore()
        WorkspaceSession(store, 7, owner='doc-1')
        store.save()
        self.session_key = store.session_key

    def workspace(self, store):
        return WorkspaceSession(store, 7, owner='doc-1')

    def test_reading_leaves_session_unmodified(self):
        store = SessionStore(session_key=self.session_key)
        session = self.workspace(store)
        session.active_tab
        session.builder_state
        session.set_active_response(None)
        session.set_active_tab('fields')
        self.assertFalse(store.modified)

    def test_poll_saved_after_edit_keeps_draft(self):
        """Test a read-only request finishing last does not roll the draft back"""
        poll = SessionStore(session_key=self.session_key)
        edit = SessionStore(session_key=self.session_key)
        poll_session = self.workspace(poll)
        edit_session = self.workspace(edit)

        builder = RequisitionOrderBuilder(MagicMock(), edit_session, Encounter('visit', 7), 12, 'doc-1')
        builder.select_item({'id': 4, 'name': 'CBC', 'code': 'CBC'})
        edit.save()

        poll_session.builder_state
        poll.save()

        restored = RequisitionOrderBuilder(
            MagicMock(), self.workspace(SessionStore(session_key=self.session_key)),
            Encounter('visit', 7), 12, 'doc-1'
        )
        self.assertEqual([item.item_id for item in restored.items], [4])


class FollowupTaskTestCase(SimpleTestCase):

    def setUp(self):
        cache.clear()

    def test_normalize_phone(self):
        self.assertEqual(normalize_phone('98765 43210'), '+919876543210')
        self.assertEqual(normalize_phone('919876543210'), '+919876543210')
        self.assertEqual(normalize_phone('9198765432'), '+919198765432')
        self.assertEqual(normalize_phone('91987654321'), '91987654321')
        self.assertEqual(normalize_phone('+1 (555) 010-0000'), '+15550100000')
        self.assertEqual(normalize_phone(None), '')

    def test_event_at_reminder_hour_in_hospital_timezone(self):
        self.assertEqual(followup_event_at(date(2025, 2, 1)).isoformat(), '2025-02-01T10:00:00+05:30')

    @override_settings(SCHEDULING_API_URL='')
    @patch('apps.consultation.tasks.requests.post')
    def test_skipped_without_scheduler(self, mock_post):
        result = schedule_followup_reminder('+919876543210', '2025-02-01T10:00:00+05:30', {'visit_id': 7})
        self.assertFalse(result['success'])
        mock_post.assert_not_called()

    @override_settings(SCHEDULING_API_URL='https://scheduler.example.com/events/', SCHEDULING_API_KEY='key-1')
    @patch('apps.consultation.tasks.requests.post')
    def test_event_posted(self, mock_post):
        mock_response = MagicMock()
        mock_response.json.return_value = {'data': {'scheduled_messages': [{'id': 1}, {'id': 2}]}}
        mock_post.return_value = mock_response

        result = schedule_followup_reminder(
            '+919876543210', '2025-02-01T10:00:00+05:30', {'visit_id': 7}, 'Asha Rao'
        )

        self.assertEqual(result, {'success': True, 'reminders': 2})
        body = mock_post.call_args[1]['json']
        self.assertEqual(body['event_type'], 'followup_appointment')
        self.assertEqual(body['contact_phone'], '+919876543210')
        self.assertEqual(mock_post.call_args[1]['headers']['Authorization'], 'Bearer key-1')

    @override_settings(SCHEDULING_API_URL='https://scheduler.example.com/events/')
    @patch('apps.consultation.tasks.requests.post')
    def test_failure_reraised(self, mock_post):
        mock_post.side_effect = requests.ConnectionError('down')
        with self.assertRaises(requests.ConnectionError):
            schedule_followup_reminder('+919876543210', '2025-02-01T10:00:00+05:30', {'visit_id': 7})


class ConsultationWorkspaceTestCase(SimpleTestCase):
    """Orchestration across the documentation, attachment and requisition parts"""

    def setUp(self):
        cache.clear()
        self.client = make_client()
        self.request = make_request()
        self.workspace = ConsultationWorkspace(self.request, 7, client=self.client)

    def test_state_projection(self):
        self.client.list_responses.return_value = [response_payload(40)]
        self.client.get_response.return_value = response_payload(
            40, field_responses=[{'field': 1, 'value_text': 'Headache'}]
        )

        state = self.workspace.state()

        self.assertEqual(state['encounter']['encounter']['model_key'], 'opd.visit')
        self.assertFalse(state['encounter']['can_switch_to_admission'])
        self.assertEqual(list(state['responses']), ['3'])
        self.assertEqual(state['active_response']['values'], {'1': 'Headache'})
        self.assertEqual(state['active_response']['preview'][0]['display'], 'Headache')
        self.assertEqual(state['requisition_builder']['requisition_type'], 'investigation')
        self.client.get_visit.assert_called_once_with(7)

    def test_stale_active_response_falls_back(self):
        """Test a response deleted elsewhere is replaced by the next most recent"""
        self.client.list_responses.return_value = [
            response_payload(40, sequence=1, created_at='2025-01-05T09:00:00Z'),
            response_payload(41, sequence=2, created_at='2025-01-05T11:00:00Z'),
        ]

        def get_response(response_id):
            if response_id == 41:
                raise HMSAPIException('Not found.', status_code=404)
            return response_payload(40, field_responses=[])

        self.client.get_response.side_effect = get_response

        detail = self.workspace.state()['active_response']

        self.assertEqual(detail['response']['id'], 40)
        self.assertEqual(self.workspace.session.active_response_id, 40)

    def test_response_of_other_encounter_rejected(self):
        self.client.get_response.return_value = response_payload(40, object_id=99)
        with self.assertRaises(StaleReference):
            self.workspace.response(40)

    def test_switch_to_admission(self):
        self.client.list_admissions.return_value = [{'id': 30}]
        self.workspace.session.set_active_response(40)
        self.workspace.builder.select_item({'id': 4, 'name': 'CBC'})

        data = self.workspace.switch_encounter('admission')

        self.assertEqual(data['encounter'], {'kind': 'admission', 'id': 30, 'model_key': 'ipd.admission'})
        self.assertEqual(self.workspace.session.encounter_type, 'admission')
        self.assertIsNone(self.workspace.session.active_response_id)
        self.assertEqual(self.workspace.builder.items, [])
        self.assertEqual(self.workspace.builder.encounter, Encounter('admission', 30))

    def test_switch_refused_without_admission(self):
        with self.assertRaises(PreconditionFailed):
            self.workspace.switch_encounter('admission')
        self.assertEqual(self.workspace.session.encounter_type, 'visit')

    @patch('apps.consultation.workspace.schedule_followup_reminder')
    def test_followup_updates_note_and_queues_reminder(self, mock_task):
        self.client.list_clinical_notes.return_value = [{'id': 90, 'visit': 7}]
        mock_task.delay.return_value = MagicMock(id='task-1')

        result = self.workspace.save_followup(date(2025, 2, 1))

        self.client.update_clinical_note.assert_called_once_with(90, {'next_followup_date': '2025-02-01'})
        self.client.create_clinical_note.assert_not_called()
        args = mock_task.delay.call_args[0]
        self.assertEqual(args[0], '+919876543210')
        self.assertEqual(args[1], '2025-02-01T10:00:00+05:30')
        self.assertEqual(args[2]['doctor_name'], 'Dr. Mehta')
        self.assertEqual(result, {'next_followup_date': '2025-02-01', 'reminder': 'queued', 'task_id': 'task-1'})

    @patch('apps.consultation.workspace.schedule_followup_reminder')
    def test_followup_creates_note_without_phone(self, mock_task):
        self.client.list_clinical_notes.return_value = []
        self.client.get_visit.return_value = {'id': 7, 'patient': 12, 'patient_details': {}}

        result = self.workspace.save_followup(date(2025, 2, 1))

        self.client.create_clinical_note.assert_called_once_with({'visit': 7, 'next_followup_date': '2025-02-01'})
        self.assertEqual(result['reminder'], 'no_phone')
        mock_task.delay.assert_not_called()


def auth_headers(user_id='doc-1', tenant_id='tenant-1'):
    token = jwt.encode(
        {
            'user_id': user_id,
            'email': 'mehta@example.com',
            'tenant_id': tenant_id,
            'exp': datetime.now(dt_timezone.utc) + timedelta(hours=1),
        },
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM
    )
    return {'HTTP_AUTHORIZATION': f'Bearer {token}'}


class WorkspaceAPITestCase(TestCase):
    """End-to-end requests through JWT auth, the session and the views"""

    def setUp(self):
        cache.clear()
        self.hms = make_client()
        patcher = patch('apps.consultation.workspace.get_hms_client', return_value=self.hms)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.headers = auth_headers()

    def post_json(self, url, data):
        return self.client.post(url, json.dumps(data), content_type='application/json', **self.headers)

    def test_missing_token_rejected(self):
        response = self.client.get('/api/consultations/7/')
        self.assertEqual(response.status_code, 401)

    def test_state(self):
        self.hms.list_responses.return_value = []
        response = self.client.get('/api/consultations/7/', **self.headers)
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertTrue(data['success'])
        self.assertIsNone(data['data']['active_response'])
        self.assertEqual(data['data']['templates'][0]['name'], 'General Examination')

    def test_tab_kept_in_session(self):
        self.hms.list_responses.return_value = []
        response = self.post_json('/api/consultations/7/tab/', {'tab': 'preview'})
        self.assertEqual(response.status_code, 200)

        state = json.loads(self.client.get('/api/consultations/7/', **self.headers).content)
        self.assertEqual(state['data']['active_tab'], 'preview')

    def test_encounter_switch_refused(self):
        response = self.post_json('/api/consultations/7/encounter/', {'encounter_type': 'admission'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(json.loads(response.content)['error']['code'], 'precondition_failed')

    def test_open_template_creates_first_response(self):
        self.hms.list_responses.return_value = []
        self.hms.create_response.return_value = response_payload(40)
        self.hms.get_response.return_value = response_payload(40, field_responses=[])

        response = self.post_json('/api/consultations/7/templates/3/open/', {})

        self.assertEqual(response.status_code, 201)
        data = json.loads(response.content)
        self.assertTrue(data['created'])
        self.assertEqual([item['id'] for item in data['data']['form']], [1, 2])

    def test_second_response_prompts_for_handover(self):
        self.hms.list_responses.return_value = [response_payload(40)]

        response = self.post_json('/api/consultations/7/responses/', {'template_id': 3})

        self.assertEqual(response.status_code, 409)
        error = json.loads(response.content)['error']
        self.assertEqual(error['code'], 'handover_reason_required')
        self.assertEqual(error['existing_count'], 1)
        self.hms.create_response.assert_not_called()

    def test_confirmed_handover_creates_response(self):
        self.hms.list_responses.return_value = [response_payload(40)]
        self.hms.create_response.return_value = response_payload(41, sequence=2)
        self.hms.get_response.return_value = response_payload(41, sequence=2, field_responses=[])

        response = self.post_json('/api/consultations/7/responses/', {
            'template_id': 3, 'confirm': True, 'switch_reason': 'Shift change',
        })

        self.assertEqual(response.status_code, 201)
        payload = self.hms.create_response.call_args[0][0]
        self.assertEqual(payload['doctor_switched_reason'], 'Shift change')

    def test_save_fields(self):
        self.hms.get_response.return_value = response_payload(40, field_responses=[])
        self.hms.list_responses.return_value = [response_payload(40)]

        response = self.client.put(
            '/api/consultations/7/responses/40/fields/',
            json.dumps({'values': {'1': 'Headache', '2': '72'}}),
            content_type='application/json',
            **self.headers
        )

        self.assertEqual(response.status_code, 200)
        self.hms.update_response.assert_called_once_with(40, {'field_responses': [
            {'field': 1, 'value_text': 'Headache'},
            {'field': 2, 'value_number': 72},
        ]})
        self.assertEqual(json.loads(response.content)['data']['values'], {'1': 'Headache', '2': 72})

    def test_invalid_field_value(self):
        self.hms.get_response.return_value = response_payload(40, field_responses=[])
        response = self.client.put(
            '/api/consultations/7/responses/40/fields/',
            json.dumps({'values': {'2': 'fast'}}),
            content_type='application/json',
            **self.headers
        )
        self.assertEqual(response.status_code, 400)
        self.hms.update_response.assert_not_called()

    def test_blank_template_name_makes_no_call(self):
        response = self.post_json('/api/consultations/7/responses/40/save-as-template/', {'name': '   '})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(json.loads(response.content)['error']['message'], 'Template name is required.')
        self.hms.get_response.assert_not_called()
        self.hms.convert_to_template.assert_not_called()

    def test_delete_response_needs_confirm(self):
        self.hms.get_response.return_value = response_payload(40)
        response = self.client.delete('/api/consultations/7/responses/40/', **self.headers)
        self.assertEqual(response.status_code, 400)

        response = self.client.delete('/api/consultations/7/responses/40/?confirm=true', **self.headers)
        self.assertEqual(response.status_code, 200)
        self.hms.delete_response.assert_called_once_with(40)

    def test_non_numeric_template_filter_rejected(self):
        response = self.client.get('/api/consultations/7/responses/?template=abc', **self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertIn('template', json.loads(response.content)['error']['message'])
        self.hms.list_responses.assert_not_called()

    def test_template_filter(self):
        self.hms.list_responses.return_value = [response_payload(40)]
        response = self.client.get('/api/consultations/7/responses/?template=3', **self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.hms.list_responses.call_args[0][0]['template'], 3)

    def test_backend_error_surfaces_message(self):
        self.hms.get_response.side_effect = HMSAPIException('Template is inactive', status_code=400)
        response = self.client.get('/api/consultations/7/responses/40/', **self.headers)
        self.assertEqual(response.status_code, 400)
        error = json.loads(response.content)['error']
        self.assertEqual(error['code'], 'hms_error')
        self.assertEqual(error['message'], 'Template is inactive')

    def test_requisition_flow(self):
        """Test drafting two medicines and submitting them through the API"""
        self.hms.create_requisition.return_value = {'id': 500}

        self.post_json('/api/consultations/7/requisitions/builder/type/', {'requisition_type': 'medicine'})
        self.post_json('/api/consultations/7/requisitions/builder/items/', {
            'item_id': 11, 'item_name': 'Paracetamol 500mg', 'unit_price': '2.50',
        })
        self.post_json('/api/consultations/7/requisitions/builder/items/', {
            'item_id': 11, 'item_name': 'Paracetamol 500mg', 'unit_price': '2.50',
        })
        draft = self.post_json('/api/consultations/7/requisitions/builder/items/', {
            'item_id': 12, 'item_name': 'Amoxicillin 250mg',
        })
        items = json.loads(draft.content)['data']['items']
        self.assertEqual(len(items), 2)

        response = self.post_json('/api/consultations/7/requisitions/submit/', {})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(json.loads(response.content)['data']['items_added'], 2)
        self.assertEqual(self.hms.add_requisition_item.call_count, 2)
        self.assertEqual(self.hms.create_requisition.call_args[0][0]['requesting_doctor_id'], 'doc-1')

    def test_requisition_partial_failure(self):
        self.hms.create_requisition.return_value = {'id': 500}
        self.hms.add_requisition_item.side_effect = HMSAPIException('Out of stock', status_code=400)
        self.post_json('/api/consultations/7/requisitions/builder/type/', {'requisition_type': 'medicine'})
        self.post_json('/api/consultations/7/requisitions/builder/items/', {'item_id': 11, 'item_name': 'Paracetamol'})

        response = self.post_json('/api/consultations/7/requisitions/submit/', {})

        self.assertEqual(response.status_code, 207)
        error = json.loads(response.content)['error']
        self.assertEqual(error['code'], 'requisition_partially_submitted')
        self.assertEqual((error['requisition_id'], error['added'], error['total']), (500, 0, 1))

    def test_duplicate_submit_rejected(self):
        """Test a submit already in flight for this workspace is refused"""
        cache.add(lock_key('doc-1', 7, 'submit_requisition'), True)
        response = self.post_json('/api/consultations/7/requisitions/submit/', {})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(json.loads(response.content)['error']['code'], 'operation_in_flight')
        self.hms.create_requisition.assert_not_called()

    def test_catalog_search(self):
        self.hms.search_catalog.return_value = [{'id': 4, 'name': 'CBC', 'code': 'CBC', 'base_charge': '300'}]
        response = self.client.get('/api/consultations/7/requisitions/catalog/?search=cb', **self.headers)
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data['data'][0]['unit_price'], '300')

    @patch('apps.consultation.workspace.schedule_followup_reminder')
    def test_followup(self, mock_task):
        mock_task.delay.return_value = MagicMock(id='task-1')
        self.hms.list_clinical_notes.return_value = []

        response = self.post_json('/api/consultations/7/followup/', {'next_followup_date': '2025-02-01'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)['data']['reminder'], 'queued')

    def test_health_is_public(self):
        self.assertEqual(self.client.get('/health/').status_code, 200)
