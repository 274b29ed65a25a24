# apps/documentation/tests.py

from django.test import SimpleTestCase
from rest_framework import serializers
from unittest.mock import MagicMock

from common.exceptions import HandoverReasonRequired, PreconditionFailed, StaleReference
from common.hms_client import HMSAPIException
from apps.consultation.session import WorkspaceSession
from apps.encounters.resolver import Encounter

from .fields import (
    VALUE_SLOTS,
    decode_field_values,
    encode_field,
    encode_field_values,
    parse_number,
    preview_rows,
)
from .forms import build_response_form, renderable_fields
from .lifecycle import ResponseLifecycleManager, most_recent
from .reuse import TemplateReuseEngine
from .schema import FieldOption, FieldSchema, ResponseStatus, Template
from .serializers import parse_response, parse_template


def clinical_fields():
    return [
        FieldSchema(1, 'Complaint', 'text'),
        FieldSchema(2, 'Pulse', 'number'),
        FieldSchema(3, 'Smoker', 'boolean'),
        FieldSchema(4, 'Onset', 'date'),
        FieldSchema(5, 'Seen at', 'datetime'),
        FieldSchema(6, 'Severity', 'select', options=[FieldOption(61, 'Mild'), FieldOption(62, 'Severe')]),
        FieldSchema(7, 'Symptoms', 'multiselect', options=[FieldOption(71, 'Fever'), FieldOption(72, 'Cough')]),
        FieldSchema(8, 'Consent', 'checkbox'),
        FieldSchema(9, 'Allergies', 'checkbox', options=[FieldOption(91, 'Dust'), FieldOption(92, 'Pollen')]),
        FieldSchema(10, 'Side', 'radio', options=[FieldOption(101, 'Left'), FieldOption(102, 'Right')]),
        FieldSchema(11, 'Sketch', 'canvas'),
        FieldSchema(12, 'Dose', 'decimal'),
        FieldSchema(13, 'Time taken', 'time'),
    ]


def template_payload(template_id=3, required=False):
    return {
        'id': template_id,
        'name': 'General Examination',
        'group_name': 'OPD',
        'fields': [
            {'id': 1, 'field_label': 'Complaint', 'field_type': 'text', 'is_required': required, 'display_order': 1},
            {'id': 2, 'field_label': 'Pulse', 'field_type': 'number', 'display_order': 2},
            {
                'id': 6, 'field_label': 'Severity', 'field_type': 'select', 'display_order': 3,
                'options': [
                    {'id': 62, 'option_label': 'Severe', 'display_order': 2},
                    {'id': 61, 'option_label': 'Mild', 'display_order': 1},
                    {'id': 63, 'option_label': 'Retired', 'display_order': 3, 'is_active': False},
                ],
            },
            {'id': 14, 'field_label': 'X-ray', 'field_type': 'image', 'display_order': 4},
        ],
    }


def response_payload(response_id=40, template_id=3, sequence=1, status='draft',
                     created_at='2025-01-05T10:00:00Z', **extra):
    data = {
        'id': response_id,
        'template': template_id,
        'encounter_type': 'visit',
        'object_id': 7,
        'response_sequence': sequence,
        'status': status,
        'created_at': created_at,
        'filled_by_id': 'doc-1',
    }
    data.update(extra)
    return data


class FieldCodecTestCase(SimpleTestCase):
    """Encoding form values into field responses and back"""

    def setUp(self):
        self.fields = clinical_fields()

    def test_round_trip_preserves_values(self):
        """Test decode(encode(v)) gives back v for every field type"""
        values = {
            1: 'Headache',
            2: 72,
            3: True,
            4: '2025-01-05',
            5: '2025-01-05T10:30:00',
            6: 62,
            7: [71, 72],
            8: False,
            9: [92],
            10: 101,
            12: '2.5',
            13: '10:30',
        }
        encoded = encode_field_values(values, self.fields)
        self.assertEqual(decode_field_values(encoded, self.fields), values)

    def test_exactly_one_slot_per_entry(self):
        """Test every encoded entry carries a single value slot"""
        values = {1: 'Cough', 2: '98.6', 3: False, 6: '61', 7: ['71'], 9: [91, 92]}
        for entry in encode_field_values(values, self.fields):
            slots = [slot for slot in VALUE_SLOTS if slot in entry]
            self.assertEqual(len(slots), 1, entry)

    def test_slot_follows_field_type(self):
        fields = {field.id: field for field in self.fields}
        self.assertEqual(encode_field(fields[2], '98.6'), {'field': 2, 'value_number': 98.6})
        self.assertEqual(encode_field(fields[6], '61'), {'field': 6, 'selected_options': [61]})
        self.assertEqual(encode_field(fields[8], True), {'field': 8, 'value_boolean': True})
        self.assertEqual(encode_field(fields[9], [92, 92]), {'field': 9, 'selected_options': [92]})
        self.assertEqual(encode_field(fields[12], '2.5'), {'field': 12, 'value_text': '2.5'})

    def test_empty_values_are_omitted(self):
        """Test blank text, empty selections and non-numbers produce no entry"""
        values = {1: '   ', 2: 'abc', 6: None, 7: [], 9: []}
        # Unanswered booleans are still stored as False
        self.assertEqual(encode_field_values(values, self.fields), [
            {'field': 3, 'value_boolean': False},
            {'field': 8, 'value_boolean': False},
        ])

    def test_unchecked_boolean_is_stored(self):
        encoded = encode_field_values({3: False}, self.fields[:3])
        self.assertEqual(encoded, [{'field': 3, 'value_boolean': False}])

    def test_freehand_fields_never_encoded(self):
        self.assertIsNone(encode_field(self.fields[10], {'strokes': []}))

    def test_string_keys_accepted(self):
        encoded = encode_field_values({'1': 'Fever'}, self.fields[:2])
        self.assertEqual(encoded, [{'field': 1, 'value_text': 'Fever'}])

    def test_decode_ignores_unknown_and_freehand_fields(self):
        field_responses = [
            {'field': 999, 'value_text': 'orphan'},
            {'field': 11, 'value_text': 'canvas'},
            {'field': 1, 'value_text': 'Headache'},
        ]
        self.assertEqual(decode_field_values(field_responses, self.fields), {1: 'Headache'})

    def test_decode_skips_blank_text_on_non_text_fields(self):
        """Test the backend's empty value_text does not mask the typed slot"""
        field_responses = [
            {'field': 1, 'value_text': '', 'value_number': None},
            {'field': 2, 'value_text': '', 'value_number': '72'},
            {'field': 3, 'value_text': '', 'value_boolean': False},
            {'field': 4, 'value_text': '', 'value_date': None},
        ]
        self.assertEqual(
            decode_field_values(field_responses, self.fields),
            {1: '', 2: 72, 3: False, 4: None}
        )

    def test_decode_single_choice_takes_first_option(self):
        values = decode_field_values([{'field': 6, 'selected_options': [62, 61]}], self.fields)
        self.assertEqual(values, {6: 62})

    def test_parse_number(self):
        self.assertEqual(parse_number('80'), 80)
        self.assertIsInstance(parse_number('80'), int)
        self.assertEqual(parse_number('72.50'), 72.5)
        self.assertIsNone(parse_number('nan'))
        self.assertIsNone(parse_number('inf'))
        self.assertIsNone(parse_number(''))
        self.assertIsNone(parse_number(True))

    def test_preview_rows_skip_unanswered_fields(self):
        """Test the read-only projection shows labels and leaves out blanks"""
        rows = preview_rows(self.fields, {1: '', 3: True, 6: 62, 7: [71, 72], 8: False, 9: []})
        self.assertEqual([row['field'] for row in rows], [3, 6, 7])
        self.assertEqual([row['display'] for row in rows], ['Yes', 'Severe', 'Fever, Cough'])


class SchemaTestCase(SimpleTestCase):

    def test_template_payload_parsing(self):
        """Test options are display-ordered, inactive ones and unknown types dropped"""
        template = parse_template(template_payload())
        self.assertEqual([field.id for field in template.fields], [1, 2, 6])
        severity = template.field_map()[6]
        self.assertEqual([option.id for option in severity.options], [61, 62])

    def test_options_only_on_option_types(self):
        self.assertIsNone(FieldSchema(1, 'Complaint', 'text', options=[FieldOption(1, 'x')]).options)
        self.assertFalse(FieldSchema(8, 'Consent', 'checkbox', options=[]).has_options)

    def test_template_without_fields_is_not_loaded(self):
        template = parse_template({'id': 3, 'name': 'General'})
        self.assertFalse(template.fields_loaded)

    def test_snapshot_round_trip(self):
        template = parse_template(template_payload())
        restored = Template.from_payload(template.as_dict())
        self.assertEqual(
            [(field.id, field.type, field.label) for field in restored.fields],
            [(field.id, field.type, field.label) for field in template.fields]
        )

    def test_equal_timestamps_order_by_sequence(self):
        """Test the most recent response wins on sequence when created together"""
        first = parse_response(response_payload(40, sequence=1))
        second = parse_response(response_payload(41, sequence=2))
        self.assertEqual(most_recent([second, first]).id, 41)
        self.assertEqual(most_recent([first, second]).id, 41)


class ResponseFormTestCase(SimpleTestCase):

    def setUp(self):
        self.fields = clinical_fields()

    def test_renderable_fields_skip_freehand_and_optionless_select(self):
        fields = self.fields + [FieldSchema(20, 'Empty select', 'select')]
        ids = [field.id for field in renderable_fields(fields)]
        self.assertNotIn(11, ids)
        self.assertNotIn(20, ids)
        self.assertIn(8, ids)

    def test_field_values_are_codec_ready(self):
        form = build_response_form(self.fields, data={
            1: 'Headache', 2: '72', 4: '2025-01-05', 6: '62', 7: ['71'], 12: '2.5', 13: '10:30',
        })
        self.assertTrue(form.is_valid(), form.errors)
        values = form.field_values()
        self.assertEqual(values[2], 72)
        self.assertEqual(values[4], '2025-01-05')
        self.assertEqual(values[6], 62)
        self.assertEqual(values[7], [71])
        self.assertEqual(values[12], '2.5')
        self.assertEqual(values[13], '10:30:00')
        self.assertIs(values[3], False)

    def test_invalid_number_rejected(self):
        form = build_response_form(self.fields, data={2: 'fast'})
        self.assertFalse(form.is_valid())
        self.assertIn('2', form.errors)

    def test_required_fields_only_enforced_on_request(self):
        fields = [FieldSchema(1, 'Complaint', 'text', is_required=True)]
        self.assertFalse(build_response_form(fields, data={}).is_valid())
        self.assertTrue(build_response_form(fields, data={}, enforce_required=False).is_valid())

    def test_describe_lists_choices(self):
        description = build_response_form(self.fields).describe()
        severity = next(item for item in description if item['id'] == 6)
        self.assertEqual(severity['choices'], [{'id': 61, 'label': 'Mild'}, {'id': 62, 'label': 'Severe'}])
        self.assertEqual(severity['widget'], 'Select')


class ResponseLifecycleTestCase(SimpleTestCase):
    """Response creation, saving and status transitions against a mocked backend"""

    def setUp(self):
        self.client = MagicMock()
        self.client.get_template.return_value = template_payload(required=True)
        self.session = WorkspaceSession({}, 7)
        self.encounter = Encounter('visit', 7)
        self.lifecycle = ResponseLifecycleManager(self.client, self.session, user_id='doc-2')

    def test_first_open_creates_response(self):
        """Test opening a template without responses creates one implicitly"""
        self.client.list_responses.return_value = []
        self.client.create_response.return_value = response_payload(40)

        response, created = self.lifecycle.open_template(3, self.encounter)

        self.assertTrue(created)
        self.assertEqual(response.id, 40)
        self.client.create_response.assert_called_once_with({
            'encounter_type': 'visit', 'object_id': 7, 'template': 3, 'status': 'draft',
        })
        self.assertEqual(self.session.active_response_id, 40)

    def test_open_selects_most_recent_existing_response(self):
        self.client.list_responses.return_value = [
            response_payload(40, sequence=1, created_at='2025-01-05T09:00:00Z'),
            response_payload(41, sequence=2, created_at='2025-01-05T11:00:00Z'),
        ]

        response, created = self.lifecycle.open_template(3, self.encounter)

        self.assertFalse(created)
        self.assertEqual(response.id, 41)
        self.client.create_response.assert_not_called()

    def test_open_without_encounter_fails(self):
        with self.assertRaises(PreconditionFailed):
            self.lifecycle.open_template(3, None)
        self.client.list_responses.assert_not_called()

    def test_adding_second_response_needs_confirmation(self):
        """Test a second response prompts for a handover reason first"""
        self.client.list_responses.return_value = [response_payload(40)]

        with self.assertRaises(HandoverReasonRequired) as ctx:
            self.lifecycle.add_response(3, self.encounter)

        self.assertEqual(ctx.exception.extra['existing_count'], 1)
        self.client.create_response.assert_not_called()

    def test_handover_reason_sent_with_new_response(self):
        self.client.list_responses.return_value = [response_payload(40)]
        self.client.create_response.return_value = response_payload(41, sequence=2)

        response = self.lifecycle.add_response(3, self.encounter, switch_reason='Shift change', confirmed=True)

        self.assertEqual(response.sequence_number, 2)
        payload = self.client.create_response.call_args[0][0]
        self.assertEqual(payload['doctor_switched_reason'], 'Shift change')
        self.assertEqual(payload['original_assigned_doctor_id'], 'doc-1')
        self.assertEqual(self.session.active_response_id, 41)

    def test_confirmed_without_reason_sends_no_handover(self):
        self.client.list_responses.return_value = [response_payload(40)]
        self.client.create_response.return_value = response_payload(41, sequence=2)

        self.lifecycle.add_response(3, self.encounter, switch_reason='   ', confirmed=True)

        payload = self.client.create_response.call_args[0][0]
        self.assertNotIn('doctor_switched_reason', payload)
        self.assertNotIn('original_assigned_doctor_id', payload)

    def test_vanished_response_is_stale(self):
        """Test a response deleted elsewhere clears the active selection"""
        self.session.set_active_response(40)
        self.client.get_response.side_effect = HMSAPIException('Not found.', status_code=404)

        with self.assertRaises(StaleReference):
            self.lifecycle.get_response(40)
        self.assertIsNone(self.session.active_response_id)

    def test_other_backend_errors_propagate(self):
        self.client.get_response.side_effect = HMSAPIException('Boom', status_code=500)
        with self.assertRaises(HMSAPIException):
            self.lifecycle.get_response(40)

    def test_active_response_falls_back_to_most_recent(self):
        self.session.set_active_response(99)
        responses = [
            parse_response(response_payload(40, sequence=1, created_at='2025-01-05T09:00:00Z')),
            parse_response(response_payload(41, sequence=2, created_at='2025-01-05T11:00:00Z')),
        ]
        self.assertEqual(self.lifecycle.active_response(responses).id, 41)
        self.assertEqual(self.session.active_response_id, 41)

    def test_new_response_sees_current_fields(self):
        """Test a response created after the template gained a field decodes that field"""
        self.client.get_template.return_value = {
            'id': 3, 'name': 'General Examination',
            'fields': [{'id': 1, 'field_label': 'Complaint', 'field_type': 'text', 'display_order': 1}],
        }
        self.lifecycle.load_field_values(parse_response(response_payload(40, field_responses=[])))

        self.client.get_template.return_value = template_payload()
        self.client.list_responses.return_value = []
        self.client.create_response.return_value = response_payload(41)
        created, _ = self.lifecycle.open_template(3, self.encounter)
        self.client.get_response.return_value = response_payload(
            41, field_responses=[{'field': 2, 'value_number': 80}]
        )

        response, template, values = self.lifecycle.load_field_values(created)

        self.assertEqual([field.id for field in template.fields], [1, 2, 6])
        self.assertEqual(values, {2: 80})

    def test_snapshot_kept_while_editing(self):
        """Test saves encode against the fields the response was loaded with"""
        self.client.list_responses.return_value = []
        response = parse_response(response_payload(40, field_responses=[]))
        self.lifecycle.load_field_values(response)

        self.client.get_template.return_value = {'id': 3, 'name': 'General Examination', 'fields': []}
        self.lifecycle.save_fields(response, {'1': 'Headache'}, self.encounter)

        self.client.get_template.assert_called_once_with(3)
        self.client.update_response.assert_called_once_with(40, {'field_responses': [
            {'field': 1, 'value_text': 'Headache'},
        ]})

    def test_reopening_refreshes_snapshot(self):
        response = parse_response(response_payload(40, field_responses=[]))
        self.lifecycle.load_field_values(response)
        self.lifecycle.load_field_values(response, refresh=True)
        self.assertEqual(self.client.get_template.call_count, 2)

    def test_delete_drops_snapshot(self):
        self.lifecycle.load_field_values(parse_response(response_payload(40, field_responses=[])))
        self.lifecycle.delete_response(40, confirmed=True)
        self.assertIsNone(self.session.field_snapshot(40))

    def test_save_sends_full_replacement(self):
        """Test a draft save PATCHes every answered field in one request"""
        self.client.list_responses.return_value = [response_payload(40)]
        response = parse_response(response_payload(40))

        saved, responses = self.lifecycle.save_fields(response, {'1': 'Headache', '2': '72', '6': '61'}, self.encounter)

        self.client.update_response.assert_called_once_with(40, {'field_responses': [
            {'field': 1, 'value_text': 'Headache'},
            {'field': 2, 'value_number': 72},
            {'field': 6, 'selected_options': [61]},
        ]})
        self.assertEqual(saved[2], 72)
        self.assertEqual([item.id for item in responses], [40])

    def test_saving_same_values_twice_is_idempotent(self):
        self.client.list_responses.return_value = [response_payload(40)]
        response = parse_response(response_payload(40))
        values = {'1': 'Headache', '6': '62'}

        self.lifecycle.save_fields(response, values, self.encounter)
        self.lifecycle.save_fields(response, values, self.encounter)

        first, second = self.client.update_response.call_args_list
        self.assertEqual(first, second)

    def test_draft_save_skips_required_check(self):
        self.client.list_responses.return_value = []
        response = parse_response(response_payload(40))
        self.lifecycle.save_fields(response, {'2': '80'}, self.encounter)
        self.client.update_response.assert_called_once()

    def test_invalid_values_rejected_without_save(self):
        response = parse_response(response_payload(40))
        with self.assertRaises(serializers.ValidationError):
            self.lifecycle.save_fields(response, {'2': 'fast'}, self.encounter)
        self.client.update_response.assert_not_called()

    def test_archived_response_fields_still_saved(self):
        """Test archiving only ends status changes, values stay editable"""
        self.client.list_responses.return_value = [response_payload(40, status='archived')]
        response = parse_response(response_payload(40, status='archived'))

        saved, _ = self.lifecycle.save_fields(response, {'1': 'Late addendum'}, self.encounter)

        self.client.update_response.assert_called_once_with(40, {'field_responses': [
            {'field': 1, 'value_text': 'Late addendum'},
        ]})
        self.assertEqual(saved[1], 'Late addendum')

    def test_complete_requires_required_fields(self):
        self.client.get_response.return_value = response_payload(40, field_responses=[])
        response = parse_response(response_payload(40))

        with self.assertRaises(serializers.ValidationError):
            self.lifecycle.complete(response)
        self.client.update_response.assert_not_called()

    def test_complete_patches_status_and_refetches(self):
        self.client.get_response.side_effect = [
            response_payload(40, field_responses=[{'field': 1, 'value_text': 'Headache'}]),
            response_payload(40, status='completed'),
        ]
        response = parse_response(response_payload(40))

        completed = self.lifecycle.complete(response)

        self.client.update_response.assert_called_once_with(40, {'status': 'completed'})
        self.assertEqual(completed.status, ResponseStatus.COMPLETED)

    def test_review_uses_review_endpoint(self):
        self.client.get_response.return_value = response_payload(40, status='reviewed')
        response = parse_response(response_payload(40, status='completed'))

        reviewed = self.lifecycle.mark_reviewed(response)

        self.client.mark_reviewed.assert_called_once_with(40)
        self.assertEqual(reviewed.status, ResponseStatus.REVIEWED)

    def test_illegal_transition_rejected(self):
        response = parse_response(response_payload(40, status='reviewed'))
        with self.assertRaises(PreconditionFailed):
            self.lifecycle.complete(response)
        with self.assertRaises(PreconditionFailed):
            self.lifecycle.archive(parse_response(response_payload(40, status='archived')))

    def test_delete_needs_confirmation(self):
        with self.assertRaises(PreconditionFailed):
            self.lifecycle.delete_response(40)
        self.client.delete_response.assert_not_called()

        self.session.set_active_response(40)
        self.lifecycle.delete_response(40, confirmed=True)
        self.client.delete_response.assert_called_once_with(40)
        self.assertIsNone(self.session.active_response_id)


class TemplateReuseTestCase(SimpleTestCase):

    def setUp(self):
        self.client = MagicMock()
        self.client.get_template.return_value = template_payload()
        self.lifecycle = ResponseLifecycleManager(self.client, WorkspaceSession({}, 7))
        self.reuse = TemplateReuseEngine(self.lifecycle)
        self.response = parse_response(response_payload(40))

    def test_whitespace_name_makes_no_call(self):
        """Test a blank template name fails before any backend call"""
        with self.assertRaises(PreconditionFailed):
            self.reuse.save_as_template(self.response, '   ')
        self.assertEqual(self.client.method_calls, [])

    def test_save_as_template(self):
        self.client.convert_to_template.return_value = {'id': 9, 'name': 'Viral fever', 'template': 3}

        saved = self.reuse.save_as_template(self.response, '  Viral fever ', is_public=True)

        self.client.convert_to_template.assert_called_once_with(40, {
            'template_name': 'Viral fever', 'description': '', 'is_public': True,
        })
        self.assertEqual(saved.id, 9)

    def test_only_same_template_offered(self):
        self.client.list_response_templates.return_value = [
            {'id': 5, 'name': 'Fever', 'template': 3},
            {'id': 6, 'name': 'Fracture', 'template': 4},
        ]
        offered = self.reuse.applicable_templates(self.response)
        self.assertEqual([item.id for item in offered], [5])

    def test_apply_template_returns_fresh_values(self):
        self.client.list_response_templates.return_value = [{'id': 5, 'name': 'Fever', 'template': 3}]
        self.client.get_response.return_value = response_payload(
            40, field_responses=[{'field': 1, 'value_text': 'Fever for 3 days'}]
        )

        response, template, values = self.reuse.apply_template(self.response, 5)

        self.client.apply_response_template.assert_called_once_with(40, 5)
        self.assertEqual(values, {1: 'Fever for 3 days'})

    def test_apply_template_on_archived_response(self):
        archived = parse_response(response_payload(40, status='archived'))
        self.client.list_response_templates.return_value = [{'id': 5, 'name': 'Fever', 'template': 3}]
        self.client.get_response.return_value = response_payload(
            40, status='archived', field_responses=[{'field': 2, 'value_number': 88}]
        )

        response, template, values = self.reuse.apply_template(archived, 5)

        self.client.apply_response_template.assert_called_once_with(40, 5)
        self.assertEqual(response.status, ResponseStatus.ARCHIVED)
        self.assertEqual(values, {2: 88})

    def test_apply_rejects_templates_not_offered(self):
        self.client.list_response_templates.return_value = [{'id': 5, 'name': 'Fever', 'template': 3}]
        with self.assertRaises(PreconditionFailed):
            self.reuse.apply_template(self.response, 6)
        self.client.apply_response_template.assert_not_called()
