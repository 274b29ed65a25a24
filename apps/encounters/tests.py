# apps/encounters/tests.py

from django.test import SimpleTestCase
from unittest.mock import MagicMock

from common.exceptions import PreconditionFailed

from .resolver import Encounter, EncounterContextResolver, EncounterType, patient_id_of


class EncounterTestCase(SimpleTestCase):

    def test_model_keys(self):
        self.assertEqual(Encounter('visit', 7).model_key, 'opd.visit')
        self.assertEqual(Encounter('admission', 3).model_key, 'ipd.admission')

    def test_query_params(self):
        self.assertEqual(
            Encounter(EncounterType.ADMISSION, '3').query_params,
            {'encounter_type': 'admission', 'object_id': 3}
        )

    def test_equality_by_kind_and_id(self):
        self.assertEqual(Encounter('visit', 7), Encounter('visit', '7'))
        self.assertNotEqual(Encounter('visit', 7), Encounter('admission', 7))
        self.assertEqual(len({Encounter('visit', 7), Encounter('visit', 7)}), 1)

    def test_unknown_kind_rejected(self):
        with self.assertRaises(ValueError):
            Encounter('ward', 1)

    def test_patient_id_of(self):
        self.assertEqual(patient_id_of({'patient': 12}), 12)
        self.assertEqual(patient_id_of({'patient': {'id': 12, 'full_name': 'Asha'}}), 12)
        self.assertIsNone(patient_id_of({}))


class EncounterContextResolverTestCase(SimpleTestCase):
    """Choosing between the OPD visit and the patient's active admission"""

    def setUp(self):
        self.client = MagicMock()
        self.visit = {'id': 7, 'patient': 12}

    def test_defaults_to_visit(self):
        resolver = EncounterContextResolver(self.client, self.visit)
        self.assertEqual(resolver.current, Encounter('visit', 7))
        self.client.list_admissions.assert_not_called()

    def test_switch_disabled_without_active_admission(self):
        """Test switching to admission fails when the patient is not admitted"""
        self.client.list_admissions.return_value = []
        resolver = EncounterContextResolver(self.client, self.visit)

        self.assertFalse(resolver.can_switch_to_admission)
        with self.assertRaises(PreconditionFailed):
            resolver.switch('admission')
        self.assertEqual(resolver.encounter_type, EncounterType.VISIT)

    def test_switch_to_active_admission(self):
        self.client.list_admissions.return_value = [{'id': 30, 'status': 'admitted'}]
        resolver = EncounterContextResolver(self.client, self.visit)

        encounter = resolver.switch('admission')

        self.assertEqual(encounter, Encounter('admission', 30))
        self.client.list_admissions.assert_called_once_with({'patient': 12, 'status': 'admitted'})

    def test_admission_looked_up_once(self):
        self.client.list_admissions.return_value = [{'id': 30}]
        resolver = EncounterContextResolver(self.client, self.visit, 'admission')
        resolver.current
        resolver.as_dict()
        self.assertEqual(self.client.list_admissions.call_count, 1)

    def test_as_dict(self):
        self.client.list_admissions.return_value = [{'id': 30}]
        data = EncounterContextResolver(self.client, self.visit).as_dict()
        self.assertEqual(data['encounter_type'], 'visit')
        self.assertEqual(data['encounter']['model_key'], 'opd.visit')
        self.assertTrue(data['can_switch_to_admission'])
        self.assertEqual(data['active_admission_id'], 30)

    def test_stale_admission_resolves_to_none(self):
        self.client.list_admissions.return_value = []
        resolver = EncounterContextResolver(self.client, self.visit, 'admission')
        self.assertIsNone(resolver.current)
