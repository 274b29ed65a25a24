# apps/requisitions/tests.py

from decimal import Decimal

from django.core.cache import cache
from django.test import SimpleTestCase, override_settings
from unittest.mock import MagicMock, call, patch

from common.exceptions import PreconditionFailed, RequisitionPartiallySubmitted
from common.hms_client import HMSAPIException
from apps.consultation.session import WorkspaceSession
from apps.encounters.resolver import Encounter

from .builder import RequisitionOrderBuilder, clamp_quantity
from .catalog import CatalogItem, RequisitionType, search_catalog
from .summaries import RequisitionSummaries, summarize

PARACETAMOL = {'id': 11, 'product_name': 'Paracetamol 500mg', 'selling_price': '2.50'}
AMOXICILLIN = {'id': 12, 'product_name': 'Amoxicillin 250mg', 'selling_price': '8.00'}


def make_client():
    client = MagicMock()
    client.tenant_id = 'tenant-1'
    client.create_requisition.return_value = {'id': 500, 'requisition_number': 'REQ-500'}
    return client


class CatalogTestCase(SimpleTestCase):

    def test_record_normalization_per_kind(self):
        medicine = CatalogItem.from_record('medicine', PARACETAMOL)
        self.assertEqual((medicine.item_id, medicine.item_name, medicine.unit_price), (11, 'Paracetamol 500mg', Decimal('2.50')))

        package = CatalogItem.from_record('package', {
            'id': 3, 'name': 'Knee care', 'code': 'PK-3', 'discounted_charge': '0', 'total_charge': '1500',
        })
        self.assertEqual(package.unit_price, Decimal('1500'))

        investigation = CatalogItem.from_record('investigation', {'id': 4, 'name': 'CBC', 'code': 'CBC'})
        self.assertIsNone(investigation.unit_price)

    def test_search_params(self):
        """Test only non-investigation catalogs filter on is_active"""
        client = make_client()
        client.search_catalog.return_value = [PARACETAMOL]

        search_catalog(client, 'medicine', 'para')
        client.search_catalog.assert_called_with('/pharmacy/products/', {'search': 'para', 'limit': 10, 'is_active': True})

        search_catalog(client, 'investigation', 'cbc')
        client.search_catalog.assert_called_with('/diagnostics/investigations/', {'search': 'cbc', 'limit': 10})

    def test_search_capped_at_ten(self):
        client = make_client()
        client.search_catalog.return_value = [{'id': i, 'name': f'Test {i}'} for i in range(1, 15)]
        self.assertEqual(len(search_catalog(client, 'investigation', 'test')), 10)


class RequisitionOrderBuilderTestCase(SimpleTestCase):
    """Drafting and two-phase submission of requisitions"""

    def setUp(self):
        cache.clear()
        self.client = make_client()
        self.session = WorkspaceSession({}, 7)
        self.encounter = Encounter('visit', 7)
        self.builder = RequisitionOrderBuilder(self.client, self.session, self.encounter, 12, 'doc-1')

    def test_adding_same_item_twice_keeps_one_line(self):
        """Test selecting an already drafted item leaves the draft unchanged"""
        self.builder.select_type('medicine')
        self.builder.select_item(PARACETAMOL)
        self.builder.update_quantity(self.builder.items[0].local_id, 3)

        self.builder.select_item(PARACETAMOL)

        self.assertEqual(len(self.builder.items), 1)
        self.assertEqual(self.builder.items[0].quantity, 3)

    def test_select_item_clears_search(self):
        self.builder.set_search('CB')
        self.builder.select_item({'id': 4, 'name': 'CBC', 'code': 'CBC'})
        self.assertEqual(self.builder.search, '')

    def test_quantity_never_below_one(self):
        self.builder.select_type('medicine')
        self.builder.select_item(PARACETAMOL)
        local_id = self.builder.items[0].local_id

        self.builder.update_quantity(local_id, 0)
        self.assertEqual(self.builder.items[0].quantity, 1)
        self.builder.update_quantity(local_id, -4)
        self.assertEqual(self.builder.items[0].quantity, 1)
        self.assertEqual(clamp_quantity('abc'), 1)

    def test_type_switch_discards_draft(self):
        """Test changing the requisition kind empties items and search"""
        self.builder.select_item({'id': 4, 'name': 'CBC'})
        self.builder.set_search('lipid')

        self.builder.select_type('procedure')

        self.assertEqual(self.builder.items, [])
        self.assertEqual(self.builder.search, '')
        self.assertEqual(self.builder.requisition_type, RequisitionType.PROCEDURE)

    def test_draft_survives_in_session(self):
        self.builder.select_type('medicine')
        self.builder.select_item(PARACETAMOL)
        self.builder.set_priority('urgent')

        restored = RequisitionOrderBuilder(self.client, self.session, self.encounter, 12, 'doc-1')

        self.assertEqual(restored.requisition_type, RequisitionType.MEDICINE)
        self.assertEqual([item.item_id for item in restored.items], [11])
        self.assertEqual(restored.as_dict()['priority'], 'urgent')

    def test_totals(self):
        self.builder.select_type('medicine')
        self.builder.select_item(PARACETAMOL)
        self.builder.select_item(AMOXICILLIN)
        self.builder.update_quantity(self.builder.items[0].local_id, 4)

        self.assertEqual(self.builder.totals(), {
            'item_count': 2, 'total_quantity': 5, 'total_amount': '18.00',
        })

    def test_submit_nothing_selected(self):
        self.builder.select_type('medicine')
        with self.assertRaises(PreconditionFailed) as ctx:
            self.builder.submit()
        self.assertEqual(str(ctx.exception.detail), 'No medicines selected.')
        self.client.create_requisition.assert_not_called()

    def test_submit_without_doctor(self):
        builder = RequisitionOrderBuilder(self.client, self.session, self.encounter, 12, None)
        builder.select_item({'id': 4, 'name': 'CBC'})
        with self.assertRaises(PreconditionFailed):
            builder.submit()
        self.client.create_requisition.assert_not_called()

    def test_submit_investigations_in_one_call(self):
        self.builder.select_item({'id': 4, 'name': 'CBC'})
        self.builder.select_item({'id': 5, 'name': 'Lipid profile'})
        self.builder.set_notes('Fasting sample')

        result = self.builder.submit()

        self.client.create_requisition.assert_called_once_with({
            'patient': 12,
            'requesting_doctor_id': 'doc-1',
            'requisition_type': 'investigation',
            'encounter_type': 'opd.visit',
            'encounter_id': 7,
            'priority': 'routine',
            'clinical_notes': 'Fasting sample',
            'status': 'ordered',
            'investigation_ids': [4, 5],
        })
        self.client.add_requisition_item.assert_not_called()
        self.assertEqual(result['items_added'], 2)
        self.assertEqual(self.builder.items, [])

    def test_submit_medicines_adds_items_in_order(self):
        """Test a medicine requisition is created then populated one item at a time"""
        self.builder.select_type('medicine')
        self.builder.select_item(PARACETAMOL)
        self.builder.select_item(AMOXICILLIN)
        self.builder.update_quantity(self.builder.items[1].local_id, 2)

        result = self.builder.submit()

        payload = self.client.create_requisition.call_args[0][0]
        self.assertEqual(payload['requisition_type'], 'medicine')
        self.assertNotIn('investigation_ids', payload)
        self.assertEqual(self.client.add_requisition_item.call_args_list, [
            call(500, 'add_medicine', {'product_id': 11, 'quantity': 1, 'price': '2.50'}),
            call(500, 'add_medicine', {'product_id': 12, 'quantity': 2, 'price': '8.00'}),
        ])
        self.assertEqual(result, {'requisition': {'id': 500, 'requisition_number': 'REQ-500'}, 'items_added': 2})
        self.assertEqual(self.session.builder_state['items'], [])

    def test_partial_failure_keeps_requisition_and_draft(self):
        """Test a failing item reports how many were added and keeps the draft"""
        self.builder.select_type('procedure')
        self.builder.select_item({'id': 21, 'name': 'Dressing', 'default_charge': '150'})
        self.builder.select_item({'id': 22, 'name': 'Suturing', 'default_charge': '400'})
        self.client.add_requisition_item.side_effect = [
            {'id': 1}, HMSAPIException('Procedure inactive', status_code=400),
        ]

        with self.assertRaises(RequisitionPartiallySubmitted) as ctx:
            self.builder.submit()

        self.assertEqual(ctx.exception.extra['added'], 1)
        self.assertEqual(ctx.exception.extra['total'], 2)
        self.assertEqual(ctx.exception.extra['requisition_id'], 500)
        self.assertFalse(ctx.exception.extra['rolled_back'])
        self.client.delete_requisition.assert_not_called()
        self.assertEqual(len(self.builder.items), 2)

    @override_settings(REQUISITION_ROLLBACK_ON_TOTAL_FAILURE=True)
    def test_total_failure_rolls_back_when_enabled(self):
        self.builder.select_type('package')
        self.builder.select_item({'id': 3, 'name': 'Knee care', 'total_charge': '1500'})
        self.client.add_requisition_item.side_effect = HMSAPIException('Package inactive', status_code=400)

        with self.assertRaises(RequisitionPartiallySubmitted) as ctx:
            self.builder.submit()

        self.assertTrue(ctx.exception.extra['rolled_back'])
        self.client.delete_requisition.assert_called_once_with(500)

    @patch('apps.requisitions.builder.RequisitionSummaries.invalidate')
    def test_submit_invalidates_summaries(self, mock_invalidate):
        self.builder.select_item({'id': 4, 'name': 'CBC'})
        self.builder.submit()
        mock_invalidate.assert_called_once_with(self.encounter, 'investigation')


class RequisitionSummariesTestCase(SimpleTestCase):

    def setUp(self):
        cache.clear()
        self.client = make_client()
        self.client.list_requisitions.return_value = [
            {'id': 1, 'requisition_type': 'investigation', 'status': 'ordered'},
            {'id': 2, 'requisition_type': 'medicine', 'status': 'completed'},
        ]
        self.summaries = RequisitionSummaries(self.client)
        self.encounter = Encounter('visit', 7)

    def test_encounter_summary_cached(self):
        self.summaries.for_encounter(self.encounter)
        self.summaries.for_encounter(self.encounter)
        self.client.list_requisitions.assert_called_once_with({
            'content_type_model': 'visit', 'object_id': 7, 'ordering': '-created_at',
        })

    @patch('apps.requisitions.summaries.cache')
    def test_invalidate_deletes_three_keys(self, mock_cache):
        """Test the all, encounter and type caches are dropped separately"""
        self.summaries.invalidate(self.encounter, 'medicine')
        self.assertEqual(mock_cache.delete.call_args_list, [
            call('requisitions:tenant-1:all'),
            call('requisitions:tenant-1:encounter:opd.visit:7'),
            call('requisitions:tenant-1:type:medicine'),
        ])

    def test_invalidate_forces_refetch(self):
        self.summaries.all()
        self.summaries.invalidate(self.encounter, 'medicine')
        self.summaries.all()
        self.assertEqual(self.client.list_requisitions.call_count, 2)

    def test_summarize(self):
        summary = summarize(self.client.list_requisitions.return_value)
        self.assertEqual(summary['count'], 2)
        self.assertEqual(summary['by_type'], {'investigation': 1, 'medicine': 1})
        self.assertEqual(summary['by_status'], {'ordered': 1, 'completed': 1})
