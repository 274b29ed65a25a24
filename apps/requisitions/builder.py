# requisitions/builder.py
"""
Requisition order builder.

Drafts one requisition of a single kind (investigations, medicines,
procedures or packages) inside the workspace session and submits it to the
HMS backend. Investigations go out in the create call itself; the other
kinds are created first and then populated item by item, in draft order.
"""
import logging
import time
from decimal import Decimal

from django.conf import settings

from common.exceptions import PreconditionFailed, RequisitionPartiallySubmitted
from common.hms_client import HMSAPIException

from .catalog import CatalogItem, Priority, RequisitionType, search_catalog, to_decimal
from .summaries import RequisitionSummaries

logger = logging.getLogger(__name__)

# kind -> (requisition action, id key in its payload)
ADD_ITEM_ACTIONS = {
    RequisitionType.MEDICINE: ('add_medicine', 'product_id'),
    RequisitionType.PROCEDURE: ('add_procedure', 'procedure_id'),
    RequisitionType.PACKAGE: ('add_package', 'package_id'),
}


def _initial_state():
    return {
        'requisition_type': RequisitionType.INVESTIGATION.value,
        'search': '',
        'items': [],
        'priority': Priority.ROUTINE.value,
        'clinical_notes': '',
    }


def clamp_quantity(quantity):
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        return 1
    return max(1, quantity)


class DraftOrderItem:

    def __init__(self, local_id, item_id, item_name, item_code=None, quantity=1, unit_price=None, notes=''):
        self.local_id = local_id
        self.item_id = int(item_id)
        self.item_name = item_name
        self.item_code = item_code
        self.quantity = clamp_quantity(quantity)
        self.unit_price = to_decimal(unit_price)
        self.notes = notes or ''

    @property
    def line_total(self):
        if self.unit_price is None:
            return Decimal('0')
        return self.unit_price * self.quantity

    @classmethod
    def from_state(cls, data):
        return cls(**data)

    def as_state(self):
        return {
            'local_id': self.local_id,
            'item_id': self.item_id,
            'item_name': self.item_name,
            'item_code': self.item_code,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price) if self.unit_price is not None else None,
            'notes': self.notes,
        }

    def as_dict(self):
        data = self.as_state()
        data['line_total'] = str(self.line_total)
        return data


class RequisitionOrderBuilder:

    def __init__(self, client, session, encounter, patient_id, doctor_id):
        self.client = client
        self.session = session
        self.encounter = encounter
        self.patient_id = patient_id
        self.doctor_id = doctor_id
        self.state = session.builder_state or _initial_state()
        self.items = [DraftOrderItem.from_state(data) for data in self.state['items']]

    def _persist(self):
        self.state['items'] = [item.as_state() for item in self.items]
        self.session.set_builder_state(self.state)

    @property
    def requisition_type(self):
        return RequisitionType(self.state['requisition_type'])

    @property
    def search(self):
        return self.state['search']

    # ==================== DRAFTING ====================

    def select_type(self, kind):
        """Switching kind always discards the draft and the search text"""
        self.state['requisition_type'] = RequisitionType(kind).value
        self.state['search'] = ''
        self.items = []
        self._persist()

    def set_search(self, text):
        self.state['search'] = text or ''
        self._persist()

    def search_catalog(self, text=None):
        if text is not None:
            self.set_search(text)
        return search_catalog(self.client, self.requisition_type, self.search)

    def select_item(self, item):
        """
        Add a catalog item to the draft; an item already drafted is left as is.
        ``item`` is a CatalogItem or a raw catalog record of the current kind.
        """
        if not isinstance(item, CatalogItem):
            item = CatalogItem.from_record(self.requisition_type, item)

        if not any(draft.item_id == item.item_id for draft in self.items):
            self.items.append(DraftOrderItem(
                local_id=f'{self.requisition_type.value}-{item.item_id}-{int(time.time() * 1000)}',
                item_id=item.item_id,
                item_name=item.item_name,
                item_code=item.item_code,
                quantity=1,
                unit_price=item.unit_price,
            ))
        self.state['search'] = ''
        self._persist()

    def _find(self, local_id):
        for item in self.items:
            if item.local_id == local_id:
                return item
        raise PreconditionFailed('Item is not in the draft.')

    def update_quantity(self, local_id, quantity):
        item = self._find(local_id)
        item.quantity = clamp_quantity(quantity)
        self._persist()
        return item

    def update_notes(self, local_id, notes):
        item = self._find(local_id)
        item.notes = notes or ''
        self._persist()
        return item

    def remove_item(self, local_id):
        self.items = [item for item in self.items if item.local_id != local_id]
        self._persist()

    def set_priority(self, priority):
        self.state['priority'] = Priority(priority).value
        self._persist()

    def set_notes(self, notes):
        self.state['clinical_notes'] = notes or ''
        self._persist()

    def totals(self):
        return {
            'item_count': len(self.items),
            'total_quantity': sum(item.quantity for item in self.items),
            'total_amount': str(sum((item.line_total for item in self.items), Decimal('0'))),
        }

    def reset(self):
        self.state = _initial_state()
        self.items = []
        self._persist()

    def as_dict(self):
        return {
            'requisition_type': self.requisition_type.value,
            'search': self.search,
            'priority': self.state['priority'],
            'clinical_notes': self.state['clinical_notes'],
            'items': [item.as_dict() for item in self.items],
            'totals': self.totals(),
        }

    # ==================== SUBMIT ====================

    def _check_preconditions(self):
        if not self.items:
            raise PreconditionFailed(f'No {self.requisition_type.label.lower()} selected.')
        if not self.doctor_id:
            raise PreconditionFailed('Unable to identify requesting doctor user.')
        if self.encounter is None or not self.encounter.model_key:
            raise PreconditionFailed('Encounter type is missing.')

    def _base_payload(self):
        return {
            'patient': self.patient_id,
            'requesting_doctor_id': self.doctor_id,
            'requisition_type': self.requisition_type.value,
            'encounter_type': self.encounter.model_key,
            'encounter_id': self.encounter.id,
            'priority': self.state['priority'],
            'clinical_notes': self.state['clinical_notes'],
            'status': 'ordered',
        }

    def _item_payload(self, item, id_key):
        payload = {id_key: item.item_id, 'quantity': item.quantity}
        if item.unit_price is not None:
            payload['price'] = str(item.unit_price)
        return payload

    def submit(self):
        """
        Create the requisition and its items.

        Returns:
            {'requisition': created record, 'items_added': count}

        Raises:
            PreconditionFailed: nothing drafted, no doctor, or no encounter
            RequisitionPartiallySubmitted: an item could not be added; the
                requisition stays with the items added so far and the draft
                is kept
        """
        self._check_preconditions()
        kind = self.requisition_type
        summaries = RequisitionSummaries(self.client)
        payload = self._base_payload()

        if kind == RequisitionType.INVESTIGATION:
            payload['investigation_ids'] = [item.item_id for item in self.items]
            requisition = self.client.create_requisition(payload)
            added = len(self.items)
        else:
            requisition = self.client.create_requisition(payload)
            action, id_key = ADD_ITEM_ACTIONS[kind]
            added = 0
            for item in self.items:
                try:
                    self.client.add_requisition_item(requisition['id'], action, self._item_payload(item, id_key))
                except HMSAPIException as e:
                    self._handle_partial(requisition, added, e, summaries)
                added += 1

        summaries.invalidate(self.encounter, kind.value)
        logger.info(
            f"Requisition {requisition['id']} ({kind.value}) submitted with {added} items for {self.encounter}"
        )
        self.reset()
        return {'requisition': requisition, 'items_added': added}

    def _handle_partial(self, requisition, added, error, summaries):
        total = len(self.items)
        logger.error(
            f"Requisition {requisition['id']}: item {added + 1} of {total} failed: {error.message}"
        )
        rolled_back = False
        if added == 0 and getattr(settings, 'REQUISITION_ROLLBACK_ON_TOTAL_FAILURE', False):
            try:
                self.client.delete_requisition(requisition['id'])
                rolled_back = True
            except HMSAPIException as e:
                logger.error(f"Could not remove empty requisition {requisition['id']}: {e.message}")

        summaries.invalidate(self.encounter, self.requisition_type.value)
        raise RequisitionPartiallySubmitted(
            requisition['id'], added, total, error.message, rolled_back=rolled_back
        )
