# requisitions/catalog.py
"""
Orderable items per requisition kind.

Each kind is searched on its own HMS endpoint and its records carry name,
code and price under different keys; CatalogItem normalizes them.
"""
from decimal import Decimal, InvalidOperation

from django.db import models


class RequisitionType(models.TextChoices):
    INVESTIGATION = 'investigation', 'Investigations'
    MEDICINE = 'medicine', 'Medicines'
    PROCEDURE = 'procedure', 'Procedures'
    PACKAGE = 'package', 'Packages'


class Priority(models.TextChoices):
    ROUTINE = 'routine', 'Routine'
    URGENT = 'urgent', 'Urgent'
    STAT = 'stat', 'STAT (Immediate)'


SEARCH_LIMIT = 10

CATALOG = {
    RequisitionType.INVESTIGATION: {
        'path': '/diagnostics/investigations/',
        'name': 'name',
        'code': 'code',
        'price': ('base_charge',),
        'active_only': False,
    },
    RequisitionType.MEDICINE: {
        'path': '/pharmacy/products/',
        'name': 'product_name',
        'code': None,
        'price': ('selling_price',),
        'active_only': True,
    },
    RequisitionType.PROCEDURE: {
        'path': '/opd/procedure-masters/',
        'name': 'name',
        'code': 'code',
        'price': ('default_charge',),
        'active_only': True,
    },
    RequisitionType.PACKAGE: {
        'path': '/opd/procedure-packages/',
        'name': 'name',
        'code': 'code',
        'price': ('discounted_charge', 'total_charge'),
        'active_only': True,
    },
}


def to_decimal(value):
    if value is None or value == '':
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class CatalogItem:

    def __init__(self, item_id, item_name, item_code=None, unit_price=None):
        self.item_id = int(item_id)
        self.item_name = item_name
        self.item_code = item_code or None
        self.unit_price = to_decimal(unit_price)

    @classmethod
    def from_record(cls, kind, record):
        """Normalize a raw catalog record of the given kind"""
        kind_config = CATALOG[RequisitionType(kind)]
        price = None
        for key in kind_config['price']:
            price = to_decimal(record.get(key))
            if price:
                break
        return cls(
            item_id=record['id'],
            item_name=record.get(kind_config['name']) or '',
            item_code=record.get(kind_config['code']) if kind_config['code'] else None,
            unit_price=price,
        )

    def as_dict(self):
        return {
            'item_id': self.item_id,
            'item_name': self.item_name,
            'item_code': self.item_code,
            'unit_price': str(self.unit_price) if self.unit_price is not None else None,
        }


def search_catalog(client, kind, search=''):
    """Up to ten matching items of ``kind``"""
    kind_config = CATALOG[RequisitionType(kind)]
    params = {'search': search or '', 'limit': SEARCH_LIMIT}
    if kind_config['active_only']:
        params['is_active'] = True
    records = client.search_catalog(kind_config['path'], params)
    return [CatalogItem.from_record(kind, record) for record in records[:SEARCH_LIMIT]]
