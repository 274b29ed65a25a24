# documentation/schema.py
"""
Clinical documentation records.

Templates, fields, responses and response templates live in the HMS backend;
these classes wrap the validated payloads so the rest of the workspace works
with typed attributes instead of raw dicts.
"""
import logging

from django.db import models
from django.utils.dateparse import parse_datetime

logger = logging.getLogger(__name__)


class FieldType(models.TextChoices):
    TEXT = 'text', 'Text (Short)'
    TEXTAREA = 'textarea', 'Text Area (Long)'
    NUMBER = 'number', 'Number'
    DECIMAL = 'decimal', 'Decimal'
    BOOLEAN = 'boolean', 'Boolean (Yes/No)'
    DATE = 'date', 'Date'
    DATETIME = 'datetime', 'Date & Time'
    TIME = 'time', 'Time'
    SELECT = 'select', 'Single Select'
    RADIO = 'radio', 'Radio Buttons'
    MULTISELECT = 'multiselect', 'Multiple Select'
    CHECKBOX = 'checkbox', 'Checkboxes'
    JSON = 'json', 'JSON Data'
    CANVAS = 'canvas', 'Canvas Drawing'


# Types that carry an option list
OPTION_TYPES = frozenset({
    FieldType.SELECT, FieldType.RADIO, FieldType.MULTISELECT, FieldType.CHECKBOX,
})

# Handled by the freehand/structured channel, never by the generic form
FREEHAND_TYPES = frozenset({FieldType.JSON, FieldType.CANVAS})


class ResponseStatus(models.TextChoices):
    DRAFT = 'draft', 'Draft'
    COMPLETED = 'completed', 'Completed'
    REVIEWED = 'reviewed', 'Reviewed'
    ARCHIVED = 'archived', 'Archived'


def _ordering_key(item):
    return (item.display_order, item.id)


class FieldOption:
    def __init__(self, id, label, value=None, display_order=0):
        self.id = int(id)
        self.label = label
        self.value = value
        self.display_order = display_order

    @classmethod
    def from_payload(cls, data):
        return cls(
            id=data['id'],
            label=data.get('option_label') or data.get('label') or '',
            value=data.get('option_value', data.get('value')),
            display_order=data.get('display_order') or 0,
        )

    def as_dict(self):
        return {
            'id': self.id,
            'option_label': self.label,
            'option_value': self.value,
            'display_order': self.display_order,
        }


class FieldSchema:
    """
    One typed clinical data point of a template.

    ``options`` is a display-ordered list for option-bearing types and
    ``None`` everywhere else; an empty option list also normalizes to ``None``
    so a checkbox without options behaves as a boolean.
    """

    def __init__(self, id, label, field_type, options=None, name='', is_required=False,
                 display_order=0, help_text='', placeholder=''):
        self.id = int(id)
        self.label = label
        self.type = FieldType(field_type)
        self.name = name or ''
        self.is_required = bool(is_required)
        self.display_order = display_order
        self.help_text = help_text or ''
        self.placeholder = placeholder or ''

        if self.type in OPTION_TYPES and options:
            self.options = sorted(options, key=_ordering_key)
        else:
            self.options = None

    @property
    def has_options(self):
        return self.options is not None

    @property
    def is_freehand(self):
        return self.type in FREEHAND_TYPES

    def option_label(self, option_id):
        for option in self.options or ():
            if option.id == option_id:
                return option.label
        return str(option_id)

    @classmethod
    def from_payload(cls, data):
        options = [
            FieldOption.from_payload(option)
            for option in data.get('options') or ()
            if option.get('is_active', True)
        ]
        return cls(
            id=data['id'],
            label=data.get('field_label') or data.get('label') or '',
            field_type=data.get('field_type') or data.get('type'),
            options=options,
            name=data.get('field_name', ''),
            is_required=data.get('is_required', False),
            display_order=data.get('display_order') or 0,
            help_text=data.get('help_text'),
            placeholder=data.get('placeholder'),
        )

    def as_dict(self):
        return {
            'id': self.id,
            'field_label': self.label,
            'field_name': self.name,
            'field_type': self.type.value,
            'is_required': self.is_required,
            'display_order': self.display_order,
            'help_text': self.help_text,
            'placeholder': self.placeholder,
            'options': [option.as_dict() for option in self.options] if self.options else None,
        }

    def __repr__(self):
        return f'<FieldSchema {self.id} {self.type.value} {self.label!r}>'


class Template:
    """
    Named, ordered collection of fields.

    ``fields`` is ``None`` until the detail endpoint has been fetched; list
    endpoints never carry fields.
    """

    def __init__(self, id, name, fields=None, code='', description='', group_name='', is_active=True):
        self.id = int(id)
        self.name = name
        self.code = code or ''
        self.description = description or ''
        self.group_name = group_name or ''
        self.is_active = is_active
        self.fields = sorted(fields, key=_ordering_key) if fields is not None else None

    @property
    def fields_loaded(self):
        return self.fields is not None

    def field_map(self):
        return {field.id: field for field in self.fields or ()}

    @classmethod
    def from_payload(cls, data):
        fields = None
        if data.get('fields') is not None:
            fields = []
            for raw in data['fields']:
                if not raw.get('is_active', True):
                    continue
                if raw.get('field_type') not in FieldType.values:
                    logger.warning(
                        f"Skipping field {raw.get('id')} of template {data['id']}: "
                        f"unsupported type {raw.get('field_type')!r}"
                    )
                    continue
                fields.append(FieldSchema.from_payload(raw))
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            fields=fields,
            code=data.get('code'),
            description=data.get('description'),
            group_name=data.get('group_name'),
            is_active=data.get('is_active', True),
        )

    def as_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'description': self.description,
            'group_name': self.group_name,
            'is_active': self.is_active,
            'fields': [field.as_dict() for field in self.fields] if self.fields is not None else None,
        }


class TemplateResponse:
    """One filled instance of a template against one encounter"""

    def __init__(self, data):
        self.id = int(data['id'])
        self.template_id = int(data['template'])
        self.template_name = data.get('template_name') or ''
        self.encounter_type = data.get('encounter_type')
        self.object_id = data.get('object_id')
        self.sequence_number = data.get('response_sequence') or 0
        self.status = ResponseStatus(data.get('status') or ResponseStatus.DRAFT)
        self.filled_by_id = data.get('filled_by_id')
        self.reviewed_by_id = data.get('reviewed_by_id')
        self.reviewed_at = data.get('reviewed_at')
        self.is_reviewed = bool(data.get('is_reviewed'))
        self.doctor_switched_reason = data.get('doctor_switched_reason')
        self.original_assigned_doctor_id = data.get('original_assigned_doctor_id')
        self.canvas_data = data.get('canvas_data')
        self.response_date = data.get('response_date')
        self.created_at = data.get('created_at') or self.response_date
        self.field_response_count = data.get('field_response_count')
        self.field_responses = data.get('field_responses')

    @classmethod
    def from_payload(cls, data):
        return cls(data)

    @property
    def created_sort_key(self):
        created = self.created_at
        if isinstance(created, str):
            created = parse_datetime(created)
        return (created.timestamp() if created else 0.0, self.sequence_number)

    def as_dict(self):
        created = self.created_at
        return {
            'id': self.id,
            'template': self.template_id,
            'template_name': self.template_name,
            'encounter_type': self.encounter_type,
            'object_id': self.object_id,
            'response_sequence': self.sequence_number,
            'status': self.status.value,
            'filled_by_id': self.filled_by_id,
            'reviewed_by_id': self.reviewed_by_id,
            'reviewed_at': self.reviewed_at,
            'is_reviewed': self.is_reviewed,
            'doctor_switched_reason': self.doctor_switched_reason,
            'original_assigned_doctor_id': self.original_assigned_doctor_id,
            'created_at': created.isoformat() if hasattr(created, 'isoformat') else created,
            'field_response_count': self.field_response_count,
        }

    def __repr__(self):
        return f'<TemplateResponse {self.id} template={self.template_id} #{self.sequence_number} {self.status.value}>'


class ResponseTemplate:
    """Reusable snapshot of a response's values, bound to its origin template"""

    def __init__(self, data):
        self.id = int(data['id'])
        self.name = data.get('name', '')
        self.description = data.get('description') or ''
        self.template_id = data.get('template')
        self.is_public = bool(data.get('is_public', False))
        self.usage_count = data.get('usage_count') or 0
        self.field_values = data.get('template_field_values') or {}

    @classmethod
    def from_payload(cls, data):
        return cls(data)

    def as_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'template': self.template_id,
            'is_public': self.is_public,
            'usage_count': self.usage_count,
        }
