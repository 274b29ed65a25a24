# documentation/fields.py
"""
Field value codec.

Translates between form values (what the workspace edits) and the
field-response payload the HMS backend stores, where exactly one value slot
is populated per field:

    value_text | value_number | value_date | value_datetime | value_boolean | selected_options

The slot is chosen by the field's type through one table per direction.
``json`` and ``canvas`` fields never pass through here.
"""
import math

from .schema import FieldType

VALUE_SLOTS = (
    'value_text', 'value_number', 'value_date', 'value_datetime', 'value_boolean', 'selected_options',
)

# Scalar slots in the order decode looks at them
SCALAR_SLOTS = ('value_text', 'value_number', 'value_date', 'value_datetime', 'value_boolean')

# The backend stores "" in value_text for every field; only text fields mean it
TEXT_TYPES = frozenset({FieldType.TEXT, FieldType.TEXTAREA})


def _is_blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def parse_number(value):
    """int when integral, float otherwise, None when not a number"""
    if _is_blank(value) or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return int(number) if number.is_integer() else number


def _option_id(value):
    if _is_blank(value) or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _option_ids(value):
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    ids = []
    for item in value:
        option_id = _option_id(item)
        if option_id is not None and option_id not in ids:
            ids.append(option_id)
    return ids


def _iso(value):
    if _is_blank(value):
        return None
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value).strip()


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------

def _encode_text(field, value):
    return 'value_text', None if _is_blank(value) else str(value)


def _encode_number(field, value):
    return 'value_number', parse_number(value)


def _encode_date(field, value):
    return 'value_date', _iso(value)


def _encode_datetime(field, value):
    return 'value_datetime', _iso(value)


def _encode_boolean(field, value):
    return 'value_boolean', bool(value)


def _encode_checkbox(field, value):
    if field.has_options:
        return 'selected_options', _option_ids(value)
    return 'value_boolean', bool(value)


def _encode_single_choice(field, value):
    option_id = _option_id(value[0] if isinstance(value, (list, tuple)) and value else value)
    return 'selected_options', [option_id] if option_id is not None else []


def _encode_multi_choice(field, value):
    return 'selected_options', _option_ids(value)


def _encode_fallback(field, value):
    return 'value_text', None if _is_blank(value) else str(value)


ENCODERS = {
    FieldType.TEXT: _encode_text,
    FieldType.TEXTAREA: _encode_text,
    FieldType.NUMBER: _encode_number,
    FieldType.DATE: _encode_date,
    FieldType.DATETIME: _encode_datetime,
    FieldType.BOOLEAN: _encode_boolean,
    FieldType.CHECKBOX: _encode_checkbox,
    FieldType.SELECT: _encode_single_choice,
    FieldType.RADIO: _encode_single_choice,
    FieldType.MULTISELECT: _encode_multi_choice,
    FieldType.DECIMAL: _encode_fallback,
    FieldType.TIME: _encode_fallback,
}


def _lookup(values, field_id):
    if field_id in values:
        return values[field_id]
    return values.get(str(field_id))


def encode_field(field, value):
    """
    Encode one value into a field-response payload, or ``None`` when the field
    has nothing to store. Booleans are always stored.
    """
    if field.is_freehand:
        return None
    encoder = ENCODERS.get(field.type, _encode_fallback)
    slot, encoded = encoder(field, value)
    if encoded is None or encoded == []:
        return None
    return {'field': field.id, slot: encoded}


def encode_field_values(values, fields):
    """
    Build the full replacement list of field responses for a save.

    Fields without a value are left out, which clears them on the backend.
    """
    payload = []
    for field in fields:
        entry = encode_field(field, _lookup(values, field.id))
        if entry is not None:
            payload.append(entry)
    return payload


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------

def _decode_multi_choice(field, field_response):
    return list(field_response.get('selected_options') or [])


def _decode_single_choice(field, field_response):
    selected = field_response.get('selected_options') or []
    return selected[0] if selected else None


def _decode_scalar(field, field_response):
    for slot in SCALAR_SLOTS:
        value = field_response.get(slot)
        if slot == 'value_text' and value == '' and field.type not in TEXT_TYPES:
            continue
        if value is not None:
            if slot == 'value_number':
                return parse_number(value)
            return value
    return None


def _decode_checkbox(field, field_response):
    if field.has_options:
        return _decode_multi_choice(field, field_response)
    return _decode_scalar(field, field_response)


DECODERS = {
    FieldType.MULTISELECT: _decode_multi_choice,
    FieldType.CHECKBOX: _decode_checkbox,
    FieldType.SELECT: _decode_single_choice,
    FieldType.RADIO: _decode_single_choice,
}


def decode_field_values(field_responses, fields):
    """
    Turn stored field responses into form values keyed by field id.

    Responses for fields missing from ``fields`` (or freehand fields) are ignored.
    """
    field_map = {field.id: field for field in fields if not field.is_freehand}
    values = {}
    for field_response in field_responses or ():
        field = field_map.get(field_response.get('field'))
        if field is None:
            continue
        decoder = DECODERS.get(field.type, _decode_scalar)
        values[field.id] = decoder(field, field_response)
    return values


# ---------------------------------------------------------------------------
# Read-only projection
# ---------------------------------------------------------------------------

def display_value(field, value):
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    if field.has_options:
        if isinstance(value, (list, tuple)):
            return ', '.join(field.option_label(_option_id(item)) for item in value)
        return field.option_label(_option_id(value))
    return str(value)


def preview_rows(fields, values):
    """
    Read-only projection of a response in display order, leaving out
    unanswered fields (blank, unchecked or empty selections).
    """
    rows = []
    for field in fields:
        if field.is_freehand:
            continue
        value = _lookup(values, field.id)
        if _is_blank(value) or value is False or value == []:
            continue
        rows.append({
            'field': field.id,
            'label': field.label,
            'type': field.type.value,
            'value': value,
            'display': display_value(field, value),
        })
    return rows
