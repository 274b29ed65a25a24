# documentation/forms.py
"""
Dynamic response form.

A template's field list becomes a Django form whose fields are keyed by the
template field id. The form validates the edited values, and its description
is what the browser renders.
"""
from django import forms

from .schema import FieldType


def _choices(field):
    return [(option.id, option.label) for option in field.options]


def _text(field, common):
    return forms.CharField(**common)


def _textarea(field, common):
    return forms.CharField(widget=forms.Textarea, **common)


def _number(field, common):
    return forms.FloatField(**common)


def _decimal(field, common):
    return forms.DecimalField(**common)


def _boolean(field, common):
    # An unchecked box is a valid answer, so required-ness is not enforced
    common['required'] = False
    return forms.BooleanField(**common)


def _date(field, common):
    return forms.DateField(**common)


def _datetime(field, common):
    return forms.DateTimeField(**common)


def _time(field, common):
    return forms.TimeField(**common)


def _select(field, common):
    return forms.TypedChoiceField(
        choices=_choices(field), coerce=int, empty_value=None, **common
    )


def _radio(field, common):
    return forms.TypedChoiceField(
        choices=_choices(field), coerce=int, empty_value=None, widget=forms.RadioSelect, **common
    )


def _multiselect(field, common):
    return forms.TypedMultipleChoiceField(choices=_choices(field), coerce=int, **common)


def _checkbox(field, common):
    if not field.has_options:
        return _boolean(field, common)
    return forms.TypedMultipleChoiceField(
        choices=_choices(field), coerce=int, widget=forms.CheckboxSelectMultiple, **common
    )


FORM_FIELD_BUILDERS = {
    FieldType.TEXT: _text,
    FieldType.TEXTAREA: _textarea,
    FieldType.NUMBER: _number,
    FieldType.DECIMAL: _decimal,
    FieldType.BOOLEAN: _boolean,
    FieldType.DATE: _date,
    FieldType.DATETIME: _datetime,
    FieldType.TIME: _time,
    FieldType.SELECT: _select,
    FieldType.RADIO: _radio,
    FieldType.MULTISELECT: _multiselect,
    FieldType.CHECKBOX: _checkbox,
}

# Option-bearing types that cannot be rendered without options
REQUIRES_OPTIONS = frozenset({FieldType.SELECT, FieldType.RADIO, FieldType.MULTISELECT})


def renderable_fields(fields):
    """Fields the generic form can render, in display order"""
    return [
        field for field in fields
        if field.type in FORM_FIELD_BUILDERS
        and not (field.type in REQUIRES_OPTIONS and not field.has_options)
    ]


class ResponseForm(forms.Form):
    """Form built from a template's field snapshot"""

    def __init__(self, schema_fields, *args, enforce_required=True, **kwargs):
        super().__init__(*args, **kwargs)
        self.schema_fields = renderable_fields(schema_fields)
        for field in self.schema_fields:
            common = {
                'label': field.label,
                'required': field.is_required and enforce_required,
                'help_text': field.help_text,
            }
            form_field = FORM_FIELD_BUILDERS[field.type](field, common)
            if field.placeholder:
                form_field.widget.attrs['placeholder'] = field.placeholder
            self.fields[str(field.id)] = form_field

    def field_values(self):
        """cleaned_data as codec form values keyed by field id"""
        values = {}
        for field in self.schema_fields:
            value = self.cleaned_data.get(str(field.id))
            if hasattr(value, 'isoformat'):
                value = value.isoformat()
            elif field.type == FieldType.DECIMAL and value is not None:
                value = str(value)
            elif field.type == FieldType.NUMBER and value is not None and float(value).is_integer():
                value = int(value)
            values[field.id] = value
        return values

    def describe(self):
        """JSON description of the rendered inputs for the browser"""
        description = []
        for field in self.schema_fields:
            form_field = self.fields[str(field.id)]
            description.append({
                'id': field.id,
                'name': str(field.id),
                'label': field.label,
                'type': field.type.value,
                'widget': form_field.widget.__class__.__name__,
                'required': field.is_required,
                'help_text': field.help_text,
                'placeholder': field.placeholder,
                'choices': [
                    {'id': option.id, 'label': option.label} for option in field.options
                ] if field.has_options else None,
            })
        return description


def build_response_form(fields, data=None, initial=None, enforce_required=True):
    """
    Build a ResponseForm for ``fields``.

    ``data`` / ``initial`` are keyed by field id; int keys are accepted and
    normalized to the form's string field names. Drafts are saved with
    ``enforce_required=False``; completion checks required fields.
    """
    def normalize(values):
        if values is None:
            return None
        return {str(key): value for key, value in values.items()}

    return ResponseForm(
        fields, data=normalize(data), initial=normalize(initial), enforce_required=enforce_required
    )
