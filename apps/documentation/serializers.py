# documentation/serializers.py
from rest_framework import serializers

from common.hms_client import HMSAPIException

from .schema import ResponseStatus, Template, TemplateResponse, ResponseTemplate


# ============================================================================
# BACKEND PAYLOAD SERIALIZERS
# Validate what the HMS backend returns before it reaches the engine
# ============================================================================

class FieldOptionPayloadSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    option_label = serializers.CharField(allow_blank=True)
    option_value = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    display_order = serializers.IntegerField(required=False, default=0)
    is_active = serializers.BooleanField(required=False, default=True)


class FieldPayloadSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    field_label = serializers.CharField(allow_blank=True)
    field_name = serializers.CharField(required=False, allow_blank=True, default='')
    field_type = serializers.CharField()
    is_required = serializers.BooleanField(required=False, default=False)
    display_order = serializers.IntegerField(required=False, default=0)
    help_text = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    placeholder = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    is_active = serializers.BooleanField(required=False, default=True)
    options = FieldOptionPayloadSerializer(many=True, required=False, allow_null=True)


class TemplatePayloadSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    code = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    group_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    is_active = serializers.BooleanField(required=False, default=True)
    fields = FieldPayloadSerializer(many=True, required=False, allow_null=True)


class FieldResponsePayloadSerializer(serializers.Serializer):
    field = serializers.IntegerField()
    value_text = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    value_number = serializers.FloatField(required=False, allow_null=True)
    value_date = serializers.CharField(required=False, allow_null=True)
    value_datetime = serializers.CharField(required=False, allow_null=True)
    value_boolean = serializers.BooleanField(required=False, allow_null=True)
    selected_options = serializers.ListField(
        child=serializers.IntegerField(), required=False, default=list
    )


class TemplateResponsePayloadSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    template = serializers.IntegerField()
    template_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    encounter_type = serializers.CharField(required=False, allow_null=True)
    object_id = serializers.IntegerField(required=False, allow_null=True)
    response_sequence = serializers.IntegerField(required=False, default=0)
    status = serializers.ChoiceField(choices=ResponseStatus.choices, required=False, default=ResponseStatus.DRAFT)
    filled_by_id = serializers.CharField(required=False, allow_null=True)
    reviewed_by_id = serializers.CharField(required=False, allow_null=True)
    reviewed_at = serializers.DateTimeField(required=False, allow_null=True)
    is_reviewed = serializers.BooleanField(required=False, default=False)
    doctor_switched_reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    original_assigned_doctor_id = serializers.CharField(required=False, allow_null=True)
    canvas_data = serializers.JSONField(required=False, allow_null=True)
    response_date = serializers.DateTimeField(required=False, allow_null=True)
    created_at = serializers.DateTimeField(required=False, allow_null=True)
    field_response_count = serializers.IntegerField(required=False, allow_null=True)
    field_responses = FieldResponsePayloadSerializer(many=True, required=False)


class ResponseTemplatePayloadSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    template = serializers.IntegerField(required=False, allow_null=True)
    is_public = serializers.BooleanField(required=False, default=False)
    usage_count = serializers.IntegerField(required=False, default=0)
    template_field_values = serializers.JSONField(required=False, allow_null=True)


def _validated(serializer_class, data, what):
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise HMSAPIException(
            f'Unexpected {what} payload from HMS',
            response_data={'errors': serializer.errors}
        )
    return serializer.validated_data


def parse_template(data):
    return Template.from_payload(_validated(TemplatePayloadSerializer, data, 'template'))


def parse_response(data):
    return TemplateResponse.from_payload(_validated(TemplateResponsePayloadSerializer, data, 'response'))


def parse_response_template(data):
    return ResponseTemplate.from_payload(
        _validated(ResponseTemplatePayloadSerializer, data, 'response template')
    )


# ============================================================================
# WORKSPACE REQUEST SERIALIZERS
# ============================================================================

class ResponseListQuerySerializer(serializers.Serializer):
    template = serializers.IntegerField(required=False, min_value=1)


class AddResponseSerializer(serializers.Serializer):
    template_id = serializers.IntegerField()
    switch_reason = serializers.CharField(required=False, allow_blank=True, default='')
    confirm = serializers.BooleanField(required=False, default=False)


class FieldValuesSerializer(serializers.Serializer):
    values = serializers.DictField(child=serializers.JSONField(allow_null=True))


class SaveAsTemplateSerializer(serializers.Serializer):
    # Blank names are rejected by the reuse engine with its own message
    name = serializers.CharField(allow_blank=True, trim_whitespace=False)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    is_public = serializers.BooleanField(required=False, default=False)


class ApplyTemplateSerializer(serializers.Serializer):
    response_template_id = serializers.IntegerField()
