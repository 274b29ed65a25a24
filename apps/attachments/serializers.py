# attachments/serializers.py
from rest_framework import serializers

from common.hms_client import HMSAPIException


class AttachmentPayloadSerializer(serializers.Serializer):
    """Visit attachment as returned by the HMS backend"""
    id = serializers.IntegerField()
    encounter_type = serializers.CharField(required=False, allow_null=True)
    object_id = serializers.IntegerField(required=False, allow_null=True)
    file = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    file_url = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    file_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    file_type = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    file_size = serializers.IntegerField(required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    uploaded_by = serializers.CharField(required=False, allow_null=True)
    uploaded_by_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    created_at = serializers.CharField(required=False, allow_null=True)


def parse_attachment_payload(data):
    serializer = AttachmentPayloadSerializer(data=data)
    if not serializer.is_valid():
        raise HMSAPIException(
            'Unexpected attachment payload from HMS',
            response_data={'errors': serializer.errors}
        )
    return serializer.validated_data


class StageFilesSerializer(serializers.Serializer):
    files = serializers.ListField(child=serializers.FileField(), allow_empty=False)
    descriptions = serializers.ListField(
        child=serializers.CharField(allow_blank=True), required=False, default=list
    )


class StagedDescriptionSerializer(serializers.Serializer):
    description = serializers.CharField(allow_blank=True, max_length=500)
