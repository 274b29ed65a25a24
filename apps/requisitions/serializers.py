# requisitions/serializers.py
from rest_framework import serializers

from .catalog import Priority, RequisitionType


class RequisitionTypeSerializer(serializers.Serializer):
    requisition_type = serializers.ChoiceField(choices=RequisitionType.choices)


class SelectItemSerializer(serializers.Serializer):
    """A catalog item as returned by the catalog search"""
    item_id = serializers.IntegerField()
    item_name = serializers.CharField()
    item_code = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    unit_price = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True
    )


class DraftItemUpdateSerializer(serializers.Serializer):
    # Values below 1 are clamped by the builder rather than rejected
    quantity = serializers.IntegerField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class BuilderUpdateSerializer(serializers.Serializer):
    priority = serializers.ChoiceField(choices=Priority.choices, required=False)
    clinical_notes = serializers.CharField(required=False, allow_blank=True)


SUMMARY_SCOPES = ('encounter', 'all', 'type')


class SummaryQuerySerializer(serializers.Serializer):
    scope = serializers.ChoiceField(choices=SUMMARY_SCOPES, required=False, default='encounter')
    requisition_type = serializers.ChoiceField(choices=RequisitionType.choices, required=False)

    def validate(self, attrs):
        if attrs['scope'] == 'type' and not attrs.get('requisition_type'):
            raise serializers.ValidationError({'requisition_type': 'Required for the type scope.'})
        return attrs
