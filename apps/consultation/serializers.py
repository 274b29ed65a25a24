# consultation/serializers.py
from rest_framework import serializers

from apps.encounters.resolver import EncounterType

from .session import TABS


class EncounterSwitchSerializer(serializers.Serializer):
    encounter_type = serializers.ChoiceField(choices=EncounterType.choices)


class ActiveResponseSerializer(serializers.Serializer):
    response_id = serializers.IntegerField()


class ActiveTabSerializer(serializers.Serializer):
    tab = serializers.ChoiceField(choices=TABS)


class FollowupSerializer(serializers.Serializer):
    next_followup_date = serializers.DateField(allow_null=True)
