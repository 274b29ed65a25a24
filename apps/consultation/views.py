# consultation/views.py
from django.http import JsonResponse
from rest_framework import viewsets
from rest_framework.response import Response

from drf_spectacular.utils import extend_schema

from .mixins import WorkspaceViewMixin
from .serializers import (
    ActiveResponseSerializer,
    ActiveTabSerializer,
    EncounterSwitchSerializer,
    FollowupSerializer,
)


class WorkspaceViewSet(WorkspaceViewMixin, viewsets.ViewSet):
    """The consultation screen of one OPD visit"""

    @extend_schema(
        summary="Workspace State",
        description="Encounter, templates, responses, active response, attachments "
                    "and the requisition draft in one payload",
        tags=['Consultation']
    )
    def state(self, request, visit_id=None):
        return Response({'success': True, 'data': self.get_workspace().state()})

    @extend_schema(
        summary="Close Workspace",
        description="Drop the workspace state of this visit; staged files are discarded",
        tags=['Consultation']
    )
    def close(self, request, visit_id=None):
        self.get_workspace().close()
        return Response({'success': True, 'message': 'Workspace closed'})

    @extend_schema(
        summary="Switch Encounter",
        description="Document against the visit or the patient's active admission",
        request=EncounterSwitchSerializer,
        tags=['Consultation']
    )
    def encounter(self, request, visit_id=None):
        serializer = EncounterSwitchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = self.get_workspace().switch_encounter(serializer.validated_data['encounter_type'])
        return Response({'success': True, 'data': data})

    @extend_schema(
        summary="Select Active Response",
        request=ActiveResponseSerializer,
        tags=['Consultation']
    )
    def active_response(self, request, visit_id=None):
        serializer = ActiveResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        workspace = self.get_workspace()
        response = workspace.select_response(serializer.validated_data['response_id'])
        return Response({'success': True, 'data': workspace.response_detail(response, refresh=True)})

    @extend_schema(summary="Select Tab", request=ActiveTabSerializer, tags=['Consultation'])
    def tab(self, request, visit_id=None):
        serializer = ActiveTabSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        workspace = self.get_workspace()
        workspace.session.set_active_tab(serializer.validated_data['tab'])
        return Response({'success': True, 'data': {'active_tab': workspace.session.active_tab}})

    @extend_schema(
        summary="Set Follow-up",
        description="Store the next follow-up date and queue the patient reminder",
        request=FollowupSerializer,
        tags=['Consultation']
    )
    def followup(self, request, visit_id=None):
        serializer = FollowupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with self.guard('followup'):
            data = self.get_workspace().save_followup(serializer.validated_data['next_followup_date'])
        return Response({'success': True, 'message': 'Follow-up saved', 'data': data})


def health(request):
    return JsonResponse({'status': 'ok'})
