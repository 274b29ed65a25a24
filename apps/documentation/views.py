# documentation/views.py
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from drf_spectacular.utils import extend_schema, OpenApiParameter

from common.exceptions import PreconditionFailed
from apps.consultation.mixins import WorkspaceViewMixin

from .fields import preview_rows
from .serializers import (
    AddResponseSerializer,
    ApplyTemplateSerializer,
    FieldValuesSerializer,
    ResponseListQuerySerializer,
    SaveAsTemplateSerializer,
)


def _confirmed(request):
    return str(request.query_params.get('confirm', '')).lower() in ('1', 'true', 'yes')


class TemplateViewSet(WorkspaceViewMixin, viewsets.ViewSet):
    """Templates available for documenting in this consultation"""
    lookup_value_regex = r'\d+'

    @extend_schema(
        summary="List Templates",
        description="Active clinical note templates, without their fields",
        tags=['Consultation - Documentation']
    )
    def list(self, request, visit_id=None):
        templates = self.get_workspace().templates()
        return Response({
            'success': True,
            'count': len(templates),
            'data': [
                {key: value for key, value in template.as_dict().items() if key != 'fields'}
                for template in templates
            ]
        })

    @extend_schema(
        summary="Open Template",
        description="Select a template: its first response is created implicitly, "
                    "otherwise the most recent response becomes active",
        tags=['Consultation - Documentation']
    )
    @action(detail=True, methods=['post'])
    def open(self, request, visit_id=None, pk=None):
        workspace = self.get_workspace()
        with self.guard(f'open_template:{pk}'):
            response, created = workspace.lifecycle.open_template(pk, workspace.encounter)
        return Response({
            'success': True,
            'created': created,
            'data': workspace.response_detail(response, refresh=True)
        }, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


class ResponseViewSet(WorkspaceViewMixin, viewsets.ViewSet):
    """Template responses of the current encounter"""
    lookup_value_regex = r'\d+'

    @extend_schema(
        summary="List Responses",
        description="Responses of the current encounter, newest first",
        parameters=[OpenApiParameter(name='template', type=int, description='Only this template')],
        tags=['Consultation - Documentation']
    )
    def list(self, request, visit_id=None):
        query = ResponseListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        workspace = self.get_workspace()
        responses = workspace.lifecycle.list_responses(
            workspace.encounter, query.validated_data.get('template')
        )
        return Response({
            'success': True,
            'count': len(responses),
            'data': [response.as_dict() for response in responses]
        })

    @extend_schema(
        summary="Add Response",
        description="Add a response to a template. When the template already has one, "
                    "the request must be confirmed and may carry a handover reason.",
        request=AddResponseSerializer,
        tags=['Consultation - Documentation']
    )
    def create(self, request, visit_id=None):
        serializer = AddResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        workspace = self.get_workspace()
        with self.guard(f"add_response:{data['template_id']}"):
            response = workspace.lifecycle.add_response(
                data['template_id'],
                workspace.encounter,
                switch_reason=data['switch_reason'],
                confirmed=data['confirm'],
            )
        return Response({
            'success': True,
            'message': 'Response created',
            'data': workspace.response_detail(response)
        }, status=status.HTTP_201_CREATED)

    @extend_schema(
        summary="Select Response",
        description="Make the response active and return its editable detail",
        tags=['Consultation - Documentation']
    )
    def retrieve(self, request, visit_id=None, pk=None):
        workspace = self.get_workspace()
        response = workspace.select_response(pk)
        return Response({'success': True, 'data': workspace.response_detail(response, refresh=True)})

    @extend_schema(
        summary="Delete Response",
        parameters=[OpenApiParameter(name='confirm', type=bool, required=True)],
        tags=['Consultation - Documentation']
    )
    def destroy(self, request, visit_id=None, pk=None):
        workspace = self.get_workspace()
        response = workspace.response(pk)
        with self.guard(f'delete_response:{pk}'):
            workspace.lifecycle.delete_response(response.id, confirmed=_confirmed(request))
        return Response({'success': True, 'message': 'Response deleted'})

    @extend_schema(
        summary="Response Field Values",
        description="GET returns the form and stored values; PUT replaces every value in one save",
        request=FieldValuesSerializer,
        tags=['Consultation - Documentation']
    )
    @action(detail=True, methods=['get', 'put'])
    def fields(self, request, visit_id=None, pk=None):
        workspace = self.get_workspace()
        response = workspace.select_response(pk)
        if request.method == 'GET':
            return Response({'success': True, 'data': workspace.response_detail(response)})

        serializer = FieldValuesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with self.guard(f'save_fields:{pk}'):
            saved, responses = workspace.lifecycle.save_fields(
                response, serializer.validated_data['values'], workspace.encounter
            )
        template = workspace.lifecycle.template_for(response)
        return Response({
            'success': True,
            'message': 'Response saved',
            'data': {
                'values': {str(key): value for key, value in saved.items()},
                'responses': [item.as_dict() for item in responses],
                'active_response_id': workspace.session.active_response_id,
                'preview': preview_rows(template.fields, saved),
            }
        })

    def _transition(self, pk, transition):
        workspace = self.get_workspace()
        response = workspace.response(pk)
        with self.guard(f'{transition}:{pk}'):
            response = workspace.lifecycle.transition(response, transition)
        return Response({'success': True, 'data': response.as_dict()})

    @extend_schema(summary="Complete Response", tags=['Consultation - Documentation'])
    @action(detail=True, methods=['post'])
    def complete(self, request, visit_id=None, pk=None):
        return self._transition(pk, 'complete')

    @extend_schema(summary="Mark Response Reviewed", tags=['Consultation - Documentation'])
    @action(detail=True, methods=['post'])
    def review(self, request, visit_id=None, pk=None):
        return self._transition(pk, 'review')

    @extend_schema(summary="Archive Response", tags=['Consultation - Documentation'])
    @action(detail=True, methods=['post'])
    def archive(self, request, visit_id=None, pk=None):
        return self._transition(pk, 'archive')

    @extend_schema(
        summary="Save As Template",
        description="Save the response's values as a reusable named template",
        request=SaveAsTemplateSerializer,
        tags=['Consultation - Templates']
    )
    @action(detail=True, methods=['post'], url_path='save-as-template')
    def save_as_template(self, request, visit_id=None, pk=None):
        serializer = SaveAsTemplateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if not data['name'].strip():
            raise PreconditionFailed('Template name is required.')

        workspace = self.get_workspace()
        response = workspace.response(pk)
        with self.guard(f'save_as_template:{pk}'):
            saved = workspace.reuse.save_as_template(
                response, data['name'], is_public=data['is_public'], description=data['description']
            )
        return Response({
            'success': True,
            'message': 'Template saved',
            'data': saved.as_dict()
        }, status=status.HTTP_201_CREATED)

    @extend_schema(
        summary="Applicable Saved Templates",
        description="Saved templates built from the same template as this response",
        tags=['Consultation - Templates']
    )
    @action(detail=True, methods=['get'], url_path='response-templates')
    def response_templates(self, request, visit_id=None, pk=None):
        workspace = self.get_workspace()
        saved = workspace.reuse.applicable_templates(workspace.response(pk))
        return Response({
            'success': True,
            'count': len(saved),
            'data': [item.as_dict() for item in saved]
        })

    @extend_schema(
        summary="Apply Saved Template",
        description="Overwrite the response's values with a saved template",
        request=ApplyTemplateSerializer,
        tags=['Consultation - Templates']
    )
    @action(detail=True, methods=['post'], url_path='apply-template')
    def apply_template(self, request, visit_id=None, pk=None):
        serializer = ApplyTemplateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        workspace = self.get_workspace()
        response = workspace.response(pk)
        with self.guard(f'apply_template:{pk}'):
            result = workspace.reuse.apply_template(
                response, serializer.validated_data['response_template_id']
            )
        return Response({
            'success': True,
            'message': 'Template applied',
            'data': workspace.describe_response(*result)
        })
