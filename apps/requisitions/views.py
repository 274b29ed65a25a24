# requisitions/views.py
from rest_framework import status, viewsets
from rest_framework.response import Response

from drf_spectacular.utils import extend_schema, OpenApiParameter

from apps.consultation.mixins import WorkspaceViewMixin

from .serializers import (
    BuilderUpdateSerializer,
    DraftItemUpdateSerializer,
    RequisitionTypeSerializer,
    SelectItemSerializer,
    SummaryQuerySerializer,
)
from .catalog import CatalogItem
from .summaries import RequisitionSummaries, summarize


class RequisitionBuilderViewSet(WorkspaceViewMixin, viewsets.ViewSet):
    """Draft requisition of the consultation and its submission"""

    def _builder_response(self, builder, response_status=status.HTTP_200_OK):
        return Response({'success': True, 'data': builder.as_dict()}, status=response_status)

    @extend_schema(summary="Requisition Draft", tags=['Consultation - Requisitions'])
    def builder(self, request, visit_id=None):
        return self._builder_response(self.get_workspace().builder)

    @extend_schema(
        summary="Update Draft Priority And Notes",
        request=BuilderUpdateSerializer,
        tags=['Consultation - Requisitions']
    )
    def update_builder(self, request, visit_id=None):
        serializer = BuilderUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        builder = self.get_workspace().builder
        if 'priority' in serializer.validated_data:
            builder.set_priority(serializer.validated_data['priority'])
        if 'clinical_notes' in serializer.validated_data:
            builder.set_notes(serializer.validated_data['clinical_notes'])
        return self._builder_response(builder)

    @extend_schema(
        summary="Select Requisition Type",
        description="Switching type discards the drafted items and the search",
        request=RequisitionTypeSerializer,
        tags=['Consultation - Requisitions']
    )
    def select_type(self, request, visit_id=None):
        serializer = RequisitionTypeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        builder = self.get_workspace().builder
        builder.select_type(serializer.validated_data['requisition_type'])
        return self._builder_response(builder)

    @extend_schema(
        summary="Add Draft Item",
        description="Adding an item that is already drafted leaves the draft unchanged",
        request=SelectItemSerializer,
        tags=['Consultation - Requisitions']
    )
    def add_item(self, request, visit_id=None):
        serializer = SelectItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        builder = self.get_workspace().builder
        builder.select_item(CatalogItem(**serializer.validated_data))
        return self._builder_response(builder, status.HTTP_201_CREATED)

    @extend_schema(
        summary="Update Draft Item",
        request=DraftItemUpdateSerializer,
        tags=['Consultation - Requisitions']
    )
    def update_item(self, request, visit_id=None, local_id=None):
        serializer = DraftItemUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        builder = self.get_workspace().builder
        if 'quantity' in serializer.validated_data:
            builder.update_quantity(local_id, serializer.validated_data['quantity'])
        if 'notes' in serializer.validated_data:
            builder.update_notes(local_id, serializer.validated_data['notes'])
        return self._builder_response(builder)

    @extend_schema(summary="Remove Draft Item", tags=['Consultation - Requisitions'])
    def remove_item(self, request, visit_id=None, local_id=None):
        builder = self.get_workspace().builder
        builder.remove_item(local_id)
        return self._builder_response(builder)

    @extend_schema(summary="Reset Draft", request=None, tags=['Consultation - Requisitions'])
    def reset(self, request, visit_id=None):
        builder = self.get_workspace().builder
        builder.reset()
        return self._builder_response(builder)

    @extend_schema(
        summary="Search Catalog",
        description="Up to ten orderable items of the drafted requisition type",
        parameters=[OpenApiParameter(name='search', type=str)],
        tags=['Consultation - Requisitions']
    )
    def catalog(self, request, visit_id=None):
        builder = self.get_workspace().builder
        items = builder.search_catalog(request.query_params.get('search', ''))
        return Response({
            'success': True,
            'requisition_type': builder.requisition_type.value,
            'count': len(items),
            'data': [item.as_dict() for item in items]
        })

    @extend_schema(
        summary="Submit Requisition",
        description="Create the requisition and add its items. When an item fails the "
                    "requisition stays with the items added so far and 207 is returned.",
        request=None,
        tags=['Consultation - Requisitions']
    )
    def submit(self, request, visit_id=None):
        with self.guard('submit_requisition'):
            result = self.get_workspace().builder.submit()
        return Response({
            'success': True,
            'message': 'Requisition created successfully',
            'data': result
        }, status=status.HTTP_201_CREATED)

    @extend_schema(
        summary="Requisition Summary",
        parameters=[
            OpenApiParameter(name='scope', type=str, description='encounter, all, type'),
            OpenApiParameter(name='requisition_type', type=str),
        ],
        tags=['Consultation - Requisitions']
    )
    def summary(self, request, visit_id=None):
        serializer = SummaryQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        scope = serializer.validated_data['scope']

        workspace = self.get_workspace()
        summaries = RequisitionSummaries(workspace.client)
        if scope == 'all':
            requisitions = summaries.all()
        elif scope == 'type':
            requisitions = summaries.for_type(serializer.validated_data['requisition_type'])
        else:
            requisitions = summaries.for_encounter(workspace.encounter)
        return Response({'success': True, 'scope': scope, 'data': summarize(requisitions)})
