# attachments/views.py
import logging

from django.http import FileResponse, Http404
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import extend_schema, OpenApiParameter

from common.drf_auth import AllowAny
from apps.consultation.mixins import WorkspaceViewMixin

from .board import PreviewHandle, staging_storage
from .serializers import StagedDescriptionSerializer, StageFilesSerializer

logger = logging.getLogger(__name__)


class AttachmentViewSet(WorkspaceViewMixin, viewsets.ViewSet):
    """Persisted attachments of the current encounter and the upload queue"""
    lookup_value_regex = r'\d+'
    parser_classes = [MultiPartParser, FormParser, JSONParser]

    @extend_schema(summary="List Attachments", tags=['Consultation - Attachments'])
    def list(self, request, visit_id=None):
        board = self.get_workspace().board
        attachments = board.list()
        return Response({
            'success': True,
            'count': len(attachments),
            'data': [attachment.as_dict() for attachment in attachments],
            'staged': [staged.as_dict() for staged in board.staged],
        })

    @extend_schema(
        summary="Delete Attachment",
        parameters=[OpenApiParameter(name='confirm', type=bool, required=True)],
        tags=['Consultation - Attachments']
    )
    def destroy(self, request, visit_id=None, pk=None):
        confirmed = str(request.query_params.get('confirm', '')).lower() in ('1', 'true', 'yes')
        with self.guard(f'delete_attachment:{pk}'):
            self.get_workspace().board.delete(pk, confirmed=confirmed)
        return Response({'success': True, 'message': 'Attachment deleted'})

    @extend_schema(
        summary="Stage Files",
        description="Queue files with their descriptions; each file is validated on its own",
        request=StageFilesSerializer,
        tags=['Consultation - Attachments']
    )
    @action(detail=False, methods=['post'])
    def stage(self, request, visit_id=None):
        serializer = StageFilesSerializer(data={
            'files': request.FILES.getlist('files'),
            'descriptions': request.data.getlist('descriptions') if hasattr(request.data, 'getlist')
            else request.data.get('descriptions', []),
        })
        serializer.is_valid(raise_exception=True)

        board = self.get_workspace().board
        accepted, rejected = board.stage(
            serializer.validated_data['files'], serializer.validated_data['descriptions']
        )
        return Response({
            'success': bool(accepted),
            'data': {
                'staged': [staged.as_dict() for staged in board.staged],
                'accepted': [staged.id for staged in accepted],
                'rejected': rejected,
            }
        }, status=status.HTTP_201_CREATED if accepted else status.HTTP_400_BAD_REQUEST)

    @extend_schema(
        summary="Upload Staged Files",
        description="Upload every queued file independently; the queue is emptied afterwards",
        request=None,
        tags=['Consultation - Attachments']
    )
    @action(detail=False, methods=['post'])
    def commit(self, request, visit_id=None):
        with self.guard('commit_attachments'):
            report = self.get_workspace().board.commit()

        if report.failed and report.succeeded:
            response_status = status.HTTP_207_MULTI_STATUS
        elif report.failed:
            response_status = status.HTTP_502_BAD_GATEWAY
        else:
            response_status = status.HTTP_201_CREATED
        return Response({
            'success': not report.failed,
            'message': '; '.join(report.messages),
            'data': report.as_dict()
        }, status=response_status)


class StagedFileViewSet(WorkspaceViewMixin, viewsets.ViewSet):
    """One file in the upload queue"""
    lookup_value_regex = r'[0-9a-f]+'

    @extend_schema(
        summary="Update Staged Description",
        request=StagedDescriptionSerializer,
        tags=['Consultation - Attachments']
    )
    def partial_update(self, request, visit_id=None, pk=None):
        serializer = StagedDescriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        staged = self.get_workspace().board.update_description(pk, serializer.validated_data['description'])
        return Response({'success': True, 'data': staged.as_dict()})

    @extend_schema(summary="Remove Staged File", tags=['Consultation - Attachments'])
    def destroy(self, request, visit_id=None, pk=None):
        self.get_workspace().board.unstage(pk)
        return Response({'success': True, 'message': 'File removed from queue'})


class PreviewView(APIView):
    """
    Bytes of a staged image, reachable only while its preview handle is held.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(summary="Staged File Preview", tags=['Consultation - Attachments'])
    def get(self, request, token):
        entry = PreviewHandle.resolve(token)
        if entry is None:
            raise Http404('Preview is no longer available.')

        storage = staging_storage()
        if not storage.exists(entry['storage_name']):
            logger.warning(f"Preview {token} points at a missing staged file")
            raise Http404('Preview is no longer available.')
        return FileResponse(storage.open(entry['storage_name'], 'rb'), content_type=entry['content_type'])
