"""
Workspace error taxonomy and the DRF exception handler that renders it.

Every failure leaves the workspace usable: errors are rendered as
``{"success": false, "error": {...}}`` and never require a reload.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from .hms_client import HMSAPIException

logger = logging.getLogger(__name__)


class WorkspaceError(APIException):
    """Base for errors raised by the workspace engine itself"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Workspace operation failed.'
    default_code = 'workspace_error'

    def __init__(self, detail=None, code=None, **extra):
        super().__init__(detail=detail, code=code)
        self.extra = extra


class PreconditionFailed(WorkspaceError):
    """Operation refused before any backend call was attempted"""
    default_detail = 'Operation cannot be performed in the current state.'
    default_code = 'precondition_failed'


class HandoverReasonRequired(WorkspaceError):
    """The template already has a response; the caller must confirm with an optional reason"""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This template already has a response for this encounter. Confirm to add another.'
    default_code = 'handover_reason_required'


class OperationInFlight(WorkspaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The same operation is already in progress.'
    default_code = 'operation_in_flight'


class PartialFailure(WorkspaceError):
    """Some independent sub-operations succeeded and some failed"""
    status_code = status.HTTP_207_MULTI_STATUS
    default_detail = 'Some items could not be processed.'
    default_code = 'partial_failure'


class RequisitionPartiallySubmitted(PartialFailure):
    default_code = 'requisition_partially_submitted'

    def __init__(self, requisition_id, added, total, reason, rolled_back=False):
        if rolled_back:
            detail = f'No items could be added, so the requisition was removed: {reason}'
        else:
            detail = f'Requisition created but only {added} of {total} items were added: {reason}'
        super().__init__(
            detail=detail,
            requisition_id=requisition_id,
            added=added,
            total=total,
            rolled_back=rolled_back,
        )


class StaleReference(WorkspaceError):
    """The referenced record no longer exists on the backend"""
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'The selected record no longer exists.'
    default_code = 'stale_reference'


def _error_body(code, message, **extra):
    return {'success': False, 'error': {'code': code, 'message': message, **extra}}


def api_exception_handler(exc, context):
    if isinstance(exc, HMSAPIException):
        upstream = exc.status_code
        status_code = upstream if upstream and 400 <= upstream < 500 else status.HTTP_502_BAD_GATEWAY
        return Response(
            _error_body('hms_error', exc.message, upstream_status=upstream),
            status=status_code
        )

    if isinstance(exc, WorkspaceError):
        return Response(
            _error_body(exc.default_code, str(exc.detail), **exc.extra),
            status=exc.status_code
        )

    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception(f"Unhandled error in {context.get('view').__class__.__name__}")
        return Response(
            _error_body('server_error', 'Something went wrong. Please try again.'),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    resp.data = _error_body('api_error', detail)
    return resp
