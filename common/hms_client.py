"""
HMS API Client Service

Centralized HTTP client for the HMS backend that owns clinical templates,
template responses, visit attachments, admissions and diagnostic requisitions.
The workspace never stores clinical records itself; every read and write goes
through this client with the caller's bearer token forwarded.
"""

import requests
from django.conf import settings
from typing import Dict, Any, Optional, List
import logging

logger = logging.getLogger(__name__)


class HMSAPIException(Exception):
    """Raised for any non-2xx answer from the HMS backend or a network failure"""
    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(self.message)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def extract_error_message(response_data: Any, fallback: str) -> str:
    """
    Pull the most useful human message out of a backend error body.

    Order: ``error``, ``message``, ``detail``, then the first field error
    of a DRF validation payload, else ``fallback``.
    """
    if isinstance(response_data, dict):
        for key in ('error', 'message', 'detail'):
            value = response_data.get(key)
            if isinstance(value, str) and value.strip():
                return value
        for key, value in response_data.items():
            if key in ('success', 'data'):
                continue
            if isinstance(value, list) and value:
                return f"{key}: {value[0]}"
            if isinstance(value, str) and value.strip():
                return f"{key}: {value}"
    elif isinstance(response_data, list) and response_data:
        return str(response_data[0])
    return fallback


def unwrap(payload: Any) -> Any:
    """Strip the ``{success, data}`` envelope some endpoints add around a record"""
    if isinstance(payload, dict) and isinstance(payload.get('data'), dict) and 'id' in payload['data']:
        return payload['data']
    return payload


def results(payload: Any) -> List[Dict[str, Any]]:
    """Normalize a list endpoint answer (paginated, enveloped or bare) to a list"""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if isinstance(payload.get('results'), list):
            return payload['results']
        data = payload.get('data')
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get('results'), list):
            return data['results']
    return []


class HMSClient:
    """Client for HMS backend interactions"""

    def __init__(self, access_token: Optional[str] = None, tenant_id: Optional[str] = None):
        """
        Initialize HMS client

        Args:
            access_token: JWT access token forwarded from the caller
            tenant_id: tenant the caller belongs to, forwarded as X-Tenant-Id
        """
        self.base_url = getattr(settings, 'HMS_API_URL', 'http://localhost:8000/api').rstrip('/')
        self.access_token = access_token
        self.tenant_id = tenant_id
        self.timeout = getattr(settings, 'HMS_API_TIMEOUT', 15)

    def _get_headers(self, json_body: bool = True) -> Dict[str, str]:
        """Get request headers with authorization"""
        headers = {}
        if json_body:
            headers['Content-Type'] = 'application/json'
        if self.access_token:
            headers['Authorization'] = f'Bearer {self.access_token}'
        if self.tenant_id:
            headers['X-Tenant-Id'] = str(self.tenant_id)
        return headers

    def _handle_response(self, response: requests.Response, fallback: str) -> Any:
        """
        Handle API response and raise exceptions for errors

        Raises:
            HMSAPIException: For any API errors
        """
        if response.status_code == 204 or not response.content:
            response_data = {}
        else:
            try:
                response_data = response.json()
            except ValueError:
                response_data = {'detail': response.text}

        if response.status_code >= 400:
            error_message = extract_error_message(response_data, fallback)
            logger.error(f"HMS API error [{response.status_code}]: {error_message}")
            raise HMSAPIException(
                message=error_message,
                status_code=response.status_code,
                response_data=response_data if isinstance(response_data, dict) else {'errors': response_data}
            )

        return response_data

    def _request(self, method: str, path: str, fallback: str, *, params=None, json=None,
                 data=None, files=None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug(f"HMS {method} {url} params={params}")

        try:
            response = requests.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                files=files,
                headers=self._get_headers(json_body=files is None),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Network error on {method} {path}: {str(e)}")
            raise HMSAPIException(f"Network error: {str(e)}")

        return self._handle_response(response, fallback)

    # ==================== TEMPLATES ====================

    def list_templates(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        payload = self._request('GET', '/opd/templates/', 'Failed to load templates', params=params)
        return results(payload)

    def get_template(self, template_id: int) -> Dict[str, Any]:
        """Fetch one template with its field list and options"""
        payload = self._request('GET', f'/opd/templates/{template_id}/', 'Failed to load template')
        return unwrap(payload)

    # ==================== TEMPLATE RESPONSES ====================

    def list_responses(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self._request(
            'GET', '/opd/template-responses/', 'Failed to load responses', params=params
        )
        return results(payload)

    def get_response(self, response_id: int) -> Dict[str, Any]:
        payload = self._request(
            'GET', f'/opd/template-responses/{response_id}/', 'Failed to load response'
        )
        return unwrap(payload)

    def create_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a template response against an encounter

        Args:
            data: encounter_type, object_id, template, status and the
                optional doctor_switched_reason / original_assigned_doctor_id

        Raises:
            HMSAPIException: If the backend rejects the payload or answers without an id
        """
        logger.info(
            f"Creating response for template {data.get('template')} on "
            f"{data.get('encounter_type')} {data.get('object_id')}"
        )
        result = unwrap(self._request(
            'POST', '/opd/template-responses/', 'Failed to create response', json=data
        ))
        if not isinstance(result, dict) or not result.get('id'):
            logger.error(f"Response create returned without id: {result}")
            raise HMSAPIException('Failed to create response', response_data={'result': result})
        return result

    def update_response(self, response_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Updating response {response_id}: {sorted(data.keys())}")
        payload = self._request(
            'PATCH', f'/opd/template-responses/{response_id}/', 'Failed to save response', json=data
        )
        return unwrap(payload)

    def delete_response(self, response_id: int) -> None:
        logger.info(f"Deleting response {response_id}")
        self._request(
            'DELETE', f'/opd/template-responses/{response_id}/', 'Failed to delete response'
        )

    def mark_reviewed(self, response_id: int) -> Dict[str, Any]:
        payload = self._request(
            'POST', f'/opd/template-responses/{response_id}/mark_reviewed/',
            'Failed to mark response as reviewed', json={}
        )
        return unwrap(payload)

    def convert_to_template(self, response_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._request(
            'POST', f'/opd/template-responses/{response_id}/convert_to_template/',
            'Failed to save response as template', json=data
        )
        return unwrap(payload)

    def apply_response_template(self, response_id: int, response_template_id: int) -> Dict[str, Any]:
        payload = self._request(
            'POST', f'/opd/template-responses/{response_id}/apply_template/',
            'Failed to apply template', json={'response_template_id': response_template_id}
        )
        return unwrap(payload)

    def list_response_templates(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self._request(
            'GET', '/opd/response-templates/', 'Failed to load saved templates', params=params
        )
        return results(payload)

    # ==================== ATTACHMENTS ====================

    def list_attachments(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self._request(
            'GET', '/opd/visit-attachments/', 'Failed to load attachments', params=params
        )
        return results(payload)

    def upload_attachment(self, fields: Dict[str, Any], file_name: str, content: bytes,
                          content_type: str) -> Dict[str, Any]:
        """
        Upload one file as multipart form data

        Args:
            fields: encounter_type, object_id and description
            file_name / content / content_type: the file part
        """
        logger.info(f"Uploading attachment {file_name} ({len(content)} bytes)")
        payload = self._request(
            'POST', '/opd/visit-attachments/', f'Failed to upload {file_name}',
            data=fields, files={'file': (file_name, content, content_type)}
        )
        return unwrap(payload)

    def delete_attachment(self, attachment_id: int) -> None:
        logger.info(f"Deleting attachment {attachment_id}")
        self._request(
            'DELETE', f'/opd/visit-attachments/{attachment_id}/', 'Failed to delete attachment'
        )

    # ==================== ENCOUNTERS ====================

    def get_visit(self, visit_id: int) -> Dict[str, Any]:
        payload = self._request('GET', f'/opd/visits/{visit_id}/', 'Failed to load visit')
        return unwrap(payload)

    def list_admissions(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self._request('GET', '/ipd/admissions/', 'Failed to load admissions', params=params)
        return results(payload)

    def list_clinical_notes(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self._request(
            'GET', '/opd/clinical-notes/', 'Failed to load clinical notes', params=params
        )
        return results(payload)

    def create_clinical_note(self, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._request(
            'POST', '/opd/clinical-notes/', 'Failed to save clinical note', json=data
        )
        return unwrap(payload)

    def update_clinical_note(self, note_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._request(
            'PATCH', f'/opd/clinical-notes/{note_id}/', 'Failed to save clinical note', json=data
        )
        return unwrap(payload)

    # ==================== CATALOG & REQUISITIONS ====================

    def search_catalog(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self._request('GET', path, 'Failed to search catalog', params=params)
        return results(payload)

    def list_requisitions(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self._request(
            'GET', '/diagnostics/requisitions/', 'Failed to load requisitions', params=params
        )
        return results(payload)

    def create_requisition(self, data: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(
            f"Creating {data.get('requisition_type')} requisition for patient {data.get('patient')}"
        )
        result = unwrap(self._request(
            'POST', '/diagnostics/requisitions/', 'Failed to create requisition', json=data
        ))
        if not isinstance(result, dict) or not result.get('id'):
            raise HMSAPIException('Failed to create requisition', response_data={'result': result})
        return result

    def add_requisition_item(self, requisition_id: int, action: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """POST to one of add_medicine / add_procedure / add_package"""
        payload = self._request(
            'POST', f'/diagnostics/requisitions/{requisition_id}/{action}/',
            'Failed to add item to requisition', json=data
        )
        return unwrap(payload)

    def delete_requisition(self, requisition_id: int) -> None:
        logger.info(f"Deleting requisition {requisition_id}")
        self._request(
            'DELETE', f'/diagnostics/requisitions/{requisition_id}/', 'Failed to delete requisition'
        )


def get_hms_client(request) -> HMSClient:
    """
    Helper function to get HMSClient with auth token from request

    Args:
        request: Django or DRF request that went through JWTAuthenticationMiddleware

    Returns:
        Configured HMSClient instance
    """
    access_token = getattr(request, 'access_token', None)

    if not access_token:
        auth_header = request.META.get('HTTP_AUTHORIZATION', '')
        if auth_header.startswith('Bearer '):
            access_token = auth_header.split(' ')[1]

    return HMSClient(access_token=access_token, tenant_id=getattr(request, 'tenant_id', None))
