# common/tests.py

import json
from datetime import datetime, timedelta, timezone as dt_timezone

import jwt
import requests
from django.conf import settings
from django.core.cache import cache
from django.test import RequestFactory, SimpleTestCase
from rest_framework.exceptions import ValidationError
from unittest.mock import MagicMock, patch

from .exceptions import (
    OperationInFlight,
    PreconditionFailed,
    RequisitionPartiallySubmitted,
    api_exception_handler,
)
from .guards import in_flight, lock_key
from .hms_client import HMSAPIException, HMSClient, extract_error_message, get_hms_client, results, unwrap
from .middleware import JWTAuthenticationMiddleware


def http_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = b'' if body is None else json.dumps(body).encode()
    response.json.return_value = body
    return response


class ErrorMessageTestCase(SimpleTestCase):

    def test_message_precedence(self):
        self.assertEqual(extract_error_message({'error': 'E', 'message': 'M'}, 'F'), 'E')
        self.assertEqual(extract_error_message({'message': 'M', 'detail': 'D'}, 'F'), 'M')
        self.assertEqual(extract_error_message({'detail': 'D'}, 'F'), 'D')

    def test_first_field_error(self):
        self.assertEqual(
            extract_error_message({'success': False, 'object_id': ['This field is required.']}, 'F'),
            'object_id: This field is required.'
        )

    def test_fallback(self):
        self.assertEqual(extract_error_message({}, 'Failed to save response'), 'Failed to save response')
        self.assertEqual(extract_error_message(None, 'Failed'), 'Failed')

    def test_unwrap_and_results(self):
        self.assertEqual(unwrap({'success': True, 'data': {'id': 4}}), {'id': 4})
        self.assertEqual(unwrap({'id': 4}), {'id': 4})
        self.assertEqual(results({'count': 1, 'results': [{'id': 1}]}), [{'id': 1}])
        self.assertEqual(results({'success': True, 'data': [{'id': 2}]}), [{'id': 2}])
        self.assertEqual(results([{'id': 3}]), [{'id': 3}])
        self.assertEqual(results({'detail': 'x'}), [])


class HMSClientTestCase(SimpleTestCase):
    """HTTP behaviour of the backend client"""

    def setUp(self):
        self.client = HMSClient(access_token='token-1', tenant_id='tenant-1')

    @patch('common.hms_client.requests.request')
    def test_headers_forwarded(self, mock_request):
        mock_request.return_value = http_response(200, {'results': []})

        self.client.list_responses({'encounter_type': 'visit', 'object_id': 7})

        args, kwargs = mock_request.call_args
        self.assertEqual(args[0], 'GET')
        self.assertTrue(args[1].endswith('/opd/template-responses/'))
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer token-1')
        self.assertEqual(kwargs['headers']['X-Tenant-Id'], 'tenant-1')
        self.assertEqual(kwargs['params'], {'encounter_type': 'visit', 'object_id': 7})

    @patch('common.hms_client.requests.request')
    def test_backend_error_message(self, mock_request):
        mock_request.return_value = http_response(400, {'detail': 'Template is inactive'})

        with self.assertRaises(HMSAPIException) as ctx:
            self.client.update_response(40, {'status': 'completed'})

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.message, 'Template is inactive')

    @patch('common.hms_client.requests.request')
    def test_fallback_message_when_body_is_empty(self, mock_request):
        mock_request.return_value = http_response(500)
        with self.assertRaises(HMSAPIException) as ctx:
            self.client.delete_attachment(50)
        self.assertEqual(ctx.exception.message, 'Failed to delete attachment')

    @patch('common.hms_client.requests.request')
    def test_network_error(self, mock_request):
        mock_request.side_effect = requests.ConnectionError('refused')
        with self.assertRaises(HMSAPIException) as ctx:
            self.client.get_visit(7)
        self.assertIsNone(ctx.exception.status_code)
        self.assertIn('Network error', ctx.exception.message)

    @patch('common.hms_client.requests.request')
    def test_create_without_id_fails(self, mock_request):
        mock_request.return_value = http_response(201, {'success': True})
        with self.assertRaises(HMSAPIException):
            self.client.create_requisition({'requisition_type': 'medicine'})

    @patch('common.hms_client.requests.request')
    def test_upload_is_multipart(self, mock_request):
        mock_request.return_value = http_response(201, {'id': 50})

        self.client.upload_attachment({'encounter_type': 'visit', 'object_id': 7}, 'xray.png', b'bytes', 'image/png')

        kwargs = mock_request.call_args[1]
        self.assertEqual(kwargs['files'], {'file': ('xray.png', b'bytes', 'image/png')})
        self.assertNotIn('Content-Type', kwargs['headers'])

    def test_client_from_request(self):
        request = RequestFactory().get('/', HTTP_AUTHORIZATION='Bearer abc')
        request.tenant_id = 'tenant-9'
        client = get_hms_client(request)
        self.assertEqual((client.access_token, client.tenant_id), ('abc', 'tenant-9'))


class ExceptionHandlerTestCase(SimpleTestCase):

    def render(self, exc):
        response = api_exception_handler(exc, {'view': None})
        return response.status_code, response.data

    def test_backend_client_error_keeps_status(self):
        status_code, data = self.render(HMSAPIException('Template is inactive', status_code=400))
        self.assertEqual(status_code, 400)
        self.assertEqual(data['error']['code'], 'hms_error')
        self.assertEqual(data['error']['message'], 'Template is inactive')

    def test_backend_server_error_is_bad_gateway(self):
        status_code, _ = self.render(HMSAPIException('Network error: refused'))
        self.assertEqual(status_code, 502)

    def test_workspace_error_extras(self):
        status_code, data = self.render(RequisitionPartiallySubmitted(500, 1, 3, 'Out of stock'))
        self.assertEqual(status_code, 207)
        self.assertFalse(data['success'])
        self.assertEqual(data['error']['added'], 1)
        self.assertIn('only 1 of 3', data['error']['message'])

    def test_validation_error(self):
        status_code, data = self.render(ValidationError({'values': ['bad']}))
        self.assertEqual(status_code, 400)
        self.assertEqual(data['error']['code'], 'api_error')

    def test_unhandled_error(self):
        status_code, data = self.render(RuntimeError('boom'))
        self.assertEqual(status_code, 500)
        self.assertEqual(data['error']['code'], 'server_error')


class InFlightGuardTestCase(SimpleTestCase):

    def setUp(self):
        cache.clear()

    def test_second_attempt_rejected(self):
        key = lock_key('doc-1', 7, 'submit_requisition')
        with in_flight(key):
            with self.assertRaises(OperationInFlight):
                with in_flight(key):
                    pass

    def test_lock_released_after_failure(self):
        key = lock_key('doc-1', 7, 'commit_attachments')
        with self.assertRaises(PreconditionFailed):
            with in_flight(key):
                raise PreconditionFailed('No files selected.')
        with in_flight(key):
            pass


class JWTMiddlewareTestCase(SimpleTestCase):

    def setUp(self):
        self.factory = RequestFactory()
        self.middleware = JWTAuthenticationMiddleware(lambda request: None)

    def token(self, **overrides):
        payload = {
            'user_id': 'doc-1',
            'email': 'mehta@example.com',
            'tenant_id': 'tenant-1',
            'exp': datetime.now(dt_timezone.utc) + timedelta(hours=1),
        }
        payload.update(overrides)
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def test_valid_token_sets_request_attributes(self):
        request = self.factory.get('/api/consultations/7/', HTTP_AUTHORIZATION=f'Bearer {self.token()}')
        self.assertIsNone(self.middleware.process_request(request))
        self.assertEqual(request.user_id, 'doc-1')
        self.assertEqual(request.tenant_id, 'tenant-1')
        self.assertTrue(request.user.is_authenticated)

    def test_tenant_header_overrides(self):
        request = self.factory.get(
            '/api/consultations/7/',
            HTTP_AUTHORIZATION=f'Bearer {self.token()}',
            HTTP_X_TENANT_ID='tenant-2'
        )
        self.middleware.process_request(request)
        self.assertEqual(request.tenant_id, 'tenant-2')

    def test_expired_token(self):
        token = self.token(exp=datetime.now(dt_timezone.utc) - timedelta(hours=1))
        request = self.factory.get('/api/consultations/7/', HTTP_AUTHORIZATION=f'Bearer {token}')
        response = self.middleware.process_request(request)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(json.loads(response.content)['error'], 'Token has expired')

    def test_missing_claim(self):
        token = jwt.encode({'user_id': 'doc-1'}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        request = self.factory.get('/api/consultations/7/', HTTP_AUTHORIZATION=f'Bearer {token}')
        self.assertEqual(self.middleware.process_request(request).status_code, 401)

    def test_public_paths_skip_auth(self):
        request = self.factory.get('/api/previews/abc/')
        self.assertIsNone(self.middleware.process_request(request))
