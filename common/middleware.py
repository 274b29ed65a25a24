import jwt
import logging
from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from .auth import ClinicianUser

logger = logging.getLogger(__name__)


class JWTAuthenticationMiddleware(MiddlewareMixin):
    """
    Middleware to validate JWT tokens and set request attributes
    """

    # Public paths that don't require authentication
    PUBLIC_PATHS = [
        '/api/docs/',
        '/api/schema/',
        '/api/redoc/',
        '/api/previews/',  # gated by unguessable preview tokens
        '/static/',
        '/health/',
    ]

    REQUIRED_FIELDS = ['user_id', 'email', 'tenant_id']

    def process_request(self, request):
        """Process incoming request and validate JWT token"""

        if any(request.path.startswith(path) for path in self.PUBLIC_PATHS):
            return None

        auth_header = request.META.get('HTTP_AUTHORIZATION')
        if not auth_header:
            logger.warning(f"Missing Authorization header - Path: {request.path}, Method: {request.method}")
            return JsonResponse(
                {'error': 'Authorization header required'},
                status=401
            )

        # Extract token from "Bearer <token>" format
        try:
            scheme, token = auth_header.split(' ', 1)
            if scheme.lower() != 'bearer':
                logger.warning(f"Invalid auth scheme '{scheme}' - Path: {request.path}")
                return JsonResponse(
                    {'error': 'Invalid authorization scheme. Use Bearer token'},
                    status=401
                )
        except ValueError:
            logger.warning(f"Malformed Authorization header - Path: {request.path}")
            return JsonResponse(
                {'error': 'Invalid authorization header format'},
                status=401
            )

        secret_key = getattr(settings, 'JWT_SECRET_KEY', None)
        algorithm = getattr(settings, 'JWT_ALGORITHM', 'HS256')
        leeway = getattr(settings, 'JWT_LEEWAY', 30)

        if not secret_key:
            return JsonResponse(
                {'error': 'JWT_SECRET_KEY not configured'},
                status=500
            )

        try:
            payload = jwt.decode(
                token,
                secret_key,
                algorithms=[algorithm],
                leeway=leeway  # Tolerate clock skew between servers
            )
        except jwt.ExpiredSignatureError:
            logger.warning(f"Expired JWT token - Path: {request.path}")
            return JsonResponse(
                {'error': 'Token has expired'},
                status=401
            )
        except jwt.InvalidTokenError as e:
            logger.error(f"Invalid JWT token: {str(e)} - Path: {request.path}, Algorithm: {algorithm}")
            return JsonResponse(
                {'error': f'Invalid token: {str(e)}'},
                status=401
            )

        for field in self.REQUIRED_FIELDS:
            if field not in payload:
                logger.error(
                    f"Missing JWT field '{field}' - Path: {request.path}, "
                    f"Available fields: {list(payload.keys())}"
                )
                return JsonResponse(
                    {'error': f'Missing required field in token: {field}'},
                    status=401
                )

        # Set request attributes from JWT payload
        request.user_id = payload['user_id']
        request.email = payload['email']
        request.tenant_id = payload['tenant_id']
        request.access_token = token

        # x-tenant-id header overrides the token's tenant
        x_tenant_id_header = request.META.get('HTTP_X_TENANT_ID')
        if x_tenant_id_header:
            request.tenant_id = x_tenant_id_header

        request.user = ClinicianUser(payload)
        request._cached_user = request.user

        logger.debug(f"JWT auth successful - Path: {request.path}, User: {request.email}")
        return None
