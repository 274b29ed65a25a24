"""
Django REST Framework authentication and permission classes for JWT-based authentication.

The JWT middleware validates the token and sets ``request.user``; these classes
expose that user to DRF's permission system.
"""

from rest_framework import authentication, permissions
from django.contrib.auth.models import AnonymousUser


class JWTAuthentication(authentication.BaseAuthentication):
    """
    DRF authentication class that uses the ClinicianUser set by JWTAuthenticationMiddleware.
    """

    def authenticate(self, request):
        # Access the underlying Django request (not DRF's wrapped request)
        # to avoid recursion when accessing request.user
        django_request = request._request if hasattr(request, '_request') else request

        user = getattr(django_request, 'user', None)
        if user is not None and not isinstance(user, AnonymousUser):
            return (user, getattr(django_request, 'access_token', None))

        return None

    def authenticate_header(self, request):
        return 'Bearer realm="api"'


class IsAuthenticated(permissions.BasePermission):
    """
    Simple permission class that only checks if user is authenticated via JWT.
    """

    def has_permission(self, request, view):
        if not request.user or isinstance(request.user, AnonymousUser):
            return False

        return getattr(request.user, 'is_authenticated', False)


class AllowAny(permissions.BasePermission):
    """
    Permission class that allows unrestricted access.
    Only for endpoints gated by their own secret, such as preview tokens.
    """

    def has_permission(self, request, view):
        return True
