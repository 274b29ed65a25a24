from django.urls import path, include

from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView
)

from apps.consultation.views import health

urlpatterns = [
    path('health/', health, name='health'),

    # Consultation workspace API
    path('api/', include('apps.consultation.urls')),
    path('api/', include('apps.documentation.urls')),
    path('api/', include('apps.attachments.urls')),
    path('api/', include('apps.requisitions.urls')),

    # API documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]
