from django.urls import path, include
from rest_framework.routers import SimpleRouter

from .views import TemplateViewSet, ResponseViewSet

router = SimpleRouter()
router.register(r'consultations/(?P<visit_id>\d+)/templates', TemplateViewSet, basename='template')
router.register(r'consultations/(?P<visit_id>\d+)/responses', ResponseViewSet, basename='response')

app_name = 'documentation'

urlpatterns = [
    path('', include(router.urls)),
]
