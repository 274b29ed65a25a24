from django.urls import path, include
from rest_framework.routers import SimpleRouter

from .views import AttachmentViewSet, StagedFileViewSet, PreviewView

router = SimpleRouter()
router.register(r'consultations/(?P<visit_id>\d+)/attachments/staged', StagedFileViewSet, basename='staged-file')
router.register(r'consultations/(?P<visit_id>\d+)/attachments', AttachmentViewSet, basename='attachment')

app_name = 'attachments'

urlpatterns = [
    path('previews/<str:token>/', PreviewView.as_view(), name='preview'),
    path('', include(router.urls)),
]
