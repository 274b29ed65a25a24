from django.urls import path

from .views import WorkspaceViewSet

app_name = 'consultation'

workspace = WorkspaceViewSet.as_view({'get': 'state', 'delete': 'close'})
encounter = WorkspaceViewSet.as_view({'post': 'encounter'})
active_response = WorkspaceViewSet.as_view({'post': 'active_response'})
tab = WorkspaceViewSet.as_view({'post': 'tab'})
followup = WorkspaceViewSet.as_view({'post': 'followup'})

urlpatterns = [
    path('consultations/<int:visit_id>/', workspace, name='workspace'),
    path('consultations/<int:visit_id>/encounter/', encounter, name='encounter'),
    path('consultations/<int:visit_id>/active-response/', active_response, name='active-response'),
    path('consultations/<int:visit_id>/tab/', tab, name='tab'),
    path('consultations/<int:visit_id>/followup/', followup, name='followup'),
]
