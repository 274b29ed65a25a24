from django.urls import path

from .views import RequisitionBuilderViewSet

app_name = 'requisitions'

builder = RequisitionBuilderViewSet.as_view({'get': 'builder', 'patch': 'update_builder'})
builder_type = RequisitionBuilderViewSet.as_view({'post': 'select_type'})
builder_items = RequisitionBuilderViewSet.as_view({'post': 'add_item'})
builder_item = RequisitionBuilderViewSet.as_view({'patch': 'update_item', 'delete': 'remove_item'})
builder_reset = RequisitionBuilderViewSet.as_view({'post': 'reset'})
catalog = RequisitionBuilderViewSet.as_view({'get': 'catalog'})
submit = RequisitionBuilderViewSet.as_view({'post': 'submit'})
summary = RequisitionBuilderViewSet.as_view({'get': 'summary'})

urlpatterns = [
    path('consultations/<int:visit_id>/requisitions/builder/', builder, name='builder'),
    path('consultations/<int:visit_id>/requisitions/builder/type/', builder_type, name='builder-type'),
    path('consultations/<int:visit_id>/requisitions/builder/items/', builder_items, name='builder-items'),
    path('consultations/<int:visit_id>/requisitions/builder/items/<str:local_id>/', builder_item, name='builder-item'),
    path('consultations/<int:visit_id>/requisitions/builder/reset/', builder_reset, name='builder-reset'),
    path('consultations/<int:visit_id>/requisitions/catalog/', catalog, name='catalog'),
    path('consultations/<int:visit_id>/requisitions/submit/', submit, name='submit'),
    path('consultations/<int:visit_id>/requisitions/summary/', summary, name='summary'),
]
