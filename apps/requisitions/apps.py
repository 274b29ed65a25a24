# requisitions/apps.py
from django.apps import AppConfig


class RequisitionsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.requisitions'
    verbose_name = 'Requisition Builder'
