# attachments/apps.py
from django.apps import AppConfig


class AttachmentsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.attachments'
    verbose_name = 'Encounter Attachments'
