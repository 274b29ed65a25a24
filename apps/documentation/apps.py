# documentation/apps.py
from django.apps import AppConfig


class DocumentationConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.documentation'
    verbose_name = 'Clinical Documentation'
