# documentation/reuse.py
"""
Saved response templates: turning a filled response into a reusable named
snapshot and copying a snapshot back onto another response of the same
template.
"""
import logging

from common.exceptions import PreconditionFailed

from .serializers import parse_response_template

logger = logging.getLogger(__name__)


class TemplateReuseEngine:

    def __init__(self, lifecycle):
        self.lifecycle = lifecycle
        self.client = lifecycle.client

    def save_as_template(self, response, name, is_public=False, description=''):
        """Save the response's values under ``name``; usage counts are tracked by the backend"""
        name = (name or '').strip()
        if not name:
            raise PreconditionFailed('Template name is required.')

        data = self.client.convert_to_template(response.id, {
            'template_name': name,
            'description': description or '',
            'is_public': bool(is_public),
        })
        logger.info(f"Response {response.id} saved as template {name!r} (public={bool(is_public)})")
        return parse_response_template(data)

    def applicable_templates(self, response):
        """Saved templates that share the response's origin template"""
        records = self.client.list_response_templates({'template': response.template_id})
        saved = [parse_response_template(data) for data in records]
        return [
            item for item in saved
            if item.template_id is None or item.template_id == response.template_id
        ]

    def apply_template(self, response, response_template_id):
        """
        Overwrite the response's values with a saved template and return the
        freshly decoded values.

        Returns:
            (response, template, values)
        """
        offered = {item.id for item in self.applicable_templates(response)}
        if int(response_template_id) not in offered:
            raise PreconditionFailed('This saved template cannot be applied to this response.')

        self.client.apply_response_template(response.id, int(response_template_id))
        logger.info(f"Applied saved template {response_template_id} to response {response.id}")

        # Stored values changed server-side; decode a fresh fetch against current fields
        return self.lifecycle.load_field_values(self.lifecycle.get_response(response.id), refresh=True)
