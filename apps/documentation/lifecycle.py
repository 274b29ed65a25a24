# documentation/lifecycle.py
"""
Response lifecycle.

Creates responses against an encounter, loads and saves their field values
and moves them through draft -> completed -> reviewed, with archived as the
terminal state. Archived is terminal for status only; field values stay
editable in every state. The workspace session passed in holds the one
active response and the field snapshot each response was rendered with.
"""
import logging

from rest_framework import serializers

from common.exceptions import (
    HandoverReasonRequired,
    PreconditionFailed,
    StaleReference,
)
from common.hms_client import HMSAPIException

from .fields import decode_field_values, encode_field_values
from .forms import build_response_form
from .schema import ResponseStatus
from .serializers import parse_response, parse_template

logger = logging.getLogger(__name__)


# action -> (states it may start from, resulting state)
TRANSITIONS = {
    'complete': ({ResponseStatus.DRAFT}, ResponseStatus.COMPLETED),
    'review': ({ResponseStatus.DRAFT, ResponseStatus.COMPLETED}, ResponseStatus.REVIEWED),
    'archive': (
        {ResponseStatus.DRAFT, ResponseStatus.COMPLETED, ResponseStatus.REVIEWED},
        ResponseStatus.ARCHIVED,
    ),
}


def most_recent(responses):
    """Latest created response; equal timestamps go to the higher sequence"""
    if not responses:
        return None
    return max(responses, key=lambda response: response.created_sort_key)


def newest_first(responses):
    return sorted(responses, key=lambda response: response.created_sort_key, reverse=True)


class ResponseLifecycleManager:

    def __init__(self, client, session, user_id=None):
        self.client = client
        self.session = session
        self.user_id = user_id

    # ==================== QUERIES ====================

    def list_responses(self, encounter, template_id=None):
        """All responses of the encounter (optionally one template's), newest first"""
        if encounter is None:
            return []
        params = dict(encounter.query_params)
        if template_id is not None:
            params['template'] = template_id
        responses = [parse_response(data) for data in self.client.list_responses(params)]
        if template_id is not None:
            responses = [response for response in responses if response.template_id == int(template_id)]
        return newest_first(responses)

    def get_response(self, response_id):
        """
        Fetch one response with its field responses.

        Raises:
            StaleReference: the response was deleted elsewhere; it is no
                longer active in this workspace
        """
        try:
            return parse_response(self.client.get_response(response_id))
        except HMSAPIException as e:
            if not e.is_not_found:
                raise
            logger.info(f"Response {response_id} no longer exists")
            if self.session.active_response_id == int(response_id):
                self.session.set_active_response(None)
            raise StaleReference()

    def get_template(self, template_id):
        """Template with its current fields, always read from the backend"""
        template = parse_template(self.client.get_template(template_id))
        if not template.fields_loaded:
            template.fields = []
        return template

    def template_for(self, response, refresh=False):
        """
        Template fields the response is rendered and saved with.

        The snapshot is taken when the response is created or first loaded in
        this workspace and kept while it is edited, so a save encodes against
        the same fields the values were decoded with. ``refresh`` takes a new
        snapshot when the response is opened again.
        """
        if not refresh:
            snapshot = self.session.field_snapshot(response.id)
            if snapshot is not None:
                return snapshot
        template = self.get_template(response.template_id)
        self.session.store_field_snapshot(response.id, template)
        return template

    def active_response(self, responses):
        """
        The response being edited: the explicit choice while it still exists,
        otherwise the most recent one.
        """
        active_id = self.session.active_response_id
        if active_id is not None:
            for response in responses:
                if response.id == active_id:
                    return response
            logger.info(f"Active response {active_id} is gone, re-deriving")
            self.session.set_active_response(None)

        latest = most_recent(responses)
        if latest is not None:
            self.session.set_active_response(latest.id)
        return latest

    # ==================== CREATION ====================

    def create_response(self, template_id, encounter, switch_reason=None, original_doctor_id=None):
        if encounter is None:
            raise PreconditionFailed('No valid visit or admission context.')

        payload = {
            **encounter.query_params,
            'template': int(template_id),
            'status': ResponseStatus.DRAFT.value,
        }
        if switch_reason:
            payload['doctor_switched_reason'] = switch_reason
            # The backend requires the doctor being handed over from
            payload['original_assigned_doctor_id'] = original_doctor_id or self.user_id

        response = parse_response(self.client.create_response(payload))
        logger.info(
            f"Created response {response.id} (#{response.sequence_number}) for template "
            f"{template_id} on {encounter}"
        )
        self.session.set_active_response(response.id)
        return response

    def open_template(self, template_id, encounter):
        """
        Select a template for documenting.

        The first response of a template is created implicitly; otherwise the
        most recent existing one becomes active.

        Returns:
            (response, created)
        """
        if encounter is None:
            raise PreconditionFailed('No valid visit or admission context.')
        existing = self.list_responses(encounter, template_id)
        if not existing:
            return self.create_response(template_id, encounter), True

        response = existing[0]
        self.session.set_active_response(response.id)
        return response, False

    def add_response(self, template_id, encounter, switch_reason='', confirmed=False):
        """
        Add another response to a template.

        Raises:
            HandoverReasonRequired: the template already has a response and
                the caller has not confirmed; confirm with an optional reason
        """
        if encounter is None:
            raise PreconditionFailed('No valid visit or admission context.')
        existing = self.list_responses(encounter, template_id)
        if not existing:
            return self.create_response(template_id, encounter)

        if not confirmed:
            raise HandoverReasonRequired(existing_count=len(existing), template_id=int(template_id))

        reason = (switch_reason or '').strip() or None
        original_doctor_id = existing[0].filled_by_id if reason else None
        return self.create_response(template_id, encounter, reason, original_doctor_id)

    # ==================== FIELD VALUES ====================

    def load_field_values(self, response, refresh=False):
        """
        Decode a response's stored values against its field snapshot.

        Returns:
            (response, template, values)
        """
        if response.field_responses is None:
            response = self.get_response(response.id)
        template = self.template_for(response, refresh=refresh)
        values = decode_field_values(response.field_responses, template.fields)
        return response, template, values

    def save_fields(self, response, values, encounter):
        """
        Replace the response's field values in one request and refresh the
        encounter's response list.

        Returns:
            (saved_values, refreshed_responses)
        """
        template = self.template_for(response)
        form = build_response_form(template.fields, data=values, enforce_required=False)
        if not form.is_valid():
            raise serializers.ValidationError({'values': form.errors.get_json_data()})

        saved_values = form.field_values()
        field_responses = encode_field_values(saved_values, template.fields)
        self.client.update_response(response.id, {'field_responses': field_responses})
        logger.info(f"Saved {len(field_responses)} field values on response {response.id}")

        return saved_values, self.list_responses(encounter)

    # ==================== STATUS ====================

    def transition(self, response, action):
        allowed, target = TRANSITIONS[action]
        if response.status not in allowed:
            raise PreconditionFailed(f'Cannot {action} a response that is {response.status.label.lower()}.')

        if action == 'complete':
            self._check_required(response)

        if action == 'review':
            self.client.mark_reviewed(response.id)
        else:
            self.client.update_response(response.id, {'status': target.value})
        logger.info(f"Response {response.id}: {response.status.value} -> {target.value}")
        return self.get_response(response.id)

    def complete(self, response):
        return self.transition(response, 'complete')

    def mark_reviewed(self, response):
        return self.transition(response, 'review')

    def archive(self, response):
        return self.transition(response, 'archive')

    def _check_required(self, response):
        response, template, values = self.load_field_values(response)
        form = build_response_form(template.fields, data=values)
        if not form.is_valid():
            raise serializers.ValidationError({'values': form.errors.get_json_data()})

    def delete_response(self, response_id, confirmed=False):
        if not confirmed:
            raise PreconditionFailed('Deleting a response requires confirmation.')
        self.client.delete_response(response_id)
        self.session.drop_field_snapshot(response_id)
        if self.session.active_response_id == int(response_id):
            self.session.set_active_response(None)
