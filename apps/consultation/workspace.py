# consultation/workspace.py
"""
Consultation workspace.

Composes the encounter resolver, response lifecycle, template reuse,
attachment board and requisition builder for one visit, all sharing the
same WorkspaceSession.
"""
import logging

from django.utils.functional import cached_property

from common.exceptions import StaleReference
from common.hms_client import get_hms_client
from apps.attachments.board import AttachmentBoard
from apps.documentation.forms import build_response_form
from apps.documentation.fields import preview_rows
from apps.documentation.lifecycle import ResponseLifecycleManager
from apps.documentation.reuse import TemplateReuseEngine
from apps.documentation.serializers import parse_template
from apps.encounters.resolver import EncounterContextResolver, patient_id_of
from apps.requisitions.builder import RequisitionOrderBuilder

from .session import WorkspaceSession
from .tasks import followup_event_at, normalize_phone, schedule_followup_reminder

logger = logging.getLogger(__name__)


class ConsultationWorkspace:

    def __init__(self, request, visit_id, client=None):
        self.visit_id = int(visit_id)
        self.client = client or get_hms_client(request)
        self.user_id = getattr(request, 'user_id', None)
        self.session = WorkspaceSession(request.session, self.visit_id, owner=self.user_id)

    @cached_property
    def visit(self):
        return self.client.get_visit(self.visit_id)

    @cached_property
    def resolver(self):
        return EncounterContextResolver(self.client, self.visit, self.session.encounter_type)

    @property
    def encounter(self):
        return self.resolver.current

    @cached_property
    def lifecycle(self):
        return ResponseLifecycleManager(self.client, self.session, self.user_id)

    @cached_property
    def reuse(self):
        return TemplateReuseEngine(self.lifecycle)

    @cached_property
    def board(self):
        return AttachmentBoard(self.client, self.session, self.encounter)

    @cached_property
    def builder(self):
        return RequisitionOrderBuilder(
            self.client, self.session, self.encounter, patient_id_of(self.visit), self.user_id
        )

    # ==================== ENCOUNTER ====================

    def switch_encounter(self, encounter_type):
        previous = self.resolver.encounter_type
        self.resolver.switch(encounter_type)
        if self.resolver.encounter_type != previous:
            # Staged bytes and preview handles belong to the old encounter
            self.board.clear()
            self.session.set_encounter_type(self.resolver.encounter_type)
            for name in ('board', 'builder'):
                self.__dict__.pop(name, None)
        return self.resolver.as_dict()

    def close(self):
        """Leave the consultation: staged files are discarded, nothing is uploaded"""
        AttachmentBoard(self.client, self.session, None).clear()
        self.session.close()
        logger.info(f"Workspace for visit {self.visit_id} closed")

    # ==================== RESPONSES ====================

    def templates(self):
        return [parse_template(data) for data in self.client.list_templates({'is_active': True})]

    def response(self, response_id):
        """A response of the current encounter, fetched with its field values"""
        response = self.lifecycle.get_response(response_id)
        encounter = self.encounter
        if encounter is None:
            raise StaleReference('This response does not belong to the current encounter.')
        if response.encounter_type and response.encounter_type != encounter.kind.value:
            raise StaleReference('This response does not belong to the current encounter.')
        if response.object_id is not None and int(response.object_id) != encounter.id:
            raise StaleReference('This response does not belong to the current encounter.')
        return response

    def select_response(self, response_id):
        response = self.response(response_id)
        self.session.set_active_response(response.id)
        return response

    def response_detail(self, response, refresh=False):
        """``refresh`` re-reads the template so a reopened response renders its current fields"""
        return self.describe_response(*self.lifecycle.load_field_values(response, refresh=refresh))

    def describe_response(self, response, template, values):
        """Form description, values and read-only projection of a response"""
        form = build_response_form(template.fields, initial=values)
        return {
            'response': response.as_dict(),
            'template': {'id': template.id, 'name': template.name},
            'form': form.describe(),
            'values': {str(key): value for key, value in values.items()},
            'preview': preview_rows(template.fields, values),
        }

    def active_response_detail(self, responses):
        """
        Detail of the active response; when it vanished between listing and
        loading, fall back to the most recent remaining one.
        """
        active = self.lifecycle.active_response(responses)
        if active is None:
            return None
        try:
            return self.response_detail(active)
        except StaleReference:
            remaining = [response for response in responses if response.id != active.id]
            fallback = self.lifecycle.active_response(remaining)
            return self.response_detail(fallback) if fallback else None

    # ==================== FOLLOW-UP ====================

    def save_followup(self, followup_date):
        """
        Store the next follow-up date on the visit's clinical note and queue
        the patient reminder. A reminder problem never undoes the saved date.
        """
        date_value = followup_date.isoformat() if followup_date else None
        notes = self.client.list_clinical_notes({'visit': self.visit_id})
        if notes:
            self.client.update_clinical_note(notes[0]['id'], {'next_followup_date': date_value})
        else:
            self.client.create_clinical_note({'visit': self.visit_id, 'next_followup_date': date_value})
        logger.info(f"Follow-up for visit {self.visit_id} set to {date_value}")

        result = {'next_followup_date': date_value, 'reminder': 'not_requested'}
        if followup_date is None:
            return result

        patient = self.visit.get('patient_details') or {}
        phone = normalize_phone(patient.get('mobile_primary') or patient.get('mobile'))
        if not phone:
            result['reminder'] = 'no_phone'
            return result

        event_at = followup_event_at(followup_date)
        doctor = self.visit.get('doctor_details') or {}
        patient_name = patient.get('full_name') or 'Patient'
        task = schedule_followup_reminder.delay(
            phone,
            event_at.isoformat(),
            {
                'patient_name': patient_name,
                'doctor_name': doctor.get('full_name') or 'Doctor',
                'visit_id': self.visit_id,
                'appointment_date': followup_date.strftime('%d %b %Y'),
                'appointment_time': event_at.strftime('%I:%M %p'),
            },
            patient_name,
        )
        result['reminder'] = 'queued'
        result['task_id'] = task.id
        return result

    # ==================== STATE ====================

    def state(self):
        """Everything the consultation screen renders, in one projection"""
        encounter = self.encounter
        responses = self.lifecycle.list_responses(encounter)
        grouped = {}
        for response in responses:
            grouped.setdefault(str(response.template_id), []).append(response.as_dict())

        return {
            'visit_id': self.visit_id,
            'encounter': self.resolver.as_dict(),
            'active_tab': self.session.active_tab,
            'templates': [
                {'id': template.id, 'name': template.name, 'group_name': template.group_name}
                for template in self.templates()
            ],
            'responses': grouped,
            'active_response': self.active_response_detail(responses),
            'attachments': [attachment.as_dict() for attachment in self.board.list()],
            'staged_files': [staged.as_dict() for staged in self.board.staged],
            'requisition_builder': self.builder.as_dict(),
        }
