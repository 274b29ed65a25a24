# encounters/resolver.py
"""
Encounter context.

A consultation is opened from an OPD visit, but its notes, attachments and
requisitions can be scoped either to that visit or to the patient's current
inpatient admission. Everything downstream receives an ``Encounter`` and
never branches on the kind itself.
"""
import logging

from django.db import models

from common.exceptions import PreconditionFailed

logger = logging.getLogger(__name__)


class EncounterType(models.TextChoices):
    VISIT = 'visit', 'OPD Visit'
    ADMISSION = 'admission', 'IPD Admission'


# Canonical model keys used by requisitions
MODEL_KEYS = {
    EncounterType.VISIT: 'opd.visit',
    EncounterType.ADMISSION: 'ipd.admission',
}


class Encounter:
    """Tagged (kind, id) pair identifying the clinical context"""

    def __init__(self, kind, id):
        self.kind = EncounterType(kind)
        self.id = int(id)

    @property
    def model_key(self):
        return MODEL_KEYS[self.kind]

    @property
    def query_params(self):
        return {'encounter_type': self.kind.value, 'object_id': self.id}

    @property
    def cache_key(self):
        return f'{self.model_key}:{self.id}'

    def as_dict(self):
        return {'kind': self.kind.value, 'id': self.id, 'model_key': self.model_key}

    def __eq__(self, other):
        return isinstance(other, Encounter) and (self.kind, self.id) == (other.kind, other.id)

    def __hash__(self):
        return hash((self.kind, self.id))

    def __repr__(self):
        return f'<Encounter {self.kind.value}:{self.id}>'


def patient_id_of(visit):
    patient = visit.get('patient')
    if isinstance(patient, dict):
        return patient.get('id')
    return patient


class EncounterContextResolver:
    """
    Decides whether the workspace documents against the visit or the
    patient's active admission.
    """

    def __init__(self, client, visit, encounter_type=EncounterType.VISIT):
        self.client = client
        self.visit = visit
        self.encounter_type = EncounterType(encounter_type or EncounterType.VISIT)
        self._admission_loaded = False
        self._active_admission = None

    @property
    def active_admission(self):
        """First admitted admission of the visit's patient, looked up once"""
        if not self._admission_loaded:
            self._admission_loaded = True
            patient_id = patient_id_of(self.visit)
            if patient_id is not None:
                admissions = self.client.list_admissions({'patient': patient_id, 'status': 'admitted'})
                self._active_admission = admissions[0] if admissions else None
        return self._active_admission

    @property
    def can_switch_to_admission(self):
        return self.active_admission is not None

    def switch(self, encounter_type):
        encounter_type = EncounterType(encounter_type)
        if encounter_type == EncounterType.ADMISSION and not self.can_switch_to_admission:
            raise PreconditionFailed('No active admission for this patient.')
        logger.info(f"Encounter switched from {self.encounter_type} to {encounter_type} for visit {self.visit.get('id')}")
        self.encounter_type = encounter_type
        return self.current

    @property
    def current(self):
        """The active Encounter, or None when its object id is unknown"""
        if self.encounter_type == EncounterType.VISIT:
            object_id = self.visit.get('id')
        else:
            admission = self.active_admission
            object_id = admission.get('id') if admission else None
        if object_id is None:
            return None
        return Encounter(self.encounter_type, object_id)

    def as_dict(self):
        current = self.current
        return {
            'encounter_type': self.encounter_type.value,
            'encounter': current.as_dict() if current else None,
            'can_switch_to_admission': self.can_switch_to_admission,
            'active_admission_id': self.active_admission.get('id') if self.active_admission else None,
        }
