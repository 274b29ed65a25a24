# consultation/session.py
"""
Per-visit workspace state.

The Django session holds what one visit's screen points at: the encounter
kind, the single active response, the active sub-tab and the field snapshot
each response was rendered with. The draft requisition and the staged upload
queue live in the cache under per-clinician, per-visit keys, each written in
one operation, so a request that only reads the workspace never writes them
back. Nothing here is persisted to the HMS backend.
"""
import logging

from django.conf import settings
from django.core.cache import cache

from apps.documentation.schema import Template
from apps.encounters.resolver import EncounterType

logger = logging.getLogger(__name__)

SESSION_KEY = 'consult_workspaces'

TAB_FIELDS = 'fields'
TAB_PREVIEW = 'preview'
TABS = (TAB_FIELDS, TAB_PREVIEW)


def _initial_state():
    return {
        'encounter_type': EncounterType.VISIT.value,
        'active_response_id': None,
        'active_tab': TAB_FIELDS,
        'field_snapshots': {},
    }


class WorkspaceSession:

    def __init__(self, store, visit_id, owner=None):
        self.store = store
        self.visit_id = str(visit_id)
        self.owner = owner or 'anonymous'
        workspaces = store.get(SESSION_KEY)
        if workspaces is None:
            workspaces = {}
            store[SESSION_KEY] = workspaces
        if self.visit_id not in workspaces:
            workspaces[self.visit_id] = _initial_state()
            self._touch()
        self.state = workspaces[self.visit_id]

    def _touch(self):
        if hasattr(self.store, 'modified'):
            self.store.modified = True

    def _cache_key(self, part):
        return f'workspace:{self.owner}:{self.visit_id}:{part}'

    def _cache_set(self, part, value):
        if value is None:
            cache.delete(self._cache_key(part))
        else:
            cache.set(self._cache_key(part), value, timeout=settings.SESSION_COOKIE_AGE)

    # ==================== ENCOUNTER ====================

    @property
    def encounter_type(self):
        return self.state.get('encounter_type') or EncounterType.VISIT.value

    def set_encounter_type(self, encounter_type):
        """Switching the encounter drops everything scoped to the previous one"""
        encounter_type = EncounterType(encounter_type).value
        if encounter_type == self.encounter_type:
            return
        self.state['encounter_type'] = encounter_type
        self.state['active_response_id'] = None
        self._touch()
        self.set_builder_state(None)
        self.set_staged_files(None)

    # ==================== ACTIVE RESPONSE ====================

    @property
    def active_response_id(self):
        return self.state.get('active_response_id')

    def set_active_response(self, response_id):
        """The only place the active response changes"""
        response_id = int(response_id) if response_id is not None else None
        if response_id == self.active_response_id:
            return
        logger.debug(f"Workspace {self.visit_id}: active response {self.active_response_id} -> {response_id}")
        self.state['active_response_id'] = response_id
        self._touch()

    @property
    def active_tab(self):
        return self.state.get('active_tab') or TAB_FIELDS

    def set_active_tab(self, tab):
        if tab not in TABS:
            raise ValueError(f'Unknown tab {tab!r}')
        if tab != self.active_tab:
            self.state['active_tab'] = tab
            self._touch()

    # ==================== FIELD SNAPSHOTS ====================

    def field_snapshot(self, response_id):
        """Template fields a response was rendered with, or None before its first load"""
        data = self.state['field_snapshots'].get(str(response_id))
        if data is None:
            return None
        return Template.from_payload(data)

    def store_field_snapshot(self, response_id, template):
        self.state['field_snapshots'][str(response_id)] = template.as_dict()
        self._touch()

    def drop_field_snapshot(self, response_id):
        if self.state['field_snapshots'].pop(str(response_id), None) is not None:
            self._touch()

    # ==================== BUILDER / STAGING ====================

    @property
    def builder_state(self):
        return cache.get(self._cache_key('builder'))

    def set_builder_state(self, state):
        self._cache_set('builder', state)

    @property
    def staged_files(self):
        return cache.get(self._cache_key('staged')) or []

    def set_staged_files(self, staged):
        self._cache_set('staged', staged or None)

    def close(self):
        self.set_builder_state(None)
        self.set_staged_files(None)
        workspaces = self.store.get(SESSION_KEY) or {}
        workspaces.pop(self.visit_id, None)
        self._touch()
