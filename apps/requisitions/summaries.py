# requisitions/summaries.py
"""
Cached requisition lists.

Summary widgets read requisitions along three dimensions: all of them, one
encounter's, and one kind's. Each is cached under its own key and each is
invalidated on its own after a submit.
"""
import logging

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)


class RequisitionSummaries:

    def __init__(self, client):
        self.client = client
        self.prefix = f'requisitions:{client.tenant_id or "default"}'

    @property
    def all_key(self):
        return f'{self.prefix}:all'

    def encounter_key(self, encounter):
        return f'{self.prefix}:encounter:{encounter.cache_key}'

    def type_key(self, kind):
        return f'{self.prefix}:type:{kind}'

    def _cached(self, key, params):
        return cache.get_or_set(
            key,
            lambda: self.client.list_requisitions(params),
            timeout=settings.REQUISITION_SUMMARY_TTL
        )

    def all(self):
        return self._cached(self.all_key, {'ordering': '-created_at'})

    def for_encounter(self, encounter):
        if encounter is None:
            return []
        return self._cached(self.encounter_key(encounter), {
            'content_type_model': encounter.kind.value,
            'object_id': encounter.id,
            'ordering': '-created_at',
        })

    def for_type(self, kind):
        return self._cached(self.type_key(kind), {'requisition_type': kind, 'ordering': '-created_at'})

    def invalidate(self, encounter, kind):
        cache.delete(self.all_key)
        cache.delete(self.encounter_key(encounter))
        cache.delete(self.type_key(kind))
        logger.debug(f"Invalidated requisition summaries for {encounter} and {kind}")


def summarize(requisitions):
    """Counts by kind and status for the summary card"""
    by_type, by_status = {}, {}
    for requisition in requisitions:
        kind = requisition.get('requisition_type') or 'investigation'
        status = requisition.get('status') or 'ordered'
        by_type[kind] = by_type.get(kind, 0) + 1
        by_status[status] = by_status.get(status, 0) + 1
    return {
        'count': len(requisitions),
        'by_type': by_type,
        'by_status': by_status,
        'requisitions': requisitions,
    }
