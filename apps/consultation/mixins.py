from common.guards import in_flight, lock_key

from .workspace import ConsultationWorkspace


class WorkspaceViewMixin:
    """
    Gives workspace views the ConsultationWorkspace of the ``visit_id`` in
    the URL and the in-flight guard for their write operations.
    """

    def get_workspace(self):
        if not hasattr(self, '_workspace'):
            self._workspace = ConsultationWorkspace(self.request, self.kwargs['visit_id'])
        return self._workspace

    def guard(self, operation):
        return in_flight(lock_key(getattr(self.request, 'user_id', None), self.kwargs['visit_id'], operation))
