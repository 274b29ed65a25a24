"""
In-flight submission guard.

A write that is already running for the same workspace and operation
rejects a second attempt instead of issuing duplicate backend calls.
The lock is released when the guarded block settles, success or failure.
"""
import logging
from contextlib import contextmanager

from django.conf import settings
from django.core.cache import cache

from .exceptions import OperationInFlight

logger = logging.getLogger(__name__)


def lock_key(user_id, visit_id, operation):
    return f'inflight:{user_id}:{visit_id}:{operation}'


@contextmanager
def in_flight(key):
    if not cache.add(key, True, timeout=getattr(settings, 'IN_FLIGHT_TTL', 60)):
        logger.info(f"Rejected duplicate submission for {key}")
        raise OperationInFlight()
    try:
        yield
    finally:
        cache.delete(key)
