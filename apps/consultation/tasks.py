"""
Celery tasks for the consultation workspace
Follow-up reminders are scheduled off the request cycle
"""
import logging
import re
from datetime import datetime, time
from zoneinfo import ZoneInfo

import requests
from celery import shared_task
from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

FOLLOWUP_EVENT_TYPE = 'followup_appointment'


def normalize_phone(phone):
    """
    E.164-style number for the messaging scheduler.

    Everything but digits and a leading plus is stripped; a bare 10-digit
    number gets +91 and a 12-digit number starting with 91 gets the plus sign.
    """
    phone = re.sub(r'[^\d+]', '', phone or '')
    if not phone or phone.startswith('+'):
        return phone
    if len(phone) == 10:
        return '+91' + phone
    if len(phone) == 12 and phone.startswith('91'):
        return '+' + phone
    return phone


def followup_event_at(followup_date):
    """Reminder time on the follow-up day, in the hospital's timezone"""
    hour = getattr(settings, 'FOLLOWUP_REMINDER_HOUR', 10)
    return datetime.combine(followup_date, time(hour=hour), tzinfo=ZoneInfo(settings.TIME_ZONE))


@shared_task(bind=True, name='consultation.schedule_followup_reminder')
def schedule_followup_reminder(self, phone: str, event_at: str, metadata: dict, contact_name: str = ''):
    """
    Register a follow-up event with the messaging scheduler, which sends the
    reminders configured for ``followup_appointment`` events.

    Args:
        phone: normalized patient phone
        event_at: ISO datetime of the follow-up
        metadata: template parameters (patient, doctor, visit, date, time)
        contact_name: patient name shown by the scheduler

    Returns:
        dict: scheduler answer with the number of reminders created
    """
    task_id = self.request.id
    cache.set(f'followup_task_{task_id}_status', 'processing', timeout=3600)

    url = getattr(settings, 'SCHEDULING_API_URL', '')
    if not url:
        logger.warning("SCHEDULING_API_URL not configured, follow-up reminder skipped")
        cache.set(f'followup_task_{task_id}_status', 'skipped', timeout=3600)
        return {'success': False, 'error': 'Scheduling API not configured'}

    headers = {'Content-Type': 'application/json'}
    if settings.SCHEDULING_API_KEY:
        headers['Authorization'] = f'Bearer {settings.SCHEDULING_API_KEY}'

    try:
        response = requests.post(
            url,
            json={
                'event_type': FOLLOWUP_EVENT_TYPE,
                'contact_phone': phone,
                'event_at': event_at,
                'timezone': settings.TIME_ZONE,
                'contact_name': contact_name,
                'metadata': metadata,
            },
            headers=headers,
            timeout=15
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Follow-up reminder scheduling failed for visit {metadata.get('visit_id')}: {str(e)}")
        cache.set(f'followup_task_{task_id}_status', 'failed', timeout=3600)
        raise  # Re-raise for Celery to mark as failed

    reminders = len((data.get('data') or {}).get('scheduled_messages') or [])
    logger.info(f"Follow-up for visit {metadata.get('visit_id')} scheduled with {reminders} reminder(s)")
    cache.set(f'followup_task_{task_id}_status', 'completed', timeout=3600)
    return {'success': True, 'reminders': reminders}
