"""
Google Calendar push-notification endpoint
Public; acknowledges immediately and schedules the calendar pull in the background
"""

import logging
from typing import Dict, Any, Optional

from fastapi import APIRouter, Depends, Header

from axis_sync.api.dependencies import get_engine, get_queue

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhook/google-calendar", response_model=Dict[str, Any])
async def google_calendar_webhook(
    x_goog_channel_id: Optional[str] = Header(None),
    x_goog_resource_id: Optional[str] = Header(None),
    x_goog_resource_state: Optional[str] = Header(None),
    x_goog_message_number: Optional[str] = Header(None),
    engine=Depends(get_engine),
    queue=Depends(get_queue)
):
    """Always answers 200 so Google does not retry or disable the channel"""
    logger.info(
        f"Webhook received: channel={x_goog_channel_id} state={x_goog_resource_state} "
        f"message={x_goog_message_number}"
    )

    if x_goog_resource_state == 'sync':
        return {'received': True, 'scheduled': False}

    if not x_goog_channel_id:
        logger.warning("Webhook without X-Goog-Channel-Id header")
        return {'received': True, 'scheduled': False}

    queue.submit(
        f"webhook pull {x_goog_channel_id}",
        engine.handle_webhook_notification,
        x_goog_channel_id,
        x_goog_resource_id,
        x_goog_resource_state,
    )
    return {'received': True, 'scheduled': True}
