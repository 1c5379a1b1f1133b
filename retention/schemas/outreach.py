"""
Outreach channels, message content, dispatch results and the outreach log.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Channel(str, Enum):
    EMAIL = "email"
    WHOP_CHAT = "whop_chat"
    DISCORD_DM = "discord_dm"
    TELEGRAM = "telegram"


# Identifiers accepted in a community's priority list besides the enum values
CHANNEL_ALIASES = {"discord": Channel.DISCORD_DM}


def parse_channel(identifier: str) -> Optional[Channel]:
    if identifier in CHANNEL_ALIASES:
        return CHANNEL_ALIASES[identifier]
    try:
        return Channel(identifier)
    except ValueError:
        return None


class OutreachContent(BaseModel):
    subject: Optional[str] = None
    body: str


class OutreachResult(BaseModel):
    channel: str  # Channel value or "none"
    success: bool
    error: Optional[str] = None


class OutreachLogEntry(BaseModel):
    member_id: str
    community_id: str
    channel: Channel
    subject: Optional[str] = None
    content: str
    playbook_enrollment_id: Optional[str] = None
    template_id: Optional[str] = None
    sent_at: datetime
    delivered_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None
    bounced: bool = False
