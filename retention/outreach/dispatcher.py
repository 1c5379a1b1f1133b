"""
Outreach dispatcher — picks a channel for a member and sends through it.

Walks the community's channel priority list in order, skips channels the
member cannot be reached on, and sends on the first reachable one. A send
failure ends the dispatch on that channel unless fall-through is enabled,
in which case the next reachable channel is tried.

Successful sends are appended to the outreach log. Transport failures are
ordinary results (success=False), never exceptions.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Sequence

import structlog
from prometheus_client import Counter

from retention.schemas.member import Community, Member
from retention.schemas.outreach import (
    Channel, OutreachContent, OutreachLogEntry, OutreachResult, parse_channel,
)

logger = structlog.get_logger()

DEFAULT_CHANNEL_PRIORITY = ["email", "whop_chat", "discord", "telegram"]
DEFAULT_SUBJECT = "Message from your community"

OUTREACH_ATTEMPTS = Counter(
    "retention_outreach_attempts_total",
    "Outreach send attempts by channel and result",
    ["channel", "result"],
)


class Transport(Protocol):
    def send(self, channel: Channel, member: Member, content: OutreachContent) -> bool: ...


class OutreachLog(Protocol):
    def append_outreach_log(self, entry: OutreachLogEntry) -> None: ...


def can_reach(member: Member, channel: Channel, community: Community) -> bool:
    if channel == Channel.EMAIL:
        return bool(member.email)
    if channel == Channel.WHOP_CHAT:
        return community.whop_chat_enabled
    if channel == Channel.DISCORD_DM:
        return bool(member.discord_user_id) and community.discord_bot_installed
    if channel == Channel.TELEGRAM:
        return bool(member.telegram_user_id) and community.telegram_bot_installed
    return False


class OutreachDispatcher:

    def __init__(
        self,
        transport: Transport,
        outreach_log: OutreachLog,
        clock: Optional[Callable[[], datetime]] = None,
        fallthrough_on_failure: bool = False,
        default_priority: Sequence[str] = DEFAULT_CHANNEL_PRIORITY,
    ):
        self.transport = transport
        self.outreach_log = outreach_log
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.fallthrough_on_failure = fallthrough_on_failure
        self.default_priority = list(default_priority)

    def priority_for(self, community: Community) -> list[Channel]:
        identifiers = community.settings.outreach_channel_priority
        if identifiers is None:
            identifiers = self.default_priority
        channels: list[Channel] = []
        for identifier in identifiers:
            channel = parse_channel(identifier)
            if channel is None:
                logger.warning("outreach_unknown_channel", community_id=community.id, channel=identifier)
            elif channel not in channels:
                channels.append(channel)
        return channels

    def dispatch(
        self,
        member: Member,
        community: Community,
        content: OutreachContent,
        enrollment_id: Optional[str] = None,
        template_id: Optional[str] = None,
    ) -> OutreachResult:
        last_failure: Optional[OutreachResult] = None

        for channel in self.priority_for(community):
            if not can_reach(member, channel, community):
                logger.debug("outreach_channel_unreachable", member_id=member.id, channel=channel.value)
                continue

            if self._attempt(channel, member, content):
                self.outreach_log.append_outreach_log(OutreachLogEntry(
                    member_id=member.id,
                    community_id=community.id,
                    channel=channel,
                    subject=content.subject,
                    content=content.body,
                    playbook_enrollment_id=enrollment_id,
                    template_id=template_id,
                    sent_at=self.clock(),
                ))
                logger.info("outreach_sent", member_id=member.id, channel=channel.value)
                return OutreachResult(channel=channel.value, success=True)

            last_failure = OutreachResult(
                channel=channel.value, success=False, error=f"Send via {channel.value} failed",
            )
            if not self.fallthrough_on_failure:
                return last_failure

        if last_failure is not None:
            return last_failure

        logger.info("outreach_no_reachable_channel", member_id=member.id, community_id=community.id)
        return OutreachResult(channel="none", success=False, error="No reachable channel")

    def _attempt(self, channel: Channel, member: Member, content: OutreachContent) -> bool:
        if content.subject is None:
            content = content.model_copy(update={"subject": DEFAULT_SUBJECT})
        try:
            ok = self.transport.send(channel, member, content)
        except Exception as e:
            logger.warning("outreach_transport_error", member_id=member.id, channel=channel.value, error=str(e))
            ok = False

        OUTREACH_ATTEMPTS.labels(channel=channel.value, result="success" if ok else "failure").inc()
        if not ok:
            logger.warning("outreach_send_failed", member_id=member.id, channel=channel.value)
        return ok
