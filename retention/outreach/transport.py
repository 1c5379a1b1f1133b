"""
HTTP transport for outreach channels.

email      → Resend REST API
discord_dm → Discord bot API (open DM channel, then post message)
telegram   → Telegram Bot API sendMessage
whop_chat  → not wired to an API yet; every attempt reports failure

send() returns True on a 2xx response and False otherwise. Network
errors are logged and reported as failure.
"""
from __future__ import annotations

from typing import Optional

import httpx
import structlog

from retention.core.config import Settings, get_settings
from retention.schemas.member import Member
from retention.schemas.outreach import Channel, OutreachContent

logger = structlog.get_logger()


class HttpTransport:

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self.client = client or httpx.Client(timeout=self.settings.outreach_timeout_seconds)

    def close(self) -> None:
        self.client.close()

    def send(self, channel: Channel, member: Member, content: OutreachContent) -> bool:
        try:
            if channel == Channel.EMAIL:
                return self._send_email(member, content)
            if channel == Channel.DISCORD_DM:
                return self._send_discord(member, content)
            if channel == Channel.TELEGRAM:
                return self._send_telegram(member, content)
        except httpx.HTTPError as e:
            logger.warning("transport_http_error", channel=channel.value, member_id=member.id, error=str(e))
            return False

        logger.warning("transport_channel_unsupported", channel=channel.value, member_id=member.id)
        return False

    def _send_email(self, member: Member, content: OutreachContent) -> bool:
        if not self.settings.resend_api_key or not member.email:
            return False
        resp = self.client.post(
            f"{self.settings.resend_api_url}/emails",
            headers={"Authorization": f"Bearer {self.settings.resend_api_key}"},
            json={
                "from": self.settings.email_from,
                "to": member.email,
                "subject": content.subject,
                "html": content.body,
            },
        )
        return _ok(resp, "email")

    def _send_discord(self, member: Member, content: OutreachContent) -> bool:
        if not self.settings.discord_bot_token or not member.discord_user_id:
            return False
        headers = {"Authorization": f"Bot {self.settings.discord_bot_token}"}
        dm = self.client.post(
            f"{self.settings.discord_api_url}/users/@me/channels",
            headers=headers,
            json={"recipient_id": member.discord_user_id},
        )
        if not _ok(dm, "discord_dm"):
            return False
        resp = self.client.post(
            f"{self.settings.discord_api_url}/channels/{dm.json()['id']}/messages",
            headers=headers,
            json={"content": _plain_text(content)},
        )
        return _ok(resp, "discord_dm")

    def _send_telegram(self, member: Member, content: OutreachContent) -> bool:
        if not self.settings.telegram_bot_token or not member.telegram_user_id:
            return False
        resp = self.client.post(
            f"{self.settings.telegram_api_url}/bot{self.settings.telegram_bot_token}/sendMessage",
            json={"chat_id": member.telegram_user_id, "text": _plain_text(content)},
        )
        return _ok(resp, "telegram")


def _plain_text(content: OutreachContent) -> str:
    if content.subject:
        return f"{content.subject}\n\n{content.body}"
    return content.body


def _ok(resp: httpx.Response, channel: str) -> bool:
    if resp.is_success:
        return True
    logger.warning("transport_rejected", channel=channel, status_code=resp.status_code)
    return False
