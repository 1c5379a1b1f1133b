"""
Outreach channel selection, transport failures and the outreach log.
"""
from datetime import datetime, timezone

import httpx

from retention.core.config import Settings
from retention.outreach.dispatcher import DEFAULT_SUBJECT, OutreachDispatcher, can_reach
from retention.outreach.transport import HttpTransport
from retention.schemas.member import Community, Member
from retention.schemas.outreach import Channel, OutreachContent

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeTransport:
    def __init__(self, failing=(), raising=()):
        self.failing = set(failing)
        self.raising = set(raising)
        self.sent: list[tuple[Channel, str, OutreachContent]] = []

    def send(self, channel, member, content):
        if channel in self.raising:
            raise RuntimeError("connection reset")
        self.sent.append((channel, member.id, content))
        return channel not in self.failing


class ListLog:
    def __init__(self):
        self.entries = []

    def append_outreach_log(self, entry):
        self.entries.append(entry)


def _make_member(**overrides) -> Member:
    values = {"id": "m1", "community_id": "c1", "email": "m1@example.com"}
    values.update(overrides)
    return Member(**values)


def _make_community(**overrides) -> Community:
    values = {"id": "c1", "plan_tier": "growth"}
    values.update(overrides)
    return Community(**values)


def _make_dispatcher(transport, log, **kwargs) -> OutreachDispatcher:
    return OutreachDispatcher(transport, log, clock=lambda: NOW, **kwargs)


CONTENT = OutreachContent(subject="Hello", body="We miss you")


class TestChannelSelection:

    def test_email_first_by_default(self):
        transport, log = FakeTransport(), ListLog()
        result = _make_dispatcher(transport, log).dispatch(_make_member(), _make_community(), CONTENT)

        assert result.success is True
        assert result.channel == "email"
        assert [c for c, _, _ in transport.sent] == [Channel.EMAIL]

    def test_telegram_only_member(self):
        transport, log = FakeTransport(), ListLog()
        member = _make_member(email=None, telegram_user_id="tg-42")
        community = _make_community(telegram_bot_installed=True)

        result = _make_dispatcher(transport, log).dispatch(member, community, CONTENT)

        assert result.channel == "telegram"
        assert result.success is True
        assert len(transport.sent) == 1

    def test_discord_needs_bot_installed(self):
        member = _make_member(email=None, discord_user_id="d-1")
        assert not can_reach(member, Channel.DISCORD_DM, _make_community())
        assert can_reach(member, Channel.DISCORD_DM, _make_community(discord_bot_installed=True))

    def test_whop_chat_depends_on_community_only(self):
        member = _make_member(email=None)
        assert can_reach(member, Channel.WHOP_CHAT, _make_community(whop_chat_enabled=True))

    def test_community_priority_and_discord_alias(self):
        transport, log = FakeTransport(), ListLog()
        member = _make_member(discord_user_id="d-1")
        community = _make_community(
            discord_bot_installed=True,
            settings={"outreach_channel_priority": ["discord", "email"]},
        )

        result = _make_dispatcher(transport, log).dispatch(member, community, CONTENT)

        assert result.channel == "discord_dm"
        assert log.entries[0].channel == Channel.DISCORD_DM

    def test_unknown_identifiers_are_skipped(self):
        community = _make_community(settings={"outreach_channel_priority": ["sms", "email", "email"]})
        dispatcher = _make_dispatcher(FakeTransport(), ListLog())
        assert dispatcher.priority_for(community) == [Channel.EMAIL]

    def test_empty_priority_is_not_replaced_by_default(self):
        transport, log = FakeTransport(), ListLog()
        community = _make_community(settings={"outreach_channel_priority": []})
        dispatcher = _make_dispatcher(transport, log)

        assert dispatcher.priority_for(community) == []
        result = dispatcher.dispatch(_make_member(), community, CONTENT)
        assert result.channel == "none"
        assert transport.sent == []

    def test_unset_priority_uses_default(self):
        dispatcher = _make_dispatcher(FakeTransport(), ListLog())
        assert dispatcher.priority_for(_make_community())[0] == Channel.EMAIL

    def test_no_reachable_channel(self):
        transport, log = FakeTransport(), ListLog()
        result = _make_dispatcher(transport, log).dispatch(_make_member(email=None), _make_community(), CONTENT)

        assert result.success is False
        assert result.channel == "none"
        assert result.error == "No reachable channel"
        assert transport.sent == []
        assert log.entries == []


class TestSendFailures:

    def test_failure_stops_at_first_attempted_channel(self):
        transport, log = FakeTransport(failing={Channel.EMAIL}), ListLog()
        member = _make_member(telegram_user_id="tg-42")
        community = _make_community(telegram_bot_installed=True)

        result = _make_dispatcher(transport, log).dispatch(member, community, CONTENT)

        assert result.success is False
        assert result.channel == "email"
        assert result.error
        assert len(transport.sent) == 1
        assert log.entries == []

    def test_fallthrough_tries_next_channel(self):
        transport, log = FakeTransport(failing={Channel.EMAIL}), ListLog()
        member = _make_member(telegram_user_id="tg-42")
        community = _make_community(telegram_bot_installed=True)

        result = _make_dispatcher(transport, log, fallthrough_on_failure=True).dispatch(member, community, CONTENT)

        assert result.success is True
        assert result.channel == "telegram"
        assert [c for c, _, _ in transport.sent] == [Channel.EMAIL, Channel.TELEGRAM]
        assert len(log.entries) == 1

    def test_fallthrough_reports_last_failure(self):
        transport = FakeTransport(failing={Channel.EMAIL, Channel.TELEGRAM})
        member = _make_member(telegram_user_id="tg-42")
        community = _make_community(telegram_bot_installed=True)

        result = _make_dispatcher(transport, ListLog(), fallthrough_on_failure=True).dispatch(
            member, community, CONTENT,
        )

        assert result.success is False
        assert result.channel == "telegram"

    def test_transport_exception_is_a_failure(self):
        transport, log = FakeTransport(raising={Channel.EMAIL}), ListLog()
        result = _make_dispatcher(transport, log).dispatch(_make_member(), _make_community(), CONTENT)

        assert result.success is False
        assert result.channel == "email"
        assert log.entries == []


class TestOutreachLog:

    def test_success_is_logged_with_enrollment(self):
        transport, log = FakeTransport(), ListLog()
        _make_dispatcher(transport, log).dispatch(
            _make_member(), _make_community(), CONTENT, enrollment_id="e1", template_id="check_in",
        )

        entry = log.entries[0]
        assert entry.member_id == "m1"
        assert entry.community_id == "c1"
        assert entry.subject == "Hello"
        assert entry.content == "We miss you"
        assert entry.playbook_enrollment_id == "e1"
        assert entry.template_id == "check_in"
        assert entry.sent_at == NOW

    def test_missing_subject_gets_default(self):
        transport = FakeTransport()
        _make_dispatcher(transport, ListLog()).dispatch(
            _make_member(), _make_community(), OutreachContent(body="Hi"),
        )
        assert transport.sent[0][2].subject == DEFAULT_SUBJECT


class TestHttpTransport:

    def _transport(self, handler, **settings) -> HttpTransport:
        values = {"resend_api_key": "re_test", "telegram_bot_token": "tg-token"}
        values.update(settings)
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return HttpTransport(Settings(**values), client=client)

    def test_email_via_resend(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "email-1"})

        ok = self._transport(handler).send(Channel.EMAIL, _make_member(), CONTENT)

        assert ok is True
        assert seen[0].url.path == "/emails"
        assert seen[0].headers["Authorization"] == "Bearer re_test"

    def test_rejected_request_is_failure(self):
        ok = self._transport(lambda request: httpx.Response(422)).send(Channel.EMAIL, _make_member(), CONTENT)
        assert ok is False

    def test_network_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        ok = self._transport(handler).send(Channel.EMAIL, _make_member(), CONTENT)
        assert ok is False

    def test_telegram_send_message(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        member = _make_member(telegram_user_id="tg-42")
        ok = self._transport(handler).send(Channel.TELEGRAM, member, CONTENT)

        assert ok is True
        assert seen[0].url.path == "/bottg-token/sendMessage"

    def test_missing_credentials_is_failure(self):
        def handler(request):
            raise AssertionError("no request expected")

        ok = self._transport(handler, resend_api_key="").send(Channel.EMAIL, _make_member(), CONTENT)
        assert ok is False

    def test_whop_chat_unsupported(self):
        ok = self._transport(lambda request: httpx.Response(200)).send(Channel.WHOP_CHAT, _make_member(), CONTENT)
        assert ok is False
