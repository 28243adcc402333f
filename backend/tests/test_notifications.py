"""Notification rendering, dispatch and the Resend provider."""

from unittest.mock import Mock

import httpx
import jinja2
import pytest

from taxcrm.core.exceptions import NotificationError
from taxcrm.models import PipelineStage
from taxcrm.services.email_templates import render_notification
from taxcrm.services.notifications import NotificationDispatcher, ResendEmailProvider


STAGE_CONTEXT = {
    "contact_id": "c-1",
    "contact_name": "Ada <Lovelace>",
    "from_stage": "NEW",
    "to_stage": "CONTACTED",
    "changed_by": "admin-1",
    "reason": None,
}


class TestRenderNotification:
    def test_body_is_escaped_subject_is_not(self):
        subject, html = render_notification("stage_changed", STAGE_CONTEXT)
        assert subject == "Ada <Lovelace>: NEW -> CONTACTED"
        assert "Ada &lt;Lovelace&gt;" in html
        assert "<Lovelace>" not in html
        assert "Reason:" not in html

    def test_missing_context_raises(self):
        with pytest.raises(jinja2.UndefinedError):
            render_notification("contact_assigned", {"contact_id": "c-1"})

    def test_unknown_event(self):
        with pytest.raises(KeyError):
            render_notification("contact_exploded", STAGE_CONTEXT)


class TestDispatcher:
    def test_returns_provider_id(self, dispatcher, provider):
        assert dispatcher.notify("stage_changed", "ops@example.com", STAGE_CONTEXT) == "msg-1"
        assert provider.sent[0]["to"] == "ops@example.com"
        assert provider.sent[0]["from"] == "CRM <crm@example.com>"

    def test_disabled_sends_nothing(self, provider):
        dispatcher = NotificationDispatcher(provider=provider, enabled=False)
        assert dispatcher.notify("stage_changed", "ops@example.com", STAGE_CONTEXT) is None
        assert provider.sent == []

    def test_provider_failure_is_swallowed(self, dispatcher, provider):
        provider.fail_all = True
        assert dispatcher.notify("stage_changed", "ops@example.com", STAGE_CONTEXT) is None

    def test_render_failure_is_swallowed(self, dispatcher, provider):
        assert dispatcher.notify("stage_changed", "ops@example.com", {"contact_id": "c-1"}) is None
        assert provider.sent == []


def test_failed_notification_does_not_undo_stage_change(make_contact, crm, admin, provider):
    contact = make_contact()
    provider.fail_all = True

    updated = crm.update_contact_stage({"contact_id": contact.id, "to_stage": "FILED"}, admin)
    assert updated.stage == PipelineStage.FILED
    assert len(crm.get_contact_stage_history(contact.id, admin)) == 1


def test_failed_notification_does_not_fail_create(crm, provider):
    provider.fail_all = True
    contact = crm.create_contact(
        {"contact_type": "LEAD", "first_name": "No", "last_name": "Mail", "email": "nomail@example.com"}
    )
    assert contact.id is not None


class TestResendProvider:
    def _client(self, status_code=200, payload=None):
        response = httpx.Response(status_code, json=payload if payload is not None else {"id": "re_123"})
        client = Mock(spec=httpx.Client)
        client.post.return_value = response
        return client

    def test_send(self):
        client = self._client()
        provider = ResendEmailProvider(api_key="key", base_url="https://api.test/", client=client)

        result = provider.send("CRM <crm@example.com>", "to@example.com", "Hi", "<p>Hi</p>")

        assert result.id == "re_123"
        url = client.post.call_args.args[0]
        kwargs = client.post.call_args.kwargs
        assert url == "https://api.test/emails"
        assert kwargs["headers"]["Authorization"] == "Bearer key"
        assert kwargs["json"]["to"] == ["to@example.com"]

    def test_error_status(self):
        provider = ResendEmailProvider(api_key="key", client=self._client(422, {"message": "bad"}))
        with pytest.raises(NotificationError):
            provider.send("a@example.com", "b@example.com", "s", "h")

    def test_connection_error(self):
        client = Mock(spec=httpx.Client)
        client.post.side_effect = httpx.ConnectError("refused")
        provider = ResendEmailProvider(api_key="key", client=client)
        with pytest.raises(NotificationError):
            provider.send("a@example.com", "b@example.com", "s", "h")

    def test_missing_api_key(self):
        provider = ResendEmailProvider(api_key="", client=self._client())
        with pytest.raises(NotificationError):
            provider.send("a@example.com", "b@example.com", "s", "h")
