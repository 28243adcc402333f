"""Interaction log and contact tags."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from taxcrm.core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from taxcrm.models import CRMContact, Direction, InteractionType


def _now():
    return datetime.now(timezone.utc)


class TestLogInteraction:
    def test_logs_and_bumps_last_contacted(self, make_contact, crm, admin):
        contact = make_contact()
        assert contact.last_contacted_at is None

        interaction = crm.log_interaction(
            {"contact_id": contact.id, "type": "PHONE_CALL", "duration_minutes": 12}, admin
        )
        assert interaction.type == InteractionType.PHONE_CALL
        assert interaction.direction == Direction.OUTBOUND
        assert interaction.user_id == "admin-1"

        refreshed = crm.db.get(CRMContact, contact.id)
        assert refreshed.last_contacted_at is not None

    def test_backdated_interaction_keeps_now(self, make_contact, crm, admin):
        contact = make_contact()
        past = _now() - timedelta(days=10)
        interaction = crm.log_interaction(
            {"contact_id": contact.id, "type": "NOTE", "occurred_at": past}, admin
        )
        assert interaction.occurred_at == past
        refreshed = crm.db.get(CRMContact, contact.id)
        assert refreshed.last_contacted_at > past

    def test_small_clock_skew_allowed(self, make_contact, crm, admin):
        contact = make_contact()
        ahead = _now() + timedelta(minutes=2)
        crm.log_interaction({"contact_id": contact.id, "type": "NOTE", "occurred_at": ahead}, admin)
        assert crm.db.get(CRMContact, contact.id).last_contacted_at == ahead

    def test_future_timestamp_rejected(self, make_contact, crm, admin):
        contact = make_contact()
        with pytest.raises(ValidationError) as exc:
            crm.log_interaction(
                {"contact_id": contact.id, "type": "NOTE", "occurred_at": _now() + timedelta(hours=1)},
                admin,
            )
        assert exc.value.details[0]["code"] == "future_timestamp"

    def test_unknown_type_rejected(self, make_contact, crm, admin):
        contact = make_contact()
        with pytest.raises(ValidationError):
            crm.log_interaction({"contact_id": contact.id, "type": "FAX"}, admin)

    def test_without_access_context(self, make_contact, crm):
        contact = make_contact(assigned_preparer_id="prep-2")
        interaction = crm.log_interaction(
            {"contact_id": contact.id, "type": "EMAIL", "direction": "INBOUND"}
        )
        assert interaction.user_id is None
        assert interaction.direction == Direction.INBOUND

    def test_preparer_denied(self, make_contact, crm, preparer):
        contact = make_contact(assigned_preparer_id="prep-2")
        with pytest.raises(AccessDeniedError):
            crm.log_interaction({"contact_id": contact.id, "type": "NOTE"}, preparer)

    def test_unknown_contact(self, crm, admin):
        with pytest.raises(NotFoundError):
            crm.log_interaction({"contact_id": uuid.uuid4(), "type": "NOTE"}, admin)


class TestGetInteractions:
    def test_newest_first_with_limit(self, make_contact, crm, admin):
        contact = make_contact()
        base = _now() - timedelta(days=5)
        for days in (0, 2, 1, 3):
            crm.log_interaction(
                {"contact_id": contact.id, "type": "NOTE", "body": str(days),
                 "occurred_at": base + timedelta(days=days)},
                admin,
            )

        result = crm.get_contact_interactions(contact.id, admin, limit=3)
        assert [i.body for i in result] == ["3", "2", "1"]

    @pytest.mark.parametrize("limit", [0, 201])
    def test_limit_bounds(self, make_contact, crm, admin, limit):
        contact = make_contact()
        with pytest.raises(ValidationError) as exc:
            crm.get_contact_interactions(contact.id, admin, limit=limit)
        assert exc.value.details[0]["code"] == "out_of_range"


class TestTags:
    def test_add_tag_is_idempotent(self, make_contact, crm, admin):
        contact = make_contact()
        first = crm.add_tag(contact.id, "VIP", admin, color="#ff0000")
        second = crm.add_tag(contact.id, "vip", admin)
        assert first.id == second.id
        assert [t.name for t in crm.get_contact_tags(contact.id, admin)] == ["VIP"]

    def test_tag_shared_between_contacts(self, make_contact, crm, admin):
        a = make_contact()
        b = make_contact()
        tag_a = crm.add_tag(a.id, "Returning", admin)
        tag_b = crm.add_tag(b.id, "Returning", admin)
        assert tag_a.id == tag_b.id

    def test_remove_tag(self, make_contact, crm, admin):
        contact = make_contact()
        tag = crm.add_tag(contact.id, "Priority", admin)
        crm.remove_tag(contact.id, tag.id, admin)
        assert crm.get_contact_tags(contact.id, admin) == []
        with pytest.raises(NotFoundError):
            crm.remove_tag(contact.id, tag.id, admin)

    def test_blank_tag_name(self, make_contact, crm, admin):
        contact = make_contact()
        with pytest.raises(ValidationError):
            crm.add_tag(contact.id, "   ", admin)

    def test_preparer_denied(self, make_contact, crm, preparer):
        contact = make_contact(assigned_preparer_id="prep-2")
        with pytest.raises(AccessDeniedError):
            crm.add_tag(contact.id, "VIP", preparer)
