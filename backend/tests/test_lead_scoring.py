"""Lead scoring."""

from datetime import datetime, timedelta, timezone

import pytest

from taxcrm.core.exceptions import AccessDeniedError, ValidationError
from taxcrm.models import CRMContact, CRMEmailActivity, CRMLeadScore, EmailActivityStatus, PipelineStage
from taxcrm.services.lead_scoring import CRMLeadScoringService


def _ago(days):
    return datetime.now(timezone.utc) - timedelta(days=days)


@pytest.fixture
def scoring(db):
    return CRMLeadScoringService(db)


def _set(db, contact, **fields):
    for name, value in fields.items():
        setattr(contact, name, value)
    db.commit()


def test_new_contact_scores_stage_only(make_contact, scoring):
    contact = make_contact()
    breakdown = scoring.calculate_lead_score(contact.id)
    assert breakdown.stage == 5
    assert breakdown.email_engagement == 0
    assert breakdown.interactions == 0
    assert breakdown.recency == 0
    assert breakdown.total == 5


def test_components(make_contact, crm, scoring, db, admin):
    contact = make_contact()
    crm.update_contact_stage({"contact_id": contact.id, "to_stage": "QUALIFIED"}, admin)
    for days in (1, 3, 40, 50):
        crm.log_interaction({"contact_id": contact.id, "type": "NOTE", "occurred_at": _ago(days)}, admin)

    # 4 emails: 2 opened, 1 of them clicked
    for status, opened, clicked in [
        (EmailActivityStatus.OPENED, True, False),
        (EmailActivityStatus.CLICKED, True, True),
        (EmailActivityStatus.SENT, False, False),
        (EmailActivityStatus.SENT, False, False),
    ]:
        db.add(CRMEmailActivity(
            contact_id=contact.id,
            subject="Hello",
            status=status,
            opened_at=_ago(1) if opened else None,
            clicked_at=_ago(1) if clicked else None,
        ))
    db.commit()

    breakdown = scoring.calculate_lead_score(contact.id)
    # open rate 0.5 -> 12.5, click rate 0.25 -> 10 (capped): 22.5 rounds to 23
    assert breakdown.email_engagement == 23
    # 4 interactions -> 12, 2 recent -> +3
    assert breakdown.interactions == 15
    assert breakdown.stage == 20
    # last contacted just now
    assert breakdown.recency == 20
    assert breakdown.total == 78


@pytest.mark.parametrize(
    "days,points",
    [(3, 20), (10, 15), (20, 10), (45, 5), (90, 0)],
)
def test_recency(make_contact, scoring, db, days, points):
    contact = make_contact()
    _set(db, contact, last_contacted_at=_ago(days))
    assert scoring.calculate_lead_score(contact.id).recency == points


def test_total_is_capped(make_contact, scoring, db):
    contact = make_contact()
    _set(db, contact, stage=PipelineStage.FILED, last_contacted_at=_ago(0))
    assert scoring.calculate_lead_score(contact.id).total <= 100


def test_update_contact_score_writes_history(make_contact, scoring, db):
    contact = make_contact()
    breakdown = scoring.update_contact_score(contact.id)

    refreshed = db.get(CRMContact, contact.id)
    assert refreshed.lead_score == breakdown.total
    assert refreshed.last_scored_at is not None

    history = scoring.get_score_history(contact.id)
    assert len(history) == 1
    assert history[0].changed_by == "system"
    assert history[0].breakdown["total"] == breakdown.total


def test_manual_adjustment(make_contact, scoring, db):
    contact = make_contact()
    entry = scoring.manual_score_adjustment(contact.id, 88, "Referred by partner", "admin-1")
    assert entry.breakdown is None
    assert db.get(CRMContact, contact.id).lead_score == 88


@pytest.mark.parametrize("score,reason", [(-1, "x"), (101, "x"), (50, "  ")])
def test_manual_adjustment_validation(make_contact, scoring, score, reason):
    contact = make_contact()
    with pytest.raises(ValidationError):
        scoring.manual_score_adjustment(contact.id, score, reason, "admin-1")


def test_scoring_is_gated(make_contact, scoring, preparer):
    contact = make_contact(assigned_preparer_id="prep-2")
    with pytest.raises(AccessDeniedError):
        scoring.calculate_lead_score(contact.id, preparer)


def test_batch_skips_inactive_and_fresh(make_contact, scoring, db):
    stale = make_contact()
    fresh = make_contact()
    lost = make_contact()
    _set(db, fresh, last_scored_at=datetime.now(timezone.utc))
    _set(db, lost, stage=PipelineStage.LOST)

    result = scoring.batch_update_scores()
    assert result == {"processed": 1, "updated": 1, "failed": 0}
    assert db.query(CRMLeadScore).filter(CRMLeadScore.contact_id == stale.id).count() == 1


def test_batch_counts_failures(make_contact, scoring, monkeypatch):
    make_contact()
    make_contact()

    def boom(*args, **kwargs):
        raise RuntimeError("scoring exploded")

    monkeypatch.setattr(scoring, "update_contact_score", boom)
    assert scoring.batch_update_scores() == {"processed": 2, "updated": 0, "failed": 2}


def test_insights(make_contact, scoring):
    for score in (80, 75, 50, 10):
        contact = make_contact()
        scoring.manual_score_adjustment(contact.id, score, "seed", "admin-1")

    insights = scoring.get_score_insights()
    assert insights.total == 4
    assert insights.hot_leads == 2
    assert insights.warm_leads == 1
    assert insights.cold_leads == 1
    assert insights.average_score == 54
    assert insights.distribution == {"hot": 50, "warm": 25, "cold": 25}
