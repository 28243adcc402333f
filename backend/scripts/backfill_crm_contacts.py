"""
Backfill CRM Contacts from exported user profiles
=================================================
Creates a CRM contact for every client, lead, affiliate and tax preparer
profile that does not have one yet. Safe to run repeatedly: profiles that
already have a contact (matched by email, user id or identity-provider id)
are skipped.

Usage (from project root):
    python backend/scripts/backfill_crm_contacts.py --input profiles.json
    python backend/scripts/backfill_crm_contacts.py --input profiles.json --dry-run

The input file is a JSON list of objects with:
    id, role, first_name, last_name, email, phone, company,
    user_id, external_user_id

Flags:
    --input    PATH   (required) Profiles export
    --dry-run         Report what would be created without writing
    --database-url    Override DATABASE_URL
"""

import argparse
import json
import sys
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from taxcrm.core.database import SessionLocal, configure_database
from taxcrm.core.exceptions import CRMError
from taxcrm.models import CRMContact, ContactType
from taxcrm.services.contact_service import CRMService
from taxcrm.services.notifications import NotificationDispatcher


ROLE_TO_CONTACT_TYPE = {
    "client": ContactType.CLIENT,
    "lead": ContactType.LEAD,
    "affiliate": ContactType.AFFILIATE,
    "tax_preparer": ContactType.PREPARER,
}

PLACEHOLDER_EMAIL_DOMAIN = "unknown.taxgeniuspro.tax"


@dataclass
class BackfillStats:
    total_processed: int = 0
    clients: int = 0
    leads: int = 0
    affiliates: int = 0
    preparers: int = 0
    skipped: int = 0
    errors: int = 0

    def count(self, contact_type: ContactType) -> None:
        field = {
            ContactType.CLIENT: "clients",
            ContactType.LEAD: "leads",
            ContactType.AFFILIATE: "affiliates",
            ContactType.PREPARER: "preparers",
        }[contact_type]
        setattr(self, field, getattr(self, field) + 1)
        self.total_processed += 1


# =============================================================================
# Helpers
# =============================================================================

def load_profiles(path: str) -> List[Dict[str, Any]]:
    with open(path, encoding="utf-8") as f:
        profiles = json.load(f)
    if not isinstance(profiles, list):
        raise ValueError(f"{path} must contain a JSON list of profiles")
    return profiles


def placeholder_email(contact_type: ContactType, profile_id: Any) -> str:
    return f"{contact_type.value.lower()}-{profile_id}@{PLACEHOLDER_EMAIL_DOMAIN}"


def contact_exists(db: Session, email: Optional[str], user_id: Optional[str], external_user_id: Optional[str]) -> bool:
    conditions = []
    if email:
        conditions.append(CRMContact.email == email.strip().lower())
    if user_id:
        conditions.append(CRMContact.user_id == user_id)
    if external_user_id:
        conditions.append(CRMContact.external_user_id == external_user_id)
    if not conditions:
        return False
    return db.query(CRMContact.id).filter(or_(*conditions)).first() is not None


def build_contact_data(profile: Dict[str, Any], contact_type: ContactType) -> Dict[str, Any]:
    email = (profile.get("email") or "").strip() or placeholder_email(contact_type, profile.get("id"))
    return {
        "contact_type": contact_type,
        "first_name": (profile.get("first_name") or "").strip() or "Unknown",
        "last_name": (profile.get("last_name") or "").strip() or "Unknown",
        "email": email,
        "phone": profile.get("phone"),
        "company": profile.get("company"),
        "user_id": profile.get("user_id"),
        "external_user_id": profile.get("external_user_id"),
        "source": "backfill",
    }


# =============================================================================
# Backfill
# =============================================================================

def backfill(db: Session, profiles: List[Dict[str, Any]], dry_run: bool = False) -> BackfillStats:
    """Create missing contacts. Per-profile failures are counted, not raised."""
    # Backfilled contacts are historical; no notifications
    service = CRMService(db, NotificationDispatcher(enabled=False))
    stats = BackfillStats()

    for profile in profiles:
        contact_type = ROLE_TO_CONTACT_TYPE.get(str(profile.get("role", "")).lower())
        if contact_type is None:
            stats.skipped += 1
            continue

        data = build_contact_data(profile, contact_type)
        if contact_exists(db, data["email"], data["user_id"], data["external_user_id"]):
            stats.skipped += 1
            continue

        if dry_run:
            stats.count(contact_type)
            continue

        try:
            service.create_contact(data)
        except CRMError as e:
            print(f"[ERROR] Profile {profile.get('id')}: {e.message}")
            stats.errors += 1
            continue

        stats.count(contact_type)

    return stats


# =============================================================================
# Main
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Backfill CRM contacts from user profiles")
    parser.add_argument("--input", required=True, help="Path to the profiles JSON export")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    args = parser.parse_args(argv)

    try:
        profiles = load_profiles(args.input)
    except (OSError, ValueError) as e:
        print(f"[ERROR] Could not read {args.input}: {e}")
        return 1

    configure_database(args.database_url)
    db = SessionLocal()
    try:
        print(f"Backfilling {len(profiles)} profiles{' (dry run)' if args.dry_run else ''}...")
        stats = backfill(db, profiles, dry_run=args.dry_run)
    finally:
        db.close()

    print("=" * 60)
    for key, value in asdict(stats).items():
        print(f"  {key:<16} {value}")
    print("=" * 60)
    return 0 if stats.errors == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
