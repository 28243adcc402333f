"""
CRM contact service.

Owns contacts, the interaction log, stage history and contact tags.
Every read and write of a single contact goes through the access gate;
paired writes are committed together; notifications are sent after commit.

Usage:
    service = CRMService(db, NotificationDispatcher())
    contact = service.create_contact({...})
    service.update_contact_stage(
        {"contact_id": contact.id, "to_stage": "CONTACTED"}, access
    )
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.access import (
    AccessContext,
    check_contact_access,
    require_admin,
    scope_preparer_filter,
)
from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import NotFoundError, ValidationError, coerce_input
from ..core.transactions import transaction
from ..models import (
    CRMContact,
    CRMContactTag,
    CRMEmailActivity,
    CRMInteraction,
    CRMStageHistory,
    CRMTag,
    CRMTask,
    PipelineStage,
)
from ..models.task import CLOSED_TASK_STATUSES
from ..schemas.common import PaginationParams, total_pages
from ..schemas.contact import (
    ContactCounts,
    ContactCreate,
    ContactDetailResponse,
    ContactFilters,
    ContactListResponse,
    ContactResponse,
    ContactUpdate,
    EmailActivitySummary,
    StageUpdate,
)
from ..schemas.interaction import (
    InteractionCreate,
    InteractionResponse,
    StageHistoryResponse,
    TagResponse,
)
from ..schemas.task import TaskResponse
from .notifications import NotificationDispatcher


logger = logging.getLogger(__name__)

# Interactions may be logged slightly ahead of the server clock
MAX_FUTURE_SKEW = timedelta(minutes=5)
MAX_INTERACTION_LIMIT = 200

DETAIL_INTERACTIONS = 10
DETAIL_STAGE_HISTORY = 10
DETAIL_OPEN_TASKS = 5
DETAIL_EMAIL_ACTIVITIES = 10

# Fields an upsert may overwrite on an existing contact
_UPSERT_EXCLUDED = {"email", "stage", "assigned_preparer_id"}
_REQUIRED_ON_UPDATE = ("contact_type", "first_name", "last_name", "email")


# =============================================================================
# Helpers
# =============================================================================

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _integrity_error(e: IntegrityError) -> ValidationError:
    text = str(e.orig).lower()
    for field in ("external_user_id", "user_id", "email"):
        if field in text:
            return ValidationError.for_field(
                field, f"A contact with this {field} already exists", f"duplicate_{field}"
            )
    return ValidationError("Contact violates a uniqueness constraint")


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# =============================================================================
# Service
# =============================================================================

class CRMService:
    """Contact store, interaction log and stage history."""

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher if dispatcher is not None else NotificationDispatcher()

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _load_contact(
        self,
        contact_id: UUID,
        for_update: bool = False,
        include_deleted: bool = False,
    ) -> CRMContact:
        query = self.db.query(CRMContact).filter(CRMContact.id == contact_id)
        if not include_deleted:
            query = query.filter(CRMContact.deleted_at.is_(None))
        if for_update:
            query = query.with_for_update()

        contact = query.first()
        if contact is None:
            raise NotFoundError("Contact not found")
        return contact

    def _get_accessible_contact(
        self,
        contact_id: UUID,
        access: AccessContext,
        for_update: bool = False,
    ) -> CRMContact:
        contact = self._load_contact(contact_id, for_update=for_update)
        check_contact_access(contact, access)
        return contact

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    def create_contact(
        self,
        data: Union[ContactCreate, dict],
        upsert: bool = False,
        access: Optional[AccessContext] = None,
    ) -> CRMContact:
        """
        Create a contact, or update the existing one with the same email when
        ``upsert`` is set.

        With an access context, an upsert match must pass the access gate, and
        only admins may revive a soft-deleted match. Without one (scripts and
        workers) the caller is trusted.

        Raises:
            ValidationError: malformed input, or duplicate email without upsert
            AccessDeniedError: upsert matched a contact the caller may not change
        """
        data = coerce_input(ContactCreate, data)

        existing = self.db.query(CRMContact).filter(CRMContact.email == data.email).first()
        if existing is not None:
            if not upsert:
                raise ValidationError.for_field(
                    "email", "A contact with this email already exists", "duplicate_email"
                )
            if access is not None:
                if existing.deleted_at is not None:
                    require_admin(access, "restore contacts")
                check_contact_access(existing, access)
            return self._upsert_existing(existing, data)

        now = utcnow()
        contact = CRMContact(
            **data.model_dump(),
            stage_entered_at=now,
            assigned_at=now if data.assigned_preparer_id else None,
            commission_rate_locked_at=now if data.commission_rate is not None else None,
        )

        try:
            with transaction(self.db):
                self.db.add(contact)
        except IntegrityError as e:
            raise _integrity_error(e) from e

        logger.info(f"Created CRM contact {contact.id} ({contact.contact_type.value})")

        self.dispatcher.notify(
            "contact_created",
            settings.crm_inbox_email,
            {
                "contact_id": str(contact.id),
                "contact_name": contact.full_name,
                "contact_email": contact.email,
                "contact_type": contact.contact_type.value,
                "source": contact.source,
            },
        )
        return contact

    def _upsert_existing(self, contact: CRMContact, data: ContactCreate) -> CRMContact:
        changes = data.model_dump(exclude_unset=True, exclude=_UPSERT_EXCLUDED)

        try:
            with transaction(self.db):
                for field, value in changes.items():
                    setattr(contact, field, value)
                if contact.deleted_at is not None:
                    logger.info(f"Reviving soft-deleted contact {contact.id} on upsert")
                    contact.deleted_at = None
                contact.updated_at = utcnow()
        except IntegrityError as e:
            raise _integrity_error(e) from e

        logger.info(f"Upserted CRM contact {contact.id}")
        return contact

    def get_contact_by_id(self, contact_id: UUID, access: AccessContext) -> ContactDetailResponse:
        """
        Load a contact with its recent activity.

        Raises:
            NotFoundError: unknown or soft-deleted contact
            AccessDeniedError: caller may not see this contact
        """
        contact = self._get_accessible_contact(contact_id, access)

        interactions = (
            self.db.query(CRMInteraction)
            .filter(CRMInteraction.contact_id == contact.id)
            .order_by(CRMInteraction.occurred_at.desc(), CRMInteraction.created_at.desc())
            .limit(DETAIL_INTERACTIONS)
            .all()
        )
        stage_history = (
            self.db.query(CRMStageHistory)
            .filter(CRMStageHistory.contact_id == contact.id)
            .order_by(CRMStageHistory.created_at.desc())
            .limit(DETAIL_STAGE_HISTORY)
            .all()
        )
        open_tasks = (
            self.db.query(CRMTask)
            .filter(
                CRMTask.contact_id == contact.id,
                CRMTask.status.notin_(CLOSED_TASK_STATUSES),
            )
            .order_by(CRMTask.due_date.is_(None), CRMTask.due_date.asc(), CRMTask.created_at.asc())
            .limit(DETAIL_OPEN_TASKS)
            .all()
        )
        email_activities = (
            self.db.query(CRMEmailActivity)
            .filter(CRMEmailActivity.contact_id == contact.id)
            .order_by(CRMEmailActivity.sent_at.desc())
            .limit(DETAIL_EMAIL_ACTIVITIES)
            .all()
        )

        counts = ContactCounts(
            interactions=self._count(CRMInteraction, contact.id),
            tasks=self._count(CRMTask, contact.id),
            email_activities=self._count(CRMEmailActivity, contact.id),
        )

        return ContactDetailResponse(
            **ContactResponse.model_validate(contact).model_dump(),
            interactions=[InteractionResponse.model_validate(i) for i in interactions],
            stage_history=[StageHistoryResponse.model_validate(h) for h in stage_history],
            tags=[TagResponse.model_validate(t) for t in self._contact_tags(contact.id)],
            tasks=[TaskResponse.model_validate(t) for t in open_tasks],
            email_activities=[EmailActivitySummary.model_validate(a) for a in email_activities],
            counts=counts,
        )

    def _count(self, model, contact_id: UUID) -> int:
        return self.db.query(func.count(model.id)).filter(model.contact_id == contact_id).scalar() or 0

    def update_contact(
        self,
        contact_id: UUID,
        patch: Union[ContactUpdate, dict],
        access: AccessContext,
    ) -> CRMContact:
        """
        Partially update a contact's profile.

        Only fields present in the patch are written. Stage and assignment
        are not patchable.
        """
        contact = self._get_accessible_contact(contact_id, access)
        patch = coerce_input(ContactUpdate, patch)
        changes = patch.model_dump(exclude_unset=True)

        for field in _REQUIRED_ON_UPDATE:
            if field in changes and changes[field] is None:
                raise ValidationError.for_field(field, f"{field} cannot be null", "required")

        new_email = changes.get("email")
        if new_email and new_email != contact.email:
            taken = (
                self.db.query(CRMContact.id)
                .filter(CRMContact.email == new_email, CRMContact.id != contact.id)
                .first()
            )
            if taken:
                raise ValidationError.for_field(
                    "email", "A contact with this email already exists", "duplicate_email"
                )

        if not changes:
            return contact

        try:
            with transaction(self.db):
                for field, value in changes.items():
                    setattr(contact, field, value)
        except IntegrityError as e:
            raise _integrity_error(e) from e

        logger.info(f"Updated CRM contact {contact.id}: {sorted(changes)}")
        return contact

    def delete_contact(self, contact_id: UUID, access: AccessContext) -> None:
        """Soft delete. Admin only."""
        require_admin(access, "delete contacts")
        contact = self._load_contact(contact_id)

        with transaction(self.db):
            contact.deleted_at = utcnow()

        logger.info(f"Soft-deleted CRM contact {contact.id} by {access.user_id}")

    def restore_contact(self, contact_id: UUID, access: AccessContext) -> CRMContact:
        """Undo a soft delete. Admin only."""
        require_admin(access, "restore contacts")
        contact = self._load_contact(contact_id, include_deleted=True)

        if contact.deleted_at is None:
            return contact

        with transaction(self.db):
            contact.deleted_at = None

        logger.info(f"Restored CRM contact {contact.id} by {access.user_id}")
        return contact

    def list_contacts(
        self,
        filters: Union[ContactFilters, dict, None],
        pagination: Union[PaginationParams, dict, None],
        access: AccessContext,
    ) -> ContactListResponse:
        """
        Filtered, paginated contact list ordered by most recently updated.

        Tax preparers only ever see contacts assigned to them.
        """
        filters = coerce_input(ContactFilters, filters or {})
        pagination = coerce_input(
            PaginationParams, pagination or {"limit": settings.contact_list_default_limit}
        )

        query = self.db.query(CRMContact).filter(CRMContact.deleted_at.is_(None))

        if filters.stage:
            query = query.filter(CRMContact.stage == filters.stage)
        if filters.contact_type:
            query = query.filter(CRMContact.contact_type == filters.contact_type)

        preparer_id = scope_preparer_filter(access, filters.assigned_preparer_id)
        if preparer_id:
            query = query.filter(CRMContact.assigned_preparer_id == preparer_id)

        if filters.search and filters.search.strip():
            pattern = f"%{_escape_like(filters.search.strip())}%"
            query = query.filter(
                or_(
                    CRMContact.first_name.ilike(pattern, escape="\\"),
                    CRMContact.last_name.ilike(pattern, escape="\\"),
                    CRMContact.email.ilike(pattern, escape="\\"),
                    CRMContact.phone.ilike(pattern, escape="\\"),
                )
            )

        total = query.count()
        contacts = (
            query.order_by(CRMContact.updated_at.desc(), CRMContact.id.asc())
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )

        return ContactListResponse(
            contacts=[ContactResponse.model_validate(c) for c in contacts],
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=total_pages(total, pagination.limit),
        )

    def assign_contact_to_preparer(
        self,
        contact_id: UUID,
        preparer_id: str,
        access: AccessContext,
    ) -> CRMContact:
        """Assign a contact to a tax preparer. Admin only."""
        require_admin(access, "assign contacts")
        if not preparer_id or not preparer_id.strip():
            raise ValidationError.for_field("preparer_id", "preparer_id is required", "required")

        contact = self._load_contact(contact_id)

        with transaction(self.db):
            contact.assigned_preparer_id = preparer_id.strip()
            contact.assigned_at = utcnow()

        logger.info(f"Assigned CRM contact {contact.id} to preparer {contact.assigned_preparer_id}")

        self.dispatcher.notify(
            "contact_assigned",
            self.dispatcher.preparer_address(contact.assigned_preparer_id),
            {
                "contact_id": str(contact.id),
                "contact_name": contact.full_name,
                "preparer_id": contact.assigned_preparer_id,
                "stage": contact.stage.value,
            },
        )
        return contact

    # -------------------------------------------------------------------------
    # Stage
    # -------------------------------------------------------------------------

    def _build_stage_history(
        self,
        contact: CRMContact,
        from_stage: PipelineStage,
        update: StageUpdate,
        changed_by: str,
    ) -> CRMStageHistory:
        return CRMStageHistory(
            contact_id=contact.id,
            from_stage=from_stage,
            to_stage=update.to_stage,
            changed_by=changed_by,
            reason=update.reason,
        )

    def update_contact_stage(
        self,
        update: Union[StageUpdate, dict],
        access: AccessContext,
    ) -> CRMContact:
        """
        Move a contact to a new pipeline stage and record the transition.

        The contact row is locked for the duration; stage and history row
        commit together. ``from_stage``, when supplied, must equal the stored
        stage.

        Raises:
            ValidationError: stale from_stage or malformed input
        """
        update = coerce_input(StageUpdate, update)

        with transaction(self.db):
            contact = self._get_accessible_contact(update.contact_id, access, for_update=True)

            from_stage = contact.stage
            if update.from_stage is not None and update.from_stage != from_stage:
                raise ValidationError.for_field(
                    "from_stage",
                    f"Contact is in stage {from_stage.value}, not {update.from_stage.value}",
                    "stale_stage",
                )

            contact.stage = update.to_stage
            contact.stage_entered_at = utcnow()
            self.db.add(self._build_stage_history(contact, from_stage, update, access.user_id))

        logger.info(
            f"CRM contact {contact.id} stage {from_stage.value} -> {update.to_stage.value} "
            f"by {access.user_id}"
        )

        self.dispatcher.notify(
            "stage_changed",
            settings.crm_inbox_email,
            {
                "contact_id": str(contact.id),
                "contact_name": contact.full_name,
                "from_stage": from_stage.value,
                "to_stage": update.to_stage.value,
                "changed_by": access.user_id,
                "reason": update.reason,
            },
        )
        return contact

    def get_contact_stage_history(self, contact_id: UUID, access: AccessContext) -> List[CRMStageHistory]:
        contact = self._get_accessible_contact(contact_id, access)
        return (
            self.db.query(CRMStageHistory)
            .filter(CRMStageHistory.contact_id == contact.id)
            .order_by(CRMStageHistory.created_at.desc())
            .all()
        )

    # -------------------------------------------------------------------------
    # Interactions
    # -------------------------------------------------------------------------

    def log_interaction(
        self,
        data: Union[InteractionCreate, dict],
        access: Optional[AccessContext] = None,
    ) -> CRMInteraction:
        """
        Append an interaction and bump the contact's last_contacted_at.

        ``access`` is optional so automated processes can log without a
        caller identity; when given, the gate applies.
        """
        data = coerce_input(InteractionCreate, data)

        now = utcnow()
        occurred_at = _as_utc(data.occurred_at) if data.occurred_at else now
        if occurred_at > now + MAX_FUTURE_SKEW:
            raise ValidationError.for_field(
                "occurred_at", "occurred_at cannot be in the future", "future_timestamp"
            )

        if access is not None:
            contact = self._get_accessible_contact(data.contact_id, access)
        else:
            contact = self._load_contact(data.contact_id)

        interaction = CRMInteraction(
            contact_id=contact.id,
            type=data.type,
            direction=data.direction,
            subject=data.subject,
            body=data.body,
            duration_minutes=data.duration_minutes,
            attachments=data.attachments,
            user_id=data.user_id or (access.user_id if access is not None else None),
            occurred_at=occurred_at,
        )

        with transaction(self.db):
            self.db.add(interaction)
            contact.last_contacted_at = max(now, occurred_at)

        logger.info(f"Logged {interaction.type.value} interaction {interaction.id} for contact {contact.id}")
        return interaction

    def get_contact_interactions(
        self,
        contact_id: UUID,
        access: AccessContext,
        limit: Optional[int] = None,
    ) -> List[CRMInteraction]:
        if limit is None:
            limit = settings.interaction_default_limit
        if limit < 1 or limit > MAX_INTERACTION_LIMIT:
            raise ValidationError.for_field(
                "limit", f"limit must be between 1 and {MAX_INTERACTION_LIMIT}", "out_of_range"
            )

        contact = self._get_accessible_contact(contact_id, access)
        return (
            self.db.query(CRMInteraction)
            .filter(CRMInteraction.contact_id == contact.id)
            .order_by(CRMInteraction.occurred_at.desc(), CRMInteraction.created_at.desc())
            .limit(limit)
            .all()
        )

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def _contact_tags(self, contact_id: UUID) -> List[CRMTag]:
        return (
            self.db.query(CRMTag)
            .join(CRMContactTag, CRMContactTag.tag_id == CRMTag.id)
            .filter(CRMContactTag.contact_id == contact_id)
            .order_by(CRMTag.name.asc())
            .all()
        )

    def add_tag(
        self,
        contact_id: UUID,
        tag_name: str,
        access: AccessContext,
        color: Optional[str] = None,
    ) -> CRMTag:
        """Tag a contact, creating the tag on first use. Idempotent."""
        name = (tag_name or "").strip()
        if not name:
            raise ValidationError.for_field("name", "Tag name is required", "required")

        contact = self._get_accessible_contact(contact_id, access)

        with transaction(self.db):
            tag = self.db.query(CRMTag).filter(func.lower(CRMTag.name) == name.lower()).first()
            if tag is None:
                tag = CRMTag(name=name, color=color)
                self.db.add(tag)
                self.db.flush()

            linked = (
                self.db.query(CRMContactTag)
                .filter(CRMContactTag.contact_id == contact.id, CRMContactTag.tag_id == tag.id)
                .first()
            )
            if linked is None:
                self.db.add(CRMContactTag(contact_id=contact.id, tag_id=tag.id))

        logger.info(f"Tagged CRM contact {contact.id} with tag {tag.id}")
        return tag

    def remove_tag(self, contact_id: UUID, tag_id: UUID, access: AccessContext) -> None:
        contact = self._get_accessible_contact(contact_id, access)

        link = (
            self.db.query(CRMContactTag)
            .filter(CRMContactTag.contact_id == contact.id, CRMContactTag.tag_id == tag_id)
            .first()
        )
        if link is None:
            raise NotFoundError("Tag not found on contact")

        with transaction(self.db):
            self.db.delete(link)

        logger.info(f"Removed tag {tag_id} from CRM contact {contact.id}")

    def get_contact_tags(self, contact_id: UUID, access: AccessContext) -> List[CRMTag]:
        contact = self._get_accessible_contact(contact_id, access)
        return self._contact_tags(contact.id)
