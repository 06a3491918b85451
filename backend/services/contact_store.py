"""
Contacts table access for the sync service, the dual-write updater and the
store read routes.

Records passed in and out are plain dicts keyed by column name so the merge
logic never touches ORM state.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from models.contact import Contact
from models.database import get_session

logger = logging.getLogger(__name__)

UNIQUE_CONSTRAINT = "uq_contacts_hubspot_contact_user"

# Never rewritten by an upsert
_PRESERVED_ON_CONFLICT: frozenset[str] = frozenset({"id", "created_at"})


def _as_uuid(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return UUID(value)
        except ValueError:
            return value
    return value


def _prepare(record: dict[str, Any]) -> dict[str, Any]:
    """Keep only real columns and coerce uuid strings."""
    columns = Contact.__table__.columns.keys()
    prepared = {key: value for key, value in record.items() if key in columns}
    for key in ("id", "user_id"):
        if key in prepared:
            prepared[key] = _as_uuid(prepared[key])
    return prepared


class ContactStore:
    """Postgres-backed contact mirror."""

    async def fetch_existing(
        self, user_id: str, hubspot_ids: Sequence[str]
    ) -> dict[str, dict[str, Any]]:
        """Existing rows for the given HubSpot ids, keyed by hubspot_contact_id."""
        if not hubspot_ids:
            return {}
        async with get_session() as session:
            result = await session.execute(
                select(Contact).where(
                    Contact.user_id == _as_uuid(user_id),
                    Contact.hubspot_contact_id.in_(list(hubspot_ids)),
                )
            )
            return {row.hubspot_contact_id: row.to_record() for row in result.scalars().all()}

    async def latest_modified(self, user_id: str) -> Optional[datetime]:
        """Newest lastmodifieddate stored for the user."""
        async with get_session() as session:
            result = await session.execute(
                select(func.max(Contact.lastmodifieddate)).where(
                    Contact.user_id == _as_uuid(user_id)
                )
            )
            return result.scalar_one_or_none()

    async def upsert_batch(self, records: list[dict[str, Any]]) -> int:
        """Insert or update on (hubspot_contact_id, user_id). Returns rows written."""
        if not records:
            return 0
        rows = [_prepare(r) for r in records]
        stmt = pg_insert(Contact).values(rows)
        update_columns = {
            name: stmt.excluded[name]
            for name in rows[0].keys()
            if name not in _PRESERVED_ON_CONFLICT
        }
        update_columns["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(constraint=UNIQUE_CONSTRAINT, set_=update_columns)
        async with get_session() as session:
            await session.execute(stmt)
            await session.commit()
        return len(rows)

    async def insert_batch(self, records: list[dict[str, Any]]) -> int:
        """Insert new rows only; rows that already exist are left untouched."""
        if not records:
            return 0
        rows = [_prepare(r) for r in records]
        stmt = pg_insert(Contact).values(rows).on_conflict_do_nothing(
            constraint=UNIQUE_CONSTRAINT
        )
        async with get_session() as session:
            await session.execute(stmt)
            await session.commit()
        return len(rows)

    async def upsert_by_id(self, record: dict[str, Any]) -> dict[str, Any]:
        """Write one row keyed by its primary key; returns the stored row in API form."""
        row = _prepare(record)
        stmt = pg_insert(Contact).values(row)
        update_columns = {
            name: stmt.excluded[name] for name in row if name not in _PRESERVED_ON_CONFLICT
        }
        update_columns["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(
            index_elements=[Contact.id], set_=update_columns
        ).returning(Contact)
        async with get_session() as session:
            result = await session.execute(stmt)
            contact = result.scalar_one()
            await session.commit()
            return contact.to_dict()

    async def get_by_id(self, contact_id: UUID) -> Optional[dict[str, Any]]:
        async with get_session() as session:
            contact = await session.get(Contact, contact_id)
            return contact.to_record() if contact else None

    async def get_by_hubspot_id(self, hubspot_id: str) -> Optional[dict[str, Any]]:
        """First row whose hs_object_id or hubspot_contact_id matches."""
        async with get_session() as session:
            result = await session.execute(
                select(Contact)
                .where(
                    or_(
                        Contact.hs_object_id == hubspot_id,
                        Contact.hubspot_contact_id == hubspot_id,
                    )
                )
                .order_by(Contact.created_at)
                .limit(1)
            )
            contact = result.scalar_one_or_none()
            return contact.to_record() if contact else None

    async def list_contacts(
        self,
        user_id: Optional[str] = None,
        search: Optional[str] = None,
        lifecyclestage: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Contact], int]:
        """Page of stored contacts plus the total matching count."""
        conditions = []
        if user_id:
            conditions.append(Contact.user_id == _as_uuid(user_id))
        if lifecyclestage:
            conditions.append(Contact.lifecyclestage == lifecyclestage)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    Contact.email.ilike(pattern),
                    Contact.firstname.ilike(pattern),
                    Contact.lastname.ilike(pattern),
                    Contact.company.ilike(pattern),
                )
            )

        async with get_session() as session:
            total = await session.scalar(
                select(func.count()).select_from(Contact).where(*conditions)
            )
            result = await session.execute(
                select(Contact)
                .where(*conditions)
                .order_by(Contact.lastmodifieddate.desc().nulls_last())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all()), int(total or 0)
