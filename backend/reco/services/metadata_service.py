from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from reco.core.logging import get_logger
from reco.models.app_metadata import AppMetadata

logger = get_logger(__name__)

SEEDED_KEY = "is_seeded"
LAST_UPLOAD_KEY = "last_upload_at"
DEMO_SESSION_KEY = "demo_session_id"


class MetadataService:
    """Keyed application records (seed flag, last upload time, demo session id)."""

    async def get_value(self, db: AsyncSession, key: str, default: Any = None) -> Any:
        result = await db.execute(select(AppMetadata.value).where(AppMetadata.key == key))
        value = result.scalar_one_or_none()
        return default if value is None else value

    async def set_value(self, db: AsyncSession, key: str, value: Any, *, commit: bool = True) -> None:
        stmt = insert(AppMetadata).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[AppMetadata.key],
            set_={"value": stmt.excluded.value, "updated_at": func.now()},
        )
        await db.execute(stmt)
        if commit:
            await db.commit()

    async def mark_seeded(self, db: AsyncSession, *, commit: bool = True) -> None:
        await self.set_value(db, SEEDED_KEY, True, commit=False)
        await self.set_value(
            db, LAST_UPLOAD_KEY, datetime.now(timezone.utc).isoformat(), commit=False
        )
        if commit:
            await db.commit()

    async def is_seeded(self, db: AsyncSession) -> bool:
        return bool(await self.get_value(db, SEEDED_KEY, False))

    async def get_or_create_demo_session(self, db: AsyncSession) -> str:
        """Stable session id shared by demo traffic; created once on first use."""
        candidate = str(uuid.uuid4())
        stmt = (
            insert(AppMetadata)
            .values(key=DEMO_SESSION_KEY, value=candidate)
            .on_conflict_do_nothing(index_elements=[AppMetadata.key])
        )
        await db.execute(stmt)
        await db.commit()
        stored: Optional[str] = await self.get_value(db, DEMO_SESSION_KEY)
        if stored == candidate:
            logger.info("Created demo session", extra={"event": "demo_session_created"})
        return str(stored or candidate)


metadata_service = MetadataService()
