"""Incident attachments: policy checks around an external blob store.

Blob I/O is synchronous and sits outside the database transaction. A file
written before a failed commit is left behind as an orphan; a storage
failure never leaves a metadata row behind.
"""

import logging
import os
from pathlib import Path
from typing import Protocol, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import NotFoundError, TransientStorageError, ValidationError
from ..core.permissions import (
    Permission,
    Principal,
    can_delete_attachment,
    require,
    require_permission,
)
from ..models import Attachment, Incident

logger = logging.getLogger(__name__)


class AttachmentStorage(Protocol):
    def save(self, key: str, data: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


class LocalFileStorage:
    """Stores blobs as files under a base directory."""

    def __init__(self, base_dir: str | os.PathLike | None = None):
        self.base_dir = Path(base_dir or get_settings().attachment_dir)

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise ValidationError("Invalid storage key")
        return path

    def save(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class AttachmentService:
    def __init__(
        self,
        session: AsyncSession,
        storage: AttachmentStorage | None = None,
    ):
        self._session = session
        self._storage = storage or LocalFileStorage()
        settings = get_settings()
        self.max_bytes = settings.attachment_max_bytes
        self.allowed_extensions = settings.attachment_allowed_extensions

    def validate_file(self, file_name: str, size: int) -> str:
        """Check size cap and extension allow-list. Returns the lowercased extension."""
        file_name = (file_name or "").strip()
        if not file_name:
            raise ValidationError("file name is required", field="file_name")
        if size <= 0:
            raise ValidationError("file is empty", field="file")
        if size > self.max_bytes:
            raise ValidationError(
                f"file exceeds the {self.max_bytes // (1024 * 1024)}MB limit",
                field="file",
                details={"size": size, "max_bytes": self.max_bytes},
            )
        extension = Path(file_name).suffix.lower()
        if extension not in self.allowed_extensions:
            raise ValidationError(
                f"file type '{extension or file_name}' is not allowed",
                field="file_name",
                details={"allowed": sorted(self.allowed_extensions)},
            )
        return extension

    async def upload(
        self,
        incident_id: UUID,
        file_name: str,
        data: bytes,
        mime_type: str,
        actor: Principal,
    ) -> Attachment:
        require_permission(actor, Permission.EDIT_INCIDENTS)
        incident = await self._session.get(Incident, incident_id)
        if not incident or incident.is_deleted:
            raise NotFoundError(f"Incident {incident_id} not found")
        extension = self.validate_file(file_name, len(data))

        storage_key = f"incidents/{incident_id}/{uuid4()}{extension}"
        try:
            self._storage.save(storage_key, data)
        except OSError as e:
            logger.error(f"Attachment storage write failed for {storage_key}: {e}")
            raise TransientStorageError("Attachment storage is unavailable") from e

        attachment = Attachment(
            incident_id=incident_id,
            uploader_id=actor.id,
            file_name=Path(file_name).name,
            file_size=len(data),
            mime_type=mime_type or "application/octet-stream",
            storage_key=storage_key,
        )
        self._session.add(attachment)
        await self._session.flush()
        logger.info(f"Attachment {attachment.id} ({len(data)} bytes) added to incident {incident_id}")
        return attachment

    async def list_for_incident(self, incident_id: UUID, actor: Principal) -> Sequence[Attachment]:
        require_permission(actor, Permission.VIEW_INCIDENTS)
        result = await self._session.execute(
            select(Attachment)
            .where(Attachment.incident_id == incident_id)
            .order_by(Attachment.created_at.asc())
        )
        return result.scalars().all()

    async def delete(self, attachment_id: UUID, actor: Principal) -> None:
        attachment = await self._session.get(Attachment, attachment_id)
        if not attachment:
            raise NotFoundError(f"Attachment {attachment_id} not found")
        require(can_delete_attachment(actor, attachment), actor, "delete this attachment")

        try:
            self._storage.delete(attachment.storage_key)
        except OSError as e:
            logger.error(f"Attachment storage delete failed for {attachment.storage_key}: {e}")
            raise TransientStorageError("Attachment storage is unavailable") from e

        await self._session.delete(attachment)
        await self._session.flush()
        logger.info(f"Attachment {attachment_id} deleted by {actor.id}")
