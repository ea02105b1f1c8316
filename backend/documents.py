"""Document blob storage backed by MongoDB GridFS."""
import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket

logger = logging.getLogger(__name__)

FILES_ROUTE = "/api/files"


@dataclass
class StoredDocument:
    filename: str
    content: bytes
    content_type: str
    owner_user_id: Optional[str]


class DocumentStorage:
    """Accepts raw bytes and returns a URL the file can be fetched back from."""

    def __init__(self, db: AsyncIOMotorDatabase, bucket_name: str):
        self.bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)

    async def upload(self, owner_user_id: str, original_filename: Optional[str], content: bytes, content_type: str) -> str:
        ext = Path(original_filename).suffix if original_filename else ""
        filename = f"{owner_user_id}_{uuid.uuid4().hex}{ext}"
        file_id = await self.bucket.upload_from_stream(
            filename,
            io.BytesIO(content),
            metadata={
                "user_id": owner_user_id,
                "content_type": content_type,
                "original_filename": original_filename,
                "uploaded_at": datetime.now(timezone.utc).isoformat()
            }
        )
        logger.info(f"Stored document {filename} ({len(content)} bytes) as {file_id}")
        return f"{FILES_ROUTE}/{filename}"

    async def open(self, filename: str) -> Optional[StoredDocument]:
        try:
            grid_out = await self.bucket.open_download_stream_by_name(filename)
        except NoFile:
            return None
        content = await grid_out.read()
        metadata = grid_out.metadata or {}
        return StoredDocument(
            filename=filename,
            content=content,
            content_type=metadata.get("content_type", "application/octet-stream"),
            owner_user_id=metadata.get("user_id"),
        )
