from __future__ import annotations

import json
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Tuple
from uuid import uuid4

from fastapi import UploadFile

from campaign_layout.config import get_settings
from campaign_layout.models.campaign import AssetRef, CampaignSession
from campaign_layout.services.errors import InvalidUploadError, SessionStorageError, UploadTooLargeError


logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif", "image/svg+xml"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".svg"}
TABLE_CONTENT_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel"}
# Browsers report fonts inconsistently, so the extension decides.
FONT_EXTENSIONS = {".ttf", ".otf", ".woff", ".woff2"}

PRODUCTS = "products"
ICONS = "icons"
FRAME = "frame"
FONTS = "fonts"
CATEGORIES = (PRODUCTS, ICONS, FRAME, FONTS)

SESSION_FILE = "session.json"
TABLE_FILE = "products.csv"

READ_CHUNK_BYTES = 1024 * 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(name: str | None, fallback: str = "upload") -> str:
    """Strip directories and unusual characters from a client-supplied file name."""
    base = os.path.basename((name or "").replace("\\", "/"))
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or fallback


def _extension(upload: UploadFile) -> str:
    return os.path.splitext(upload.filename or "")[1].lower()


def _is_image(upload: UploadFile) -> bool:
    return (upload.content_type or "").lower() in IMAGE_CONTENT_TYPES or _extension(upload) in IMAGE_EXTENSIONS


def _is_table(upload: UploadFile) -> bool:
    return (upload.content_type or "").lower() in TABLE_CONTENT_TYPES or _extension(upload) == ".csv"


def _is_font(upload: UploadFile) -> bool:
    return _extension(upload) in FONT_EXTENSIONS


def _ref_to_dict(ref: AssetRef) -> Dict[str, str | None]:
    payload = {"file_name": ref.file_name, "url": ref.url}
    if ref.sku:
        payload["sku"] = ref.sku
    return payload


@dataclass(slots=True)
class SessionUploads:
    """Files received for one upload request, grouped by role."""

    product_images: List[UploadFile]
    icons: List[UploadFile]
    frame: UploadFile | None = None
    product_table: UploadFile | None = None
    fonts: List[UploadFile] = field(default_factory=list)


class SessionStore:
    """
    Filesystem-backed storage for campaign sessions.

    Files live under `<base_dir>/<session_id>/{products,icons,frame,fonts}/`
    with the product table at `<base_dir>/<session_id>/products.csv` and
    session metadata in `session.json`. Analysis results are never stored;
    they are recomputed from these files on every request.
    """

    def __init__(self, base_dir: Path, max_upload_bytes: int) -> None:
        self._base_dir = base_dir
        self._max_upload_bytes = max_upload_bytes
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _session_dir(self, session_id: str) -> Path:
        # Session ids are server-generated UUIDs; anything else cannot exist.
        if not re.fullmatch(r"[0-9a-fA-F-]{36}", session_id):
            raise KeyError(session_id)
        return self._base_dir / session_id

    def save_metadata(self, session: CampaignSession) -> None:
        """Persist the session's metadata file."""
        payload = {
            "id": session.id,
            "campaign_name": session.campaign_name,
            "platform": session.platform,
            "created_at": session.created_at.isoformat(),
            "products": [_ref_to_dict(ref) for ref in session.products],
            "icons": [_ref_to_dict(ref) for ref in session.icons],
            "fonts": [_ref_to_dict(ref) for ref in session.fonts],
            "frame": _ref_to_dict(session.frame) if session.frame else None,
            "product_table_path": session.product_table_path,
        }
        try:
            (Path(session.base_dir) / SESSION_FILE).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise SessionStorageError(f"Failed to write metadata for session {session.id}.") from exc

    def create_session(self) -> CampaignSession:
        """Create an empty session directory tree and its metadata file."""
        session_id = str(uuid4())
        session_dir = self._base_dir / session_id
        try:
            for category in CATEGORIES:
                (session_dir / category).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SessionStorageError(f"Failed to create session {session_id}.") from exc

        session = CampaignSession(id=session_id, base_dir=str(session_dir))
        self.save_metadata(session)
        logger.info("Created session %s", session_id)
        return session

    def get_session(self, session_id: str) -> CampaignSession | None:
        """Load a session from disk, or None if it does not exist."""
        try:
            session_dir = self._session_dir(session_id)
        except KeyError:
            return None
        metadata_path = session_dir / SESSION_FILE
        if not metadata_path.exists():
            return None

        try:
            payload = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SessionStorageError(f"Session {session_id} metadata is unreadable.") from exc

        frame = payload.get("frame")
        return CampaignSession(
            id=payload["id"],
            base_dir=str(session_dir),
            campaign_name=payload.get("campaign_name", "Untitled Campaign"),
            platform=payload.get("platform", "general"),
            products=[AssetRef(**item) for item in payload.get("products", [])],
            icons=[AssetRef(**item) for item in payload.get("icons", [])],
            fonts=[AssetRef(**item) for item in payload.get("fonts", [])],
            frame=AssetRef(**frame) if frame else None,
            product_table_path=payload.get("product_table_path"),
            created_at=datetime.fromisoformat(payload["created_at"]),
        )

    async def _read_limited(self, upload: UploadFile) -> bytes:
        """Read an upload in chunks, stopping as soon as it exceeds the size limit."""
        chunks: List[bytes] = []
        total = 0
        while True:
            chunk = await upload.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            if total > self._max_upload_bytes:
                raise UploadTooLargeError(
                    f"{upload.filename or 'upload'} exceeds the {self._max_upload_bytes} byte limit."
                )
            chunks.append(chunk)
        return b"".join(chunks)

    def _validate(self, uploads: SessionUploads) -> None:
        images = [*uploads.product_images, *uploads.icons]
        if uploads.frame is not None:
            images.append(uploads.frame)
        for upload in images:
            if not _is_image(upload):
                raise InvalidUploadError(
                    f"Invalid file type: {upload.content_type or 'unknown'}. Only images are allowed."
                )
        for upload in uploads.fonts:
            if not _is_font(upload):
                raise InvalidUploadError(
                    f"Invalid font file: {upload.filename or 'unknown'}. "
                    f"Allowed: {', '.join(sorted(FONT_EXTENSIONS))}."
                )
        if uploads.product_table is not None and not _is_table(uploads.product_table):
            raise InvalidUploadError("Product table must be a CSV file.")

    async def save_uploads(
        self,
        session: CampaignSession,
        campaign_name: str,
        platform: str | None,
        uploads: SessionUploads,
    ) -> CampaignSession:
        """
        Persist uploaded files for a session and update its metadata.

        Product images, icons and fonts are appended; a new frame or product
        table replaces the previous one. Every file is type-checked and read
        within the size limit before anything is written, and files written
        by a request that then fails are removed again, so a rejected request
        leaves the session untouched.
        """
        self._validate(uploads)

        staged: List[Tuple[str, UploadFile, bytes]] = []
        for category, files in (
            (PRODUCTS, uploads.product_images),
            (ICONS, uploads.icons),
            (FRAME, [uploads.frame] if uploads.frame is not None else []),
            (FONTS, uploads.fonts),
        ):
            for upload in files:
                staged.append((category, upload, await self._read_limited(upload)))
        table_bytes = None
        if uploads.product_table is not None:
            table_bytes = await self._read_limited(uploads.product_table)

        written: List[Path] = []
        saved: Dict[str, List[AssetRef]] = {category: [] for category in CATEGORIES}
        table_path = Path(session.base_dir) / TABLE_FILE
        try:
            for category, upload, contents in staged:
                original_name = safe_file_name(upload.filename, fallback=f"{category}.bin")
                extension = os.path.splitext(original_name)[1].lower() or ".bin"
                stored_name = f"{uuid4()}{extension}"
                target = Path(session.base_dir) / category / stored_name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(contents)
                written.append(target)
                saved[category].append(
                    AssetRef(file_name=original_name, url=f"/uploads/{session.id}/{category}/{stored_name}")
                )
            if table_bytes is not None:
                table_path.write_bytes(table_bytes)
        except OSError as exc:
            for path in written:
                path.unlink(missing_ok=True)
            logger.error("Failed to persist uploads for session %s: %s", session.id, exc)
            raise SessionStorageError("Failed to persist uploaded files to disk.") from exc

        session.campaign_name = campaign_name
        if platform:
            session.platform = platform
        session.products.extend(saved[PRODUCTS])
        session.icons.extend(saved[ICONS])
        session.fonts.extend(saved[FONTS])
        if saved[FRAME]:
            session.frame = saved[FRAME][-1]
        if table_bytes is not None:
            session.product_table_path = str(table_path)

        self.save_metadata(session)
        logger.info(
            "Session %s now has %d product(s), %d icon(s), %d font(s), frame=%s, table=%s",
            session.id,
            len(session.products),
            len(session.icons),
            len(session.fonts),
            session.frame is not None,
            session.product_table_path is not None,
        )
        return session

    def asset_path(self, session: CampaignSession, category: str, ref: AssetRef) -> Path:
        return Path(session.base_dir) / category / Path(ref.url).name

    def read_asset(self, session: CampaignSession, category: str, ref: AssetRef) -> bytes:
        try:
            return self.asset_path(session, category, ref).read_bytes()
        except OSError as exc:
            raise SessionStorageError(f"Failed to read {ref.file_name} from disk.") from exc

    def read_product_table(self, session: CampaignSession) -> bytes | None:
        if not session.product_table_path:
            return None
        try:
            return Path(session.product_table_path).read_bytes()
        except OSError as exc:
            raise SessionStorageError("Failed to read product table from disk.") from exc

    def file_counts(self, session: CampaignSession) -> Dict[str, int | bool]:
        return {
            "products": len(session.products),
            "icons": len(session.icons),
            "fonts": len(session.fonts),
            "has_frame": session.frame is not None,
            "has_product_table": session.product_table_path is not None,
        }

    def delete_session(self, session_id: str) -> bool:
        """Remove a session and all its files. Returns False if it did not exist."""
        try:
            session_dir = self._session_dir(session_id)
        except KeyError:
            return False
        if not session_dir.exists():
            return False
        try:
            shutil.rmtree(session_dir)
        except OSError as exc:
            logger.error("Failed to delete session %s: %s", session_id, exc)
            raise SessionStorageError(f"Failed to delete session {session_id}.") from exc
        logger.info("Deleted session %s", session_id)
        return True


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    """
    Return the process-wide session store.

    Abstracted behind a function so routes can receive it as a dependency and
    tests can swap in a store rooted in a temporary directory.
    """
    settings = get_settings()
    return SessionStore(base_dir=settings.storage_dir, max_upload_bytes=settings.max_upload_bytes)
