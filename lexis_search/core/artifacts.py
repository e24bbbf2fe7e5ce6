from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from playwright.async_api import Page

logger = logging.getLogger("lexis.artifacts")


@dataclass(frozen=True)
class ArtifactRecord:
    session_id: str
    label: str
    path: str
    size: int
    sha256: str


class ArtifactManager:
    """Stores debug screenshots per session under ``root_dir/<session_id>/``."""

    def __init__(self, root_dir: str) -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        self._records: list[ArtifactRecord] = []

    def _session_dir(self, session_id: str) -> Path:
        safe = session_id.replace("/", "_") or "no-session"
        path = self._root / safe
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _sha256(self, path: Path) -> str:
        hasher = hashlib.sha256()
        with path.open("rb") as file_handle:
            for chunk in iter(lambda: file_handle.read(1024 * 1024), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    async def save_screenshot(self, page: Page, session_id: str, label: str) -> Optional[ArtifactRecord]:
        try:
            target = self._session_dir(session_id) / f"{label}.png"
            await page.screenshot(path=str(target), full_page=True)
        except Exception as e:
            logger.warning(f"[Artifacts] Screenshot {label} failed for {session_id}: {e}")
            return None
        if not target.exists():
            return None

        record = ArtifactRecord(
            session_id=session_id,
            label=label,
            path=str(target),
            size=target.stat().st_size,
            sha256=self._sha256(target),
        )
        self._records.append(record)
        logger.info(f"[Artifacts] Saved {target}")
        return record

    def list_session_records(self, session_id: str) -> list[ArtifactRecord]:
        return [record for record in self._records if record.session_id == session_id]
