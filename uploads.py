"""
Image uploads written in two phases.

A file is first saved to a staging directory. It is moved into the public
upload directory only after the post that references it has been stored,
so a failed write never leaves an unreferenced image behind.
"""

from __future__ import annotations

import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename


class UploadError(Exception):
    """The request did not carry a usable image file."""


@dataclass
class StagedUpload:
    filename: str
    staged_path: Path
    url: str


class UploadStore:
    def __init__(
        self,
        upload_dir,
        staging_dir,
        url_prefix: str = "/images",
        allowed_extensions: Iterable[str] = ("png", "jpg", "jpeg", "gif", "webp"),
    ) -> None:
        self.upload_dir = Path(upload_dir)
        self.staging_dir = Path(staging_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.allowed_extensions = {ext.lower() for ext in allowed_extensions}

    def _generate_name(self, original: str) -> str:
        stem, ext = os.path.splitext(os.path.basename(original.replace("\\", "/")))
        ext = ext.lstrip(".").lower()
        if ext not in self.allowed_extensions:
            raise UploadError(f"Images of type .{ext} are not allowed" if ext else "Image file has no extension")
        return f"{int(time.time() * 1000)}-{secure_filename(stem) or 'image'}.{ext}"

    def stage(self, upload: Optional[FileStorage]) -> StagedUpload:
        if upload is None or not upload.filename:
            raise UploadError("An image file is required")
        filename = self._generate_name(upload.filename)
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        staged_path = self.staging_dir / filename
        upload.save(staged_path)
        return StagedUpload(filename, staged_path, f"{self.url_prefix}/{filename}")

    def commit(self, staged: StagedUpload) -> Path:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.upload_dir / staged.filename
        shutil.move(str(staged.staged_path), str(final_path))
        return final_path

    def discard(self, staged: StagedUpload) -> None:
        if staged.staged_path.exists():
            staged.staged_path.unlink()

    def remove(self, url: str) -> bool:
        """Delete a committed file given its public path. Returns False if nothing was removed."""
        if not url or not url.startswith(self.url_prefix + "/"):
            return False
        filename = os.path.basename(url)
        path = self.upload_dir / filename
        if not path.is_file():
            return False
        path.unlink()
        return True
