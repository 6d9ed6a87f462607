"""Archive extraction helpers for BotRelease."""

import os
import shutil
import zipfile
from pathlib import Path
from typing import Optional

from botrelease.errors import PipelineError


class ArchiveService:
    """Extracts source archives without letting entries escape the destination."""

    def is_within_dir(self, base_dir: Path, candidate: Path) -> bool:
        try:
            return os.path.commonpath([str(base_dir), str(candidate)]) == str(base_dir)
        except ValueError:
            return False

    def _check_members(self, zip_ref: zipfile.ZipFile, base: Path):
        for member in zip_ref.infolist():
            target_path = (base / member.filename.replace("\\", "/")).resolve()
            if not self.is_within_dir(base, target_path):
                raise PipelineError(
                    f"Unsafe ZIP entry detected: `{member.filename}`. "
                    "Archive extraction aborted to prevent path traversal."
                )

            file_type = (member.external_attr >> 16) & 0o170000
            if file_type == 0o120000:
                raise PipelineError(
                    f"Unsafe ZIP entry detected: `{member.filename}` is a symbolic link."
                )

    def safe_extract_zip(self, zip_path: str, destination_dir: str):
        base = Path(destination_dir).resolve()

        try:
            with zipfile.ZipFile(zip_path, "r") as zip_ref:
                # Validate every entry before writing anything.
                self._check_members(zip_ref, base)

                for member in zip_ref.infolist():
                    normalized_name = member.filename.replace("\\", "/")
                    target_path = (base / normalized_name).resolve()

                    if member.is_dir() or normalized_name.endswith("/"):
                        target_path.mkdir(parents=True, exist_ok=True)
                        continue

                    target_path.parent.mkdir(parents=True, exist_ok=True)
                    with zip_ref.open(member, "r") as src, open(target_path, "wb") as dst:
                        shutil.copyfileobj(src, dst)

                    # Keep executable bits for build scripts shipped in the archive.
                    mode = (member.external_attr >> 16) & 0o777
                    if mode & 0o111:
                        os.chmod(target_path, mode)
        except zipfile.BadZipFile as exc:
            raise PipelineError(f"Invalid ZIP archive: {zip_path}") from exc

    def source_root(self, extracted_dir: str, marker: Optional[str] = None) -> str:
        """Return the directory holding the sources.

        Archives produced by code hosts wrap everything in one top-level
        directory. That directory is only taken as the build context when it
        holds ``marker`` (the build manifest) and the archive root does not.
        """
        if not marker or os.path.exists(os.path.join(extracted_dir, marker)):
            return extracted_dir

        items = [item for item in os.listdir(extracted_dir) if not item.startswith(".")]
        if len(items) == 1:
            candidate = os.path.join(extracted_dir, items[0])
            if os.path.isfile(os.path.join(candidate, marker)):
                return candidate
        return extracted_dir
