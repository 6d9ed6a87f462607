"""Build context download with progress reporting and checksum validation."""

import hashlib
import os
from typing import Optional

from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from botrelease.errors import PipelineError


class DownloadService:
    """Fetches remote source archives."""

    CHUNK_SIZE = 8192

    def __init__(self, validation_service, logger, console, requests_module, timeout: float = 60.0):
        self.validation_service = validation_service
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout

    def download_file(
        self,
        url: str,
        dest_path: str,
        description: str = "Downloading...",
        expected_sha256: Optional[str] = None,
    ):
        self.logger.info("Downloading %s to %s", url, dest_path)
        self.validation_service.enforce_https_policy(url, description, self.logger, self.console)

        hasher = hashlib.sha256()
        os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
        partial_path = f"{dest_path}.part"

        try:
            with self.requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    DownloadColumn(),
                    TimeElapsedColumn(),
                    console=self.console,
                ) as progress:
                    task = progress.add_task(f"[cyan]{description}", total=total_size or None)
                    with open(partial_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            hasher.update(chunk)
                            progress.update(task, advance=len(chunk))
        except self.requests.RequestException as exc:
            self._discard(partial_path)
            raise PipelineError(f"Download failed for {description}: {exc}") from exc

        digest = hasher.hexdigest()
        self.logger.debug("Downloaded %s (sha256 %s)", url, digest)

        if expected_sha256 and digest != expected_sha256:
            self._discard(partial_path)
            raise PipelineError(
                f"Checksum mismatch for {description}. Expected {expected_sha256}, "
                f"but got {digest}."
            )

        # Only a verified archive ever appears under its final name.
        os.replace(partial_path, dest_path)
        return digest

    def _discard(self, path: str):
        if not os.path.exists(path):
            return
        try:
            os.remove(path)
        except OSError as exc:
            self.logger.warning("Could not remove %s: %s", path, exc)
