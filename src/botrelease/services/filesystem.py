"""Filesystem helpers for BotRelease."""

import logging
import os
import shutil
import sys
import tempfile
from typing import Optional

from rich.console import Console


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def make_work_dir(self, run_id: str) -> str:
        return tempfile.mkdtemp(prefix=f"botrelease-{run_id}-")

    def write_text(self, path: str, content: str, mode: Optional[int] = None):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as file_obj:
            file_obj.write(content)
        if mode is not None:
            self.set_permissions(path, mode)

    def read_secret_file(self, path: str) -> str:
        """Read a credential file, dropping a single trailing newline."""
        with open(path, "r", encoding="utf-8") as file_obj:
            value = file_obj.read()
        if value.endswith("\r\n"):
            return value[:-2]
        if value.endswith("\n"):
            return value[:-1]
        return value

    def cleanup_dir(self, path: str):
        if path and os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except OSError as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
