"""Run manifest generation service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class ManifestService:
    """Collects execution metadata and writes the run manifest JSON.

    The manifest only ever holds the *name* of the credential variable; any
    value passed to ``register_secret`` is replaced before the file is written.
    """

    REDACTED = "***"
    # Generated by the pipeline itself, never derived from user input.
    PRESERVED_KEYS = {"run_id", "started_at", "finished_at", "at"}

    def __init__(self, manifest_file: Optional[str], logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self._secrets: List[str] = []
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "state": None,
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "transitions": [],
            "steps": [],
            "artifacts": {},
            "error": None,
        }

    def register_secret(self, value: Optional[str]):
        if value and value not in self._secrets:
            self._secrets.append(value)

    def _redact(self, value: Any) -> Any:
        if isinstance(value, str):
            for secret in self._secrets:
                value = value.replace(secret, self.REDACTED)
            return value
        if isinstance(value, dict):
            return {
                key: item if key in self.PRESERVED_KEYS else self._redact(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._redact(item) for item in value]
        return value

    def render(self) -> str:
        return json.dumps(self._redact(self.manifest), indent=2, sort_keys=True) + "\n"

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.manifest["run_id"] = run_id
        self.manifest["status"] = "running"
        self.manifest["started_at"] = self._now()
        self.manifest["metadata"] = metadata
        self.write()

    def record_transition(self, entry: Dict[str, Any]):
        self.manifest["state"] = entry["state"]
        self.manifest["transitions"].append(dict(entry))
        self.write()

    def step_started(self, step_name: str, details: Optional[Dict[str, Any]] = None):
        self.manifest["steps"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "details": details or {},
                "error": None,
            }
        )
        self.write()

    def step_finished(
        self,
        step_name: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        for step in reversed(self.manifest["steps"]):
            if step["name"] != step_name or step["status"] != "running":
                continue
            step["status"] = status
            step["finished_at"] = self._now()
            step["error"] = error
            if details:
                step["details"].update(details)
            step["duration_seconds"] = self._seconds_between(step["started_at"], step["finished_at"])
            break
        self.write()

    def add_artifact(self, key: str, value: Any):
        self.manifest["artifacts"][key] = value
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.manifest["status"] = status
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            self.manifest["duration_seconds"] = self._seconds_between(
                self.manifest["started_at"], self.manifest["finished_at"]
            )
        self.manifest["error"] = error
        self.write()

    def write(self):
        if not self.manifest_file:
            return

        directory = os.path.dirname(self.manifest_file) or "."
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix="run-manifest-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                file_obj.write(self.render())
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write run manifest '%s': %s", self.manifest_file, exc)
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    @staticmethod
    def _seconds_between(started: str, finished: str) -> float:
        return (datetime.fromisoformat(finished) - datetime.fromisoformat(started)).total_seconds()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
