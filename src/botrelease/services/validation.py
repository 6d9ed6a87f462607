"""Input and URL validation helpers for BotRelease."""

import re
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

import requests

from botrelease.constants import CONTEXT_ARCHIVE_EXTENSION
from botrelease.errors import PipelineError
from botrelease.errors_catalog import actionable_error


class ValidationService:
    """Validates pipeline inputs before any docker call is made."""

    ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
    ARTIFACT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
    # registry[:port]/path/name[:tag][@digest], lower-case repository names only
    IMAGE_REFERENCE_PATTERN = re.compile(
        r"^(?:[a-zA-Z0-9.-]+(?::[0-9]+)?/)?"
        r"[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*"
        r"(?::[A-Za-z0-9_][A-Za-z0-9_.-]{0,127})?"
        r"(?:@sha256:[a-f0-9]{64})?$"
    )

    def __init__(self, allow_insecure_http: bool = False, requests_module=requests):
        self.allow_insecure_http = allow_insecure_http
        self.requests = requests_module

    def is_url(self, location: str) -> bool:
        scheme = urlparse(location).scheme.lower()
        return scheme in {"http", "https"}

    def get_location_extension(self, location: str) -> str:
        path = urlparse(location).path if self.is_url(location) else location
        return Path(path).suffix.lower()

    def ensure_archive_extension(self, location: str):
        if self.get_location_extension(location) != CONTEXT_ARCHIVE_EXTENSION:
            raise PipelineError(actionable_error("invalid_context_format"))

    def enforce_https_policy(self, location: str, label: str, logger, console):
        if not self.is_url(location):
            return

        scheme = urlparse(location).scheme.lower()
        if scheme == "http" and not self.allow_insecure_http:
            raise PipelineError(actionable_error("insecure_http", label=label))

        if scheme == "http":
            logger.warning("Insecure HTTP enabled for %s: %s", label, location)
            console.print(
                f"[yellow]Warning:[/yellow] Using insecure HTTP for {label}. "
                "Prefer HTTPS whenever possible."
            )

    def probe_url(self, location: str, label: str, logger, console):
        self.enforce_https_policy(location, label, logger, console)

        last_error: Optional[Exception] = None
        for method in ("HEAD", "GET"):
            try:
                response = self.requests.request(
                    method,
                    location,
                    allow_redirects=True,
                    timeout=30,
                    stream=(method == "GET"),
                )
                response.raise_for_status()
                response.close()
                return
            except self.requests.RequestException as exc:
                last_error = exc

        raise PipelineError(f"{label} is not accessible: {last_error}")

    def validate_build_context(self, location: str, logger, console):
        if self.is_url(location):
            self.ensure_archive_extension(location)
            self.probe_url(location, "build context URL", logger, console)
            return

        path = Path(location)
        if not path.exists():
            raise PipelineError(actionable_error("build_context_not_found", path=location))

        if path.is_dir():
            if not any(path.iterdir()):
                raise PipelineError(f"Build context directory is empty: {location}")
            return

        self.ensure_archive_extension(location)

    def validate_env_name(self, name: str, label: str = "credential variable"):
        if not name or not self.ENV_NAME_PATTERN.match(name):
            raise PipelineError(
                f"Invalid {label} name '{name}'. Use letters, digits and underscores, "
                "not starting with a digit."
            )

    def validate_artifact_name(self, name: str):
        if not name or not self.ARTIFACT_NAME_PATTERN.match(name):
            raise PipelineError(
                f"Invalid artifact name '{name}'. Use a plain file name without slashes."
            )

    def validate_absolute_path(self, value: str, label: str):
        path = PurePosixPath(value)
        if not path.is_absolute() or ".." in path.parts:
            raise PipelineError(f"{label} must be an absolute POSIX path: {value}")
        if any(char.isspace() for char in value):
            raise PipelineError(f"{label} must not contain whitespace: {value}")

    def validate_relative_path(self, value: str, label: str):
        path = PurePosixPath(value)
        if not value or path.is_absolute() or ".." in path.parts:
            raise PipelineError(
                f"{label} must be a path relative to the build working directory: {value}"
            )
        if any(char.isspace() for char in value):
            raise PipelineError(f"{label} must not contain whitespace: {value}")

    def validate_image_reference(self, reference: str, label: str, hint: Optional[str] = None):
        if not reference or not self.IMAGE_REFERENCE_PATTERN.match(reference):
            message = f"Invalid {label} image reference: '{reference}'"
            raise PipelineError(f"{message}. {hint}" if hint else message)

    def validate_build_command(self, command: str):
        if not command or not command.strip():
            raise PipelineError("Build command must not be empty.")
        if "\n" in command or "\r" in command:
            raise PipelineError("Build command must be a single line.")

    def validate_credential(self, value: str, name: str):
        # The value is never echoed back in the message.
        if not value:
            raise PipelineError(f"Credential for {name} is empty.")
        if any(char in value for char in ("\n", "\r", "\x00")):
            raise PipelineError(
                f"Credential for {name} must be a single line without NUL bytes "
                "to fit in a dotenv file."
            )

    def normalize_sha256(self, value: Optional[str], option_name: str) -> Optional[str]:
        if value is None:
            return None

        clean_value = value.strip().lower()
        if len(clean_value) != 64 or any(c not in "0123456789abcdef" for c in clean_value):
            raise PipelineError(
                f"{option_name} must be a valid SHA-256 hash (64 hexadecimal characters)."
            )
        return clean_value
