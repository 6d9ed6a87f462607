"""Runtime image audit run before an image is promoted."""

import os
import tempfile
from typing import Dict, List, Optional

from botrelease.errors import PipelineError
from botrelease.errors_catalog import actionable_error
from botrelease.models import ImageAuditReport, SecretDelivery, StagePaths


class ImageAuditService:
    """Checks a packaged image against the runtime stage description.

    The checks mirror what the runtime stage promises: a single exec-form
    command pointing at the artifact, the artifact present at its fixed path,
    the credential variable declared but unbound (runtime_env) or shipped in
    the dotenv file (build_time_file), and no credential value anywhere in
    the image metadata.
    """

    # Shorter values match by accident inside PATH, labels and layer commands.
    MIN_SCAN_LENGTH = 8

    def __init__(self, docker_service, logger, console):
        self.docker = docker_service
        self.logger = logger
        self.console = console

    @staticmethod
    def parse_dotenv(content: str) -> Dict[str, str]:
        values: Dict[str, str] = {}
        for line in content.split("\n"):
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            key, sep, value = line.partition("=")
            if not sep:
                continue
            values[key.strip()] = value
        return values

    @staticmethod
    def _env_entries(config: Dict) -> List[str]:
        return list(config.get("Env") or [])

    def audit(
        self,
        image: str,
        paths: StagePaths,
        secret_delivery: SecretDelivery,
        credential_env: str,
        credential: Optional[str] = None,
    ) -> ImageAuditReport:
        self.console.print(f"[blue]Auditing runtime image {image}...[/blue]")
        metadata = self.docker.inspect_image(image)
        config = metadata.get("Config") or {}

        command = list(config.get("Cmd") or [])
        if command != [paths.runtime_artifact_path]:
            raise PipelineError(
                actionable_error(
                    "image_contract_violation",
                    image=image,
                    detail=f"command is {command}, expected ['{paths.runtime_artifact_path}']",
                )
            )

        working_dir = config.get("WorkingDir") or ""
        if working_dir != paths.runtime_workdir:
            raise PipelineError(
                actionable_error(
                    "image_contract_violation",
                    image=image,
                    detail=f"working directory is '{working_dir}', expected '{paths.runtime_workdir}'",
                )
            )

        if not self.docker.path_exists_in_image(image, paths.runtime_artifact_path):
            raise PipelineError(
                actionable_error("artifact_missing", path=paths.runtime_artifact_path)
            )

        declared: Dict[str, str] = {}
        for entry in self._env_entries(config):
            key, _, value = entry.partition("=")
            declared[key] = value

        has_dotenv = False
        if secret_delivery == SecretDelivery.RUNTIME_ENV:
            if credential_env not in declared:
                raise PipelineError(
                    actionable_error(
                        "image_contract_violation",
                        image=image,
                        detail=f"variable {credential_env} is not declared",
                    )
                )
            if declared[credential_env] != "":
                raise PipelineError(
                    actionable_error("embedded_secret", location="the image environment", image=image)
                )
        else:
            has_dotenv = self._verify_dotenv(image, paths, credential_env, credential)

        if credential and len(credential) >= self.MIN_SCAN_LENGTH:
            self._scan_for_credential(image, config, credential)
        elif credential:
            self.logger.warning(
                "Credential for %s is shorter than %d characters; skipping the leak scan.",
                credential_env,
                self.MIN_SCAN_LENGTH,
            )

        self.console.print("[green]Runtime image audit passed.[/green]")
        return ImageAuditReport(
            image=image,
            image_id=metadata.get("Id"),
            command=tuple(command),
            working_dir=working_dir,
            declared_env=tuple(sorted(declared.keys())),
            has_dotenv=has_dotenv,
        )

    def _verify_dotenv(
        self,
        image: str,
        paths: StagePaths,
        credential_env: str,
        credential: Optional[str],
    ) -> bool:
        with tempfile.TemporaryDirectory(prefix="botrelease-audit-") as probe_dir:
            local_path = self.docker.copy_from_image(image, paths.runtime_dotenv_path, probe_dir)
            if local_path is None or not os.path.isfile(local_path):
                raise PipelineError(
                    actionable_error("dotenv_missing", path=paths.runtime_dotenv_path, stage="runtime")
                )
            with open(local_path, "r", encoding="utf-8", newline="") as file_obj:
                values = self.parse_dotenv(file_obj.read())

        if credential is not None and values.get(credential_env) != credential:
            raise PipelineError(
                actionable_error(
                    "image_contract_violation",
                    image=image,
                    detail=f"dotenv value of {credential_env} does not match the supplied credential",
                )
            )
        return True

    def _scan_for_credential(self, image: str, config: Dict, credential: str):
        for entry in self._env_entries(config):
            if credential in entry:
                raise PipelineError(
                    actionable_error("embedded_secret", location="the image environment", image=image)
                )

        for key, value in (config.get("Labels") or {}).items():
            if credential in str(key) or credential in str(value):
                raise PipelineError(
                    actionable_error("embedded_secret", location="the image labels", image=image)
                )

        for created_by in self.docker.image_history(image):
            if credential in created_by:
                raise PipelineError(
                    actionable_error("embedded_secret", location="the layer history", image=image)
                )
