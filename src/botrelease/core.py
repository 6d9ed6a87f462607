import logging
import os
import re
import uuid
from typing import Any, Dict, List, Mapping, Optional

import requests
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.syntax import Syntax
from rich.table import Table

from .constants import (
    BUILDER_STAGE_NAME,
    DEFAULT_ARTIFACT_PATH_TEMPLATE,
    DEFAULT_BUILD_COMMAND,
    DEFAULT_BUILD_WORKDIR,
    DEFAULT_BUILDER_IMAGE,
    DEFAULT_CONTEXT_MARKER,
    DEFAULT_CREDENTIAL_ENV,
    DEFAULT_RUNTIME_IMAGE,
    DEFAULT_RUNTIME_WORKDIR,
    DOTENV_NAME,
    FILE_MODE,
)
from .errors import PipelineError
from .errors_catalog import actionable_error
from .models import BuildContext, PipelineState, RunContext, SecretDelivery, StagePaths
from .services.archive import ArchiveService
from .services.command_runner import CommandRunner
from .services.context import BuildContextService
from .services.docker_runtime import DockerRuntimeService
from .services.dockerfile import DockerfileService
from .services.download import DownloadService
from .services.filesystem import FileSystemService
from .services.image_audit import ImageAuditService
from .services.manifest import ManifestService
from .services.state import PipelineStateMachine
from .services.validation import ValidationService

console = Console()
logger = logging.getLogger("botrelease")


class ReleasePipeline:
    """Builds the bot binary in a toolchain stage and ships it in a minimal image.

    ``run()`` drives the state machine BUILD_PENDING -> BUILDING ->
    BUILD_SUCCEEDED -> PACKAGING -> PACKAGED. The runtime image is built under
    a run-scoped staging tag and only tagged as ``image_tag`` once its audit
    passes, so a failed or interrupted run never leaves a usable image behind.
    """

    SECRET_DELIVERIES = [delivery.value for delivery in SecretDelivery]

    def __init__(
        self,
        context: str,
        artifact_name: str,
        image_tag: Optional[str] = None,
        secret_delivery: str = SecretDelivery.RUNTIME_ENV.value,
        credential_env: str = DEFAULT_CREDENTIAL_ENV,
        credential_file: Optional[str] = None,
        builder_image: str = DEFAULT_BUILDER_IMAGE,
        runtime_image: str = DEFAULT_RUNTIME_IMAGE,
        build_command: str = DEFAULT_BUILD_COMMAND,
        artifact_path: Optional[str] = None,
        build_workdir: str = DEFAULT_BUILD_WORKDIR,
        runtime_workdir: str = DEFAULT_RUNTIME_WORKDIR,
        context_sha256: Optional[str] = None,
        context_marker: str = DEFAULT_CONTEXT_MARKER,
        allow_insecure_http: bool = False,
        no_cache: bool = False,
        keep_builder: bool = False,
        dry_run: bool = False,
        manifest_file: Optional[str] = None,
        verbose: bool = False,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.context = context
        self.artifact_name = artifact_name
        self.image_tag = image_tag or self.default_image_tag(artifact_name)
        self.secret_delivery = self._parse_secret_delivery(secret_delivery)
        self.credential_env = credential_env
        self.credential_file = credential_file
        self.builder_image = builder_image
        self.runtime_image = runtime_image
        self.build_command = build_command
        self.context_marker = context_marker
        self.no_cache = no_cache
        self.keep_builder = keep_builder
        self.dry_run = dry_run
        self.verbose = verbose
        self.environ = os.environ if environ is None else environ

        self.paths = StagePaths(
            artifact_name=artifact_name,
            artifact_path=artifact_path
            or DEFAULT_ARTIFACT_PATH_TEMPLATE.format(artifact_name=artifact_name),
            build_workdir=build_workdir,
            runtime_workdir=runtime_workdir,
            dotenv_name=DOTENV_NAME,
        )

        self.cwd = os.getcwd()
        self.output_dir = os.path.join(self.cwd, "output")
        self.manifest_file = manifest_file or os.path.join(self.output_dir, "run-manifest.json")
        self.run_context = self._build_run_context()

        self.validation_service = ValidationService(
            allow_insecure_http=allow_insecure_http,
            requests_module=requests,
        )
        self.context_sha256 = self.validation_service.normalize_sha256(
            context_sha256, "--context-sha256"
        )
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.command_runner = CommandRunner(logger=logger)
        self.docker_service = DockerRuntimeService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            stream_cmd=self.command_runner.stream,
        )
        self.dockerfile_service = DockerfileService()
        self.context_service = BuildContextService(
            validation_service=self.validation_service,
            archive_service=ArchiveService(),
            download_service=DownloadService(
                validation_service=self.validation_service,
                logger=logger,
                console=console,
                requests_module=requests,
            ),
            logger=logger,
            console=console,
        )
        self.audit_service = ImageAuditService(
            docker_service=self.docker_service, logger=logger, console=console
        )
        self.manifest_service = ManifestService(manifest_file=self.manifest_file, logger=logger)
        self.state_machine = PipelineStateMachine(
            logger=logger, on_transition=self.manifest_service.record_transition
        )

        self.credential: Optional[str] = None
        self.work_dir: Optional[str] = None
        self.build_context: Optional[BuildContext] = None
        self.dockerfile_path: Optional[str] = None
        self.current_step_name: Optional[str] = None
        self._created_tags: List[str] = []

    @staticmethod
    def default_image_tag(artifact_name: Optional[str]) -> str:
        repository = re.sub(r"[^a-z0-9]+", "-", (artifact_name or "").lower()).strip("-")
        return f"{repository or 'bot'}:latest"

    def _parse_secret_delivery(self, value) -> SecretDelivery:
        try:
            return SecretDelivery(value)
        except ValueError as exc:
            raise PipelineError(
                f"Invalid secret delivery '{value}'. Supported: {', '.join(self.SECRET_DELIVERIES)}"
            ) from exc

    def _build_run_context(self) -> RunContext:
        run_id = uuid.uuid4().hex[:10]
        prefix = f"botrelease-{run_id}"
        return RunContext(
            run_id=run_id,
            builder_tag=f"{prefix}:{BUILDER_STAGE_NAME}",
            staging_tag=f"{prefix}:staging",
            image_tag=self.image_tag,
        )

    def _build_manifest_metadata(self) -> Dict[str, Any]:
        return {
            "context": self.context,
            "artifact_name": self.artifact_name,
            "image_tag": self.image_tag,
            "secret_delivery": self.secret_delivery.value,
            "credential_env": self.credential_env,
            "builder_image": self.builder_image,
            "runtime_image": self.runtime_image,
            "build_command": self.build_command,
            "builder_artifact_path": self.paths.builder_artifact_path,
            "runtime_artifact_path": self.paths.runtime_artifact_path,
            "dry_run": self.dry_run,
        }

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.manifest_service.step_started(name)
        self.current_step_name = name

        try:
            result = callback(*args, **kwargs)
        except BaseException as exc:
            self.manifest_service.step_finished(name, "failed", error=str(exc) or type(exc).__name__)
            raise

        self.manifest_service.step_finished(name, "success")
        self.current_step_name = None
        return result

    def _run_cmd(self, cmd: List[str], check: bool = True, capture_output: bool = False, env=None):
        return self.command_runner.run(cmd, check=check, capture_output=capture_output, env=env)

    def _load_credential(self) -> Optional[str]:
        if self.credential_file:
            try:
                value = self.filesystem_service.read_secret_file(self.credential_file)
            except OSError as exc:
                raise PipelineError(
                    f"Could not read credential file '{self.credential_file}': {exc}"
                ) from exc
        else:
            value = self.environ.get(self.credential_env)

        if value is None:
            return None
        # Only a baked value has to fit on one dotenv line.
        if self.secret_delivery == SecretDelivery.BUILD_TIME_FILE:
            self.validation_service.validate_credential(value, self.credential_env)
        return value

    def _build_args(self) -> Dict[str, str]:
        if self.secret_delivery == SecretDelivery.BUILD_TIME_FILE and self.credential is not None:
            return {self.credential_env: self.credential}
        return {}

    def render_dockerfile(self) -> str:
        return self.dockerfile_service.render(
            paths=self.paths,
            builder_image=self.builder_image,
            runtime_image=self.runtime_image,
            build_command=self.build_command,
            secret_delivery=self.secret_delivery,
            credential_env=self.credential_env,
        )

    def validate_inputs(self):
        console.print("[blue]Validating pipeline inputs...[/blue]")
        validation = self.validation_service
        validation.validate_artifact_name(self.artifact_name)
        validation.validate_env_name(self.credential_env)
        validation.validate_relative_path(self.paths.artifact_path, "Artifact path")
        validation.validate_absolute_path(self.paths.build_workdir, "Build working directory")
        validation.validate_absolute_path(self.paths.runtime_workdir, "Runtime working directory")
        validation.validate_image_reference(self.builder_image, "builder")
        validation.validate_image_reference(self.runtime_image, "runtime")
        validation.validate_image_reference(
            self.image_tag, "output", hint="Pass a valid reference with --tag."
        )
        validation.validate_build_command(self.build_command)
        validation.validate_build_context(self.context, logger=logger, console=console)

        self.credential = self._load_credential()
        self.manifest_service.register_secret(self.credential)
        if self.secret_delivery == SecretDelivery.BUILD_TIME_FILE:
            if self.credential is None:
                raise PipelineError(actionable_error("credential_missing", name=self.credential_env))
            logger.warning(
                "build_time_file delivery bakes %s into %s inside the runtime image.",
                self.credential_env,
                self.paths.runtime_dotenv_path,
            )
        console.print("[green]Inputs are valid.[/green]")

    def print_plan(self):
        table = Table(title=f"Release plan for {self.artifact_name}")
        table.add_column("Stage")
        table.add_column("Detail")
        table.add_row("builder", f"{self.builder_image}: {self.build_command}")
        table.add_row("artifact", self.paths.builder_artifact_path)
        table.add_row("runtime", f"{self.runtime_image}: {self.paths.runtime_artifact_path}")
        table.add_row("credential", f"{self.credential_env} via {self.secret_delivery.value}")
        table.add_row("image", self.image_tag)
        console.print(table)
        console.print(Syntax(self.render_dockerfile(), "docker", line_numbers=False))

    def validate_docker_environment(self):
        self.docker_service.validate_environment()

    def prepare_build_context(self) -> BuildContext:
        self.work_dir = self.filesystem_service.make_work_dir(self.run_context.run_id)
        self.build_context = self.context_service.resolve(
            self.context,
            self.work_dir,
            expected_sha256=self.context_sha256,
            marker=self.context_marker,
        )
        return self.build_context

    def write_dockerfile(self) -> str:
        # Kept outside the build context so it never lands in the builder stage.
        self.dockerfile_path = os.path.join(self.work_dir, "Dockerfile")
        self.filesystem_service.write_text(
            self.dockerfile_path, self.render_dockerfile(), mode=FILE_MODE
        )
        logger.debug("Rendered Dockerfile at %s", self.dockerfile_path)
        return self.dockerfile_path

    def _build(self, tag: str, description: str, target: Optional[str] = None, no_cache: bool = False):
        self._created_tags.append(tag)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            disable=self.verbose,
        ) as progress:
            progress.add_task(description, total=None)
            result = self.docker_service.build_image(
                dockerfile_path=self.dockerfile_path,
                context_dir=self.build_context.directory,
                tag=tag,
                target=target,
                build_args=self._build_args(),
                no_cache=no_cache,
            )

        if result.returncode != 0:
            tail = getattr(result, "tail", None) or []
            if tail:
                logger.error("Recent build output:\n%s", "\n".join(tail))
        return result

    def build_builder_stage(self):
        result = self._build(
            self.run_context.builder_tag,
            f"[bold magenta]Compiling {self.artifact_name}...",
            target=BUILDER_STAGE_NAME,
            no_cache=self.no_cache,
        )
        if result.returncode != 0:
            raise PipelineError(actionable_error("compile_failed", artifact_name=self.artifact_name))
        console.print(f"[green]Builder stage compiled {self.artifact_name}.[/green]")

    def verify_builder_artifacts(self):
        builder_tag = self.run_context.builder_tag
        if not self.docker_service.path_exists_in_image(builder_tag, self.paths.builder_artifact_path):
            raise PipelineError(
                actionable_error("artifact_missing", path=self.paths.builder_artifact_path)
            )
        if self.secret_delivery == SecretDelivery.BUILD_TIME_FILE and not (
            self.docker_service.path_exists_in_image(builder_tag, self.paths.builder_dotenv_path)
        ):
            raise PipelineError(
                actionable_error(
                    "dotenv_missing", path=self.paths.builder_dotenv_path, stage=BUILDER_STAGE_NAME
                )
            )

    def package_runtime_image(self):
        # Never --no-cache: the builder layers reused here are the ones verified above.
        result = self._build(
            self.run_context.staging_tag,
            "[bold magenta]Packaging runtime image...",
        )
        if result.returncode != 0:
            raise PipelineError(
                f"Packaging the runtime image failed with exit code {result.returncode}. "
                "No image was produced."
            )

    def verify_runtime_image(self):
        return self.audit_service.audit(
            image=self.run_context.staging_tag,
            paths=self.paths,
            secret_delivery=self.secret_delivery,
            credential_env=self.credential_env,
            credential=self.credential,
        )

    def promote_image(self):
        self.docker_service.tag_image(self.run_context.staging_tag, self.image_tag)
        console.print(f"[bold green]Released {self.image_tag}[/bold green]")

    def cleanup(self):
        for tag in reversed(self._created_tags):
            if tag == self.run_context.builder_tag and self.keep_builder:
                logger.info("Keeping builder image %s", tag)
                continue
            self.docker_service.remove_image(tag)
        self._created_tags = []

        if self.work_dir:
            self.filesystem_service.cleanup_dir(self.work_dir)
            self.work_dir = None

    def run(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None

        try:
            logger.info("Starting BotRelease run %s...", self.run_context.run_id)
            self.manifest_service.start_run(
                run_id=self.run_context.run_id,
                metadata=self._build_manifest_metadata(),
            )

            self._run_step("validate_inputs", self.validate_inputs)

            if self.dry_run:
                self._run_step("print_plan", self.print_plan)
                console.print("[yellow]Dry run: Docker was not invoked.[/yellow]")
                manifest_status = "dry_run"
                exit_code = 0
                return exit_code

            self._run_step("validate_docker_environment", self.validate_docker_environment)
            self._run_step("prepare_build_context", self.prepare_build_context)
            self._run_step("write_dockerfile", self.write_dockerfile)

            self.state_machine.transition(PipelineState.BUILDING)
            self._run_step("build_builder_stage", self.build_builder_stage)
            self.state_machine.transition(PipelineState.BUILD_SUCCEEDED)

            self.state_machine.transition(PipelineState.PACKAGING)
            self._run_step("verify_builder_artifacts", self.verify_builder_artifacts)
            self._run_step("package_runtime_image", self.package_runtime_image)
            report = self._run_step("audit_runtime_image", self.verify_runtime_image)
            self._run_step("promote_image", self.promote_image)
            self.state_machine.transition(PipelineState.PACKAGED)

            self.manifest_service.add_artifact("image_tag", self.image_tag)
            if report is not None:
                self.manifest_service.add_artifact("image_id", report.image_id)
            manifest_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            self.state_machine.fail("Operation cancelled by user.")
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
            return exit_code
        except PipelineError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            self.state_machine.fail(str(exc))
            manifest_error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            self.state_machine.fail(str(exc))
            manifest_error = str(exc)
            return exit_code
        finally:
            self.manifest_service.finalize(manifest_status, error=manifest_error)
            self.cleanup()


def run_released_image(
    image: str,
    credential_env: str = DEFAULT_CREDENTIAL_ENV,
    name: Optional[str] = None,
) -> int:
    """Start a released image once and return the container's exit code.

    Only the variable *name* is handed to ``docker run``; docker copies the
    value from this process's environment. Whether it is set is the bot's
    business, not ours.
    """
    ValidationService().validate_env_name(credential_env)
    command_runner = CommandRunner(logger=logger)
    docker_service = DockerRuntimeService(logger=logger, console=console, run_cmd=command_runner.run)
    logger.info("Starting %s with %s passed through.", image, credential_env)
    return docker_service.run_container(image, env_names=[credential_env], name=name)
