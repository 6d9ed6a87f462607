"""Shared domain models for BotRelease."""

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional


class SecretDelivery(str, Enum):
    """How the bot credential reaches the compiled artifact."""

    BUILD_TIME_FILE = "build_time_file"
    RUNTIME_ENV = "runtime_env"


class PipelineState(str, Enum):
    BUILD_PENDING = "build_pending"
    BUILDING = "building"
    BUILD_FAILED = "build_failed"
    BUILD_SUCCEEDED = "build_succeeded"
    PACKAGING = "packaging"
    PACKAGING_FAILED = "packaging_failed"
    PACKAGED = "packaged"


@dataclass(frozen=True)
class StagePaths:
    """Fixed filesystem locations shared by the builder and runtime stages.

    Both stage descriptions read their paths from this one object so the
    `COPY --from` source on the runtime side always matches what the builder
    side produced.
    """

    artifact_name: str
    artifact_path: str
    build_workdir: str
    runtime_workdir: str
    dotenv_name: str = ".env"

    @property
    def builder_artifact_path(self) -> str:
        return str(PurePosixPath(self.build_workdir, self.artifact_path))

    @property
    def builder_dotenv_path(self) -> str:
        return str(PurePosixPath(self.build_workdir, self.dotenv_name))

    @property
    def runtime_artifact_path(self) -> str:
        return str(PurePosixPath(self.runtime_workdir, self.artifact_name))

    @property
    def runtime_dotenv_path(self) -> str:
        return str(PurePosixPath(self.runtime_workdir, self.dotenv_name))


@dataclass(frozen=True)
class RunContext:
    """Runtime identifiers isolated per execution."""

    run_id: str
    builder_tag: str
    staging_tag: str
    image_tag: str


@dataclass(frozen=True)
class BuildContext:
    """Resolved source tree handed to the builder stage."""

    location: str
    directory: str
    extracted: bool = False


@dataclass(frozen=True)
class ImageAuditReport:
    image: str
    image_id: Optional[str]
    command: tuple
    working_dir: str
    declared_env: tuple
    has_dotenv: bool
