"""Docker engine services for BotRelease."""

import json
import os
import re
import tempfile
from typing import Callable, Dict, List, Optional

from packaging import version

from botrelease.constants import MIN_DOCKER_VERSION
from botrelease.errors import PipelineError


class DockerRuntimeService:
    """Wraps the docker CLI calls the pipeline needs.

    Every call goes through ``run_cmd`` (see ``CommandRunner.run``) so tests can
    swap the daemon for a fake.
    """

    def __init__(self, logger, console, run_cmd: Callable, stream_cmd: Optional[Callable] = None):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.stream_cmd = stream_cmd

    def validate_environment(self):
        self.console.print("[blue]Validating Docker environment...[/blue]")
        result = self.run_cmd(
            ["docker", "version", "--format", "{{.Server.Version}}"],
            capture_output=True,
        )
        server_version = (result.stdout or "").strip()
        parsed = self.parse_engine_version(server_version)
        if parsed is None:
            self.logger.warning("Could not parse Docker server version '%s'.", server_version)
        elif parsed < version.parse(MIN_DOCKER_VERSION):
            raise PipelineError(
                f"Docker {server_version} does not support multi-stage builds. "
                f"Upgrade to Docker {MIN_DOCKER_VERSION} or newer."
            )
        self.console.print(f"[green]Docker {server_version or 'engine'} is available.[/green]")

    @staticmethod
    def parse_engine_version(raw: str) -> Optional[version.Version]:
        match = re.match(r"^\s*v?(\d+(?:\.\d+)*)", raw or "")
        if not match:
            return None
        return version.parse(match.group(1))

    @staticmethod
    def build_env(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ)
        env["DOCKER_BUILDKIT"] = "1"
        if extra:
            env.update(extra)
        return env

    def build_command(
        self,
        dockerfile_path: str,
        context_dir: str,
        tag: str,
        target: Optional[str] = None,
        build_arg_names: Optional[List[str]] = None,
        no_cache: bool = False,
    ) -> List[str]:
        cmd = ["docker", "build", "--file", dockerfile_path, "--tag", tag]
        if target:
            cmd += ["--target", target]
        # Name-only build args make docker read the value from its environment.
        for name in build_arg_names or []:
            cmd += ["--build-arg", name]
        if no_cache:
            cmd.append("--no-cache")
        cmd.append(context_dir)
        return cmd

    def build_image(
        self,
        dockerfile_path: str,
        context_dir: str,
        tag: str,
        target: Optional[str] = None,
        build_args: Optional[Dict[str, str]] = None,
        no_cache: bool = False,
        on_line: Optional[Callable[[str], None]] = None,
    ):
        """Run one ``docker build``; returns the stream result of the build."""
        cmd = self.build_command(
            dockerfile_path=dockerfile_path,
            context_dir=context_dir,
            tag=tag,
            target=target,
            build_arg_names=sorted((build_args or {}).keys()),
            no_cache=no_cache,
        )
        env = self.build_env(build_args)
        if self.stream_cmd is None:
            return self.run_cmd(cmd, check=False, env=env)
        return self.stream_cmd(cmd, on_line=on_line, env=env)

    def inspect_image(self, tag: str) -> Dict:
        result = self.run_cmd(
            ["docker", "image", "inspect", "--format", "{{json .}}", tag],
            capture_output=True,
        )
        try:
            data = json.loads(result.stdout)
        except (TypeError, ValueError) as exc:
            raise PipelineError(f"Could not parse image metadata for {tag}: {exc}") from exc
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            raise PipelineError(f"Unexpected image metadata format for {tag}.")
        return data

    def image_history(self, tag: str) -> List[str]:
        result = self.run_cmd(
            ["docker", "history", "--no-trunc", "--format", "{{.CreatedBy}}", tag],
            capture_output=True,
        )
        return [line for line in (result.stdout or "").splitlines() if line.strip()]

    def copy_from_image(self, tag: str, container_path: str, dest_dir: str) -> Optional[str]:
        """Copy one file out of an image without running it.

        Returns the local path, or None when the path does not exist in the
        image. A container is created (never started) and always removed.
        """
        created = self.run_cmd(["docker", "create", tag], capture_output=True)
        container_id = (created.stdout or "").strip()
        if not container_id:
            raise PipelineError(f"docker create returned no container id for {tag}.")

        local_path = os.path.join(dest_dir, os.path.basename(container_path.rstrip("/")))
        try:
            copied = self.run_cmd(
                ["docker", "cp", f"{container_id}:{container_path}", local_path],
                check=False,
                capture_output=True,
            )
        finally:
            self.run_cmd(["docker", "rm", "-f", container_id], check=False, capture_output=True)

        if copied.returncode != 0:
            self.logger.debug("Path %s not found in %s", container_path, tag)
            return None
        return local_path

    def path_exists_in_image(self, tag: str, container_path: str) -> bool:
        with tempfile.TemporaryDirectory(prefix="botrelease-probe-") as probe_dir:
            return self.copy_from_image(tag, container_path, probe_dir) is not None

    def tag_image(self, source: str, target: str):
        self.run_cmd(["docker", "tag", source, target], capture_output=True)

    def remove_image(self, tag: str):
        self.run_cmd(["docker", "image", "rm", "--force", tag], check=False, capture_output=True)

    def run_container(
        self,
        image: str,
        env_names: Optional[List[str]] = None,
        name: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> int:
        """Start the image once and return the container's own exit code."""
        cmd = ["docker", "run", "--rm"]
        if name:
            cmd += ["--name", name]
        for env_name in env_names or []:
            cmd += ["--env", env_name]
        cmd.append(image)
        result = self.run_cmd(cmd, check=False, env=env)
        return result.returncode
