"""Two-stage Dockerfile rendering for the bot binary."""

import json

from botrelease.constants import BUILDER_STAGE_NAME, LABEL_PREFIX
from botrelease.models import SecretDelivery, StagePaths


class DockerfileService:
    """Renders the builder and runtime stage descriptions from shared paths."""

    def build_builder_stage(
        self,
        paths: StagePaths,
        builder_image: str,
        build_command: str,
        secret_delivery: SecretDelivery,
        credential_env: str,
    ) -> str:
        # The dotenv file is written after the sources land so a stray .env in
        # the build context cannot shadow it, and before the compile runs.
        dotenv_section = ""
        if secret_delivery == SecretDelivery.BUILD_TIME_FILE:
            dotenv_section = f"""
ARG {credential_env}
RUN printf '%s=%s\\n' '{credential_env}' "${credential_env}" > {paths.builder_dotenv_path}
"""

        return f"""
FROM {builder_image} AS {BUILDER_STAGE_NAME}
WORKDIR {paths.build_workdir}
COPY . .
{dotenv_section}
RUN {build_command}
""".strip()

    def build_runtime_stage(
        self,
        paths: StagePaths,
        runtime_image: str,
        secret_delivery: SecretDelivery,
        credential_env: str,
    ) -> str:
        copy_lines = [
            f"COPY --from={BUILDER_STAGE_NAME} {paths.builder_artifact_path} "
            f"{paths.runtime_artifact_path}"
        ]
        env_section = ""
        if secret_delivery == SecretDelivery.BUILD_TIME_FILE:
            copy_lines.append(
                f"COPY --from={BUILDER_STAGE_NAME} {paths.builder_dotenv_path} "
                f"{paths.runtime_dotenv_path}"
            )
        else:
            env_section = f'ENV {credential_env}=""'

        labels = (
            f'LABEL {LABEL_PREFIX}.secret-delivery="{secret_delivery.value}" '
            f'{LABEL_PREFIX}.credential-env="{credential_env}" '
            f'{LABEL_PREFIX}.artifact="{paths.runtime_artifact_path}"'
        )
        copy_section = "\n".join(copy_lines)
        command = json.dumps([paths.runtime_artifact_path])

        return f"""
FROM {runtime_image}
WORKDIR {paths.runtime_workdir}
{copy_section}
{env_section}
{labels}
CMD {command}
""".strip()

    def render(
        self,
        paths: StagePaths,
        builder_image: str,
        runtime_image: str,
        build_command: str,
        secret_delivery: SecretDelivery,
        credential_env: str,
    ) -> str:
        builder = self.build_builder_stage(
            paths=paths,
            builder_image=builder_image,
            build_command=build_command,
            secret_delivery=secret_delivery,
            credential_env=credential_env,
        )
        runtime = self.build_runtime_stage(
            paths=paths,
            runtime_image=runtime_image,
            secret_delivery=secret_delivery,
            credential_env=credential_env,
        )
        content = f"{builder}\n\n{runtime}\n"
        compacted = []
        for line in content.splitlines():
            if not line.strip() and compacted and not compacted[-1].strip():
                continue
            compacted.append(line)
        return "\n".join(compacted).strip() + "\n"
