"""Configuration loader for BotRelease."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from botrelease.errors import PipelineError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults.

    Credential values are deliberately not configurable here; only the name
    of the variable that carries them is.
    """

    SUPPORTED_KEYS = {
        "context",
        "artifact_name",
        "tag",
        "secret_delivery",
        "credential_env",
        "credential_file",
        "builder_image",
        "runtime_image",
        "build_command",
        "artifact_path",
        "build_workdir",
        "runtime_workdir",
        "context_sha256",
        "context_marker",
        "allow_insecure_http",
        "no_cache",
        "keep_builder",
        "dry_run",
        "manifest_file",
        "verbose",
        "log_file",
        "image",
        "name",
    }
    SECRET_KEYS = {"credential", "token", "secret", "bot_token"}

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise PipelineError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise PipelineError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise PipelineError("Config file must contain a YAML mapping at the root.")

        secret_keys = sorted(set(parsed.keys()) & self.SECRET_KEYS)
        if secret_keys:
            raise PipelineError(
                f"Config file must not contain credential values ({', '.join(secret_keys)}). "
                "Use `credential_env` or `credential_file` instead."
            )

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise PipelineError(f"Unknown configuration keys: {unknown_list}")

        return parsed
