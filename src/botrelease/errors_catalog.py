"""Actionable error catalog for BotRelease."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "build_context_not_found": {
        "what": "Build context not found: {path}",
        "next": "Point `--context` at the source tree, a `.zip` of it, or an HTTPS `.zip` URL.",
    },
    "invalid_context_format": {
        "what": "Invalid build context format. Archives must be `.zip` files.",
        "next": "Provide a source directory or a `.zip` archive of the source tree.",
    },
    "insecure_http": {
        "what": "{label} uses insecure HTTP.",
        "next": "Switch to HTTPS or use `--allow-insecure-http` only for trusted endpoints.",
    },
    "credential_missing": {
        "what": "No credential available for `{name}` with build_time_file delivery.",
        "next": "Export `{name}` in the environment or pass `--credential-file`.",
    },
    "compile_failed": {
        "what": "Builder stage failed to compile `{artifact_name}`.",
        "next": "Fix the compile errors shown in the build output and rerun.",
    },
    "artifact_missing": {
        "what": "Compiled artifact not found at `{path}` in the builder stage.",
        "next": "Check that `--artifact-path` matches where the build command writes its output.",
    },
    "dotenv_missing": {
        "what": "Credential dotenv file not found at `{path}` in stage `{stage}`.",
        "next": "Rebuild with `--no-cache` and check the builder stage output.",
    },
    "embedded_secret": {
        "what": "The credential value was found in {location} of image `{image}`.",
        "next": "Use runtime_env delivery and supply the token only when the container starts.",
    },
    "image_contract_violation": {
        "what": "Runtime image `{image}` does not match its stage description: {detail}",
        "next": "Rebuild with `--no-cache`; if it persists, inspect the rendered Dockerfile.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
