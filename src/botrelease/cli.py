import logging
import os

import click
from rich.logging import RichHandler

from .constants import (
    DEFAULT_BUILD_COMMAND,
    DEFAULT_BUILD_WORKDIR,
    DEFAULT_BUILDER_IMAGE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_CONTEXT_MARKER,
    DEFAULT_CREDENTIAL_ENV,
    DEFAULT_RUNTIME_IMAGE,
    DEFAULT_RUNTIME_WORKDIR,
)
from .core import PipelineError, ReleasePipeline, run_released_image
from .models import SecretDelivery
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _load_config(config):
    resolved_config = config
    if resolved_config is None:
        default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
        if os.path.exists(default_config_path):
            resolved_config = default_config_path

    try:
        return ConfigLoader().load(resolved_config)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(verbose, log_file=None):
    logger = logging.getLogger("botrelease")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.group()
def main():
    """Build a compiled bot in a toolchain image and ship it in a minimal one."""


@main.command()
@click.option("--context", required=False, help="Source tree: directory, local .zip, or .zip URL")
@click.option("--artifact-name", required=False, help="File name of the compiled executable")
@click.option("--tag", required=False, help="Tag for the released image (default: <artifact>:latest)")
@click.option(
    "--secret-delivery",
    required=False,
    type=click.Choice(ReleasePipeline.SECRET_DELIVERIES),
    help="Bake the token into a dotenv file at build time, or supply it at container start.",
)
@click.option(
    "--credential-env",
    required=False,
    help=f"Name of the variable carrying the bot token (default: {DEFAULT_CREDENTIAL_ENV})",
)
@click.option(
    "--credential-file",
    required=False,
    type=click.Path(),
    help="Read the build-time token from this file instead of the environment.",
)
@click.option("--builder-image", required=False, help=f"Toolchain image (default: {DEFAULT_BUILDER_IMAGE})")
@click.option("--runtime-image", required=False, help=f"Minimal base image (default: {DEFAULT_RUNTIME_IMAGE})")
@click.option(
    "--build-command",
    required=False,
    help=f"Release build command run in the builder stage (default: {DEFAULT_BUILD_COMMAND})",
)
@click.option(
    "--artifact-path",
    required=False,
    help="Artifact location relative to the build directory (default: target/release/<artifact>)",
)
@click.option("--build-workdir", required=False, help=f"Builder working directory (default: {DEFAULT_BUILD_WORKDIR})")
@click.option(
    "--runtime-workdir",
    required=False,
    help=f"Runtime working directory (default: {DEFAULT_RUNTIME_WORKDIR})",
)
@click.option("--context-sha256", required=False, help="Expected SHA-256 of a remote context archive.")
@click.option(
    "--context-marker",
    required=False,
    help=f"File that marks the source root inside an archive (default: {DEFAULT_CONTEXT_MARKER})",
)
@click.option(
    "--allow-insecure-http",
    is_flag=True,
    default=None,
    help="Allow HTTP URLs (insecure). By default only HTTPS URLs are accepted.",
)
@click.option("--no-cache", is_flag=True, default=None, help="Build without the Docker layer cache.")
@click.option("--keep-builder", is_flag=True, default=None, help="Keep the builder stage image after the run.")
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Validate inputs and print the Dockerfile and plan without running Docker.",
)
@click.option(
    "--manifest-file",
    required=False,
    type=click.Path(),
    help="Path for the run manifest (default: output/run-manifest.json).",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def build(
    context,
    artifact_name,
    tag,
    secret_delivery,
    credential_env,
    credential_file,
    builder_image,
    runtime_image,
    build_command,
    artifact_path,
    build_workdir,
    runtime_workdir,
    context_sha256,
    context_marker,
    allow_insecure_http,
    no_cache,
    keep_builder,
    dry_run,
    manifest_file,
    config,
    verbose,
    log_file,
):
    """Compile the bot, package it and tag the runtime image."""
    config_values = _load_config(config)

    context = _resolve_option(context, config_values, "context")
    artifact_name = _resolve_option(artifact_name, config_values, "artifact_name")
    tag = _resolve_option(tag, config_values, "tag")
    secret_delivery = _resolve_option(
        secret_delivery, config_values, "secret_delivery", default=SecretDelivery.RUNTIME_ENV.value
    )
    credential_env = _resolve_option(
        credential_env, config_values, "credential_env", default=DEFAULT_CREDENTIAL_ENV
    )
    credential_file = _resolve_option(credential_file, config_values, "credential_file")
    builder_image = _resolve_option(
        builder_image, config_values, "builder_image", default=DEFAULT_BUILDER_IMAGE
    )
    runtime_image = _resolve_option(
        runtime_image, config_values, "runtime_image", default=DEFAULT_RUNTIME_IMAGE
    )
    build_command = _resolve_option(
        build_command, config_values, "build_command", default=DEFAULT_BUILD_COMMAND
    )
    artifact_path = _resolve_option(artifact_path, config_values, "artifact_path")
    build_workdir = _resolve_option(
        build_workdir, config_values, "build_workdir", default=DEFAULT_BUILD_WORKDIR
    )
    runtime_workdir = _resolve_option(
        runtime_workdir, config_values, "runtime_workdir", default=DEFAULT_RUNTIME_WORKDIR
    )
    context_sha256 = _resolve_option(context_sha256, config_values, "context_sha256")
    context_marker = _resolve_option(
        context_marker, config_values, "context_marker", default=DEFAULT_CONTEXT_MARKER
    )
    allow_insecure_http = bool(
        _resolve_option(allow_insecure_http, config_values, "allow_insecure_http", default=False)
    )
    no_cache = bool(_resolve_option(no_cache, config_values, "no_cache", default=False))
    keep_builder = bool(_resolve_option(keep_builder, config_values, "keep_builder", default=False))
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    manifest_file = _resolve_option(manifest_file, config_values, "manifest_file")
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if not context:
        raise click.ClickException("Missing required option '--context' (or provide it in config).")
    if not artifact_name:
        raise click.ClickException(
            "Missing required option '--artifact-name' (or provide it in config)."
        )

    _configure_logging(verbose, log_file)

    try:
        pipeline = ReleasePipeline(
            context=str(context),
            artifact_name=str(artifact_name),
            image_tag=tag,
            secret_delivery=str(secret_delivery),
            credential_env=str(credential_env),
            credential_file=credential_file,
            builder_image=str(builder_image),
            runtime_image=str(runtime_image),
            build_command=str(build_command),
            artifact_path=artifact_path,
            build_workdir=str(build_workdir),
            runtime_workdir=str(runtime_workdir),
            context_sha256=context_sha256,
            context_marker=str(context_marker),
            allow_insecure_http=allow_insecure_http,
            no_cache=no_cache,
            keep_builder=keep_builder,
            dry_run=dry_run,
            manifest_file=manifest_file,
            verbose=verbose,
        )
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(pipeline.run())


@main.command()
@click.option("--image", required=False, help="Released image to start")
@click.option(
    "--credential-env",
    required=False,
    help=f"Variable passed through to the container (default: {DEFAULT_CREDENTIAL_ENV})",
)
@click.option("--name", required=False, help="Container name")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
def run(image, credential_env, name, config, verbose):
    """Start the released bot once; exits with the bot's own exit code."""
    config_values = _load_config(config)

    image = _resolve_option(image, config_values, "image") or _resolve_option(
        None, config_values, "tag"
    )
    credential_env = _resolve_option(
        credential_env, config_values, "credential_env", default=DEFAULT_CREDENTIAL_ENV
    )
    name = _resolve_option(name, config_values, "name")
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))

    if not image:
        raise click.ClickException("Missing required option '--image' (or provide it in config).")

    _configure_logging(verbose)

    try:
        exit_code = run_released_image(str(image), credential_env=str(credential_env), name=name)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
