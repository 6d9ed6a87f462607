"""Shared defaults for BotRelease."""

FILE_MODE = 0o644

BUILDER_STAGE_NAME = "builder"

# Same Debian release on both sides so the runtime glibc matches the builder.
DEFAULT_BUILDER_IMAGE = "rust:1-bookworm"
DEFAULT_RUNTIME_IMAGE = "gcr.io/distroless/cc-debian12"
DEFAULT_BUILD_COMMAND = "cargo build --release"
DEFAULT_ARTIFACT_PATH_TEMPLATE = "target/release/{artifact_name}"
DEFAULT_BUILD_WORKDIR = "/build"
DEFAULT_RUNTIME_WORKDIR = "/app"
DEFAULT_CREDENTIAL_ENV = "TELOXIDE_TOKEN"
DOTENV_NAME = ".env"
DEFAULT_CONTEXT_MARKER = "Cargo.toml"

CONTEXT_ARCHIVE_EXTENSION = ".zip"
DEFAULT_CONFIG_FILE = ".botrelease.yml"

# Multi-stage builds and `--target` landed in this engine release.
MIN_DOCKER_VERSION = "17.05"

LABEL_PREFIX = "io.botrelease"
