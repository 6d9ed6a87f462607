import pytest

from botrelease.errors import PipelineError
from botrelease.services.validation import ValidationService


class DummyLogger:
    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self):
        self.called = False

    def request(self, *_args, **_kwargs):
        self.called = True
        raise AssertionError("network should not be called")


def test_validation_blocks_insecure_http_context_before_network():
    fake_requests = FakeRequestsModule()
    service = ValidationService(allow_insecure_http=False, requests_module=fake_requests)

    with pytest.raises(PipelineError, match="insecure HTTP"):
        service.validate_build_context(
            "http://example.com/bot.zip", logger=DummyLogger(), console=DummyConsole()
        )

    assert fake_requests.called is False


def test_validation_rejects_non_zip_archives(tmp_path):
    archive = tmp_path / "bot.tar.gz"
    archive.write_text("x", encoding="utf-8")

    with pytest.raises(PipelineError, match="Invalid build context format"):
        ValidationService().validate_build_context(str(archive), DummyLogger(), DummyConsole())


def test_validation_rejects_missing_and_empty_contexts(tmp_path):
    service = ValidationService()

    with pytest.raises(PipelineError, match="Build context not found"):
        service.validate_build_context(str(tmp_path / "missing"), DummyLogger(), DummyConsole())

    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(PipelineError, match="empty"):
        service.validate_build_context(str(empty), DummyLogger(), DummyConsole())


def test_validation_accepts_source_directory(tmp_path):
    (tmp_path / "Cargo.toml").write_text("[package]\n", encoding="utf-8")

    ValidationService().validate_build_context(str(tmp_path), DummyLogger(), DummyConsole())


@pytest.mark.parametrize("name", ["TELOXIDE_TOKEN", "_TOKEN", "bot_token2"])
def test_env_names_accepted(name):
    ValidationService().validate_env_name(name)


@pytest.mark.parametrize("name", ["", "2TOKEN", "BOT-TOKEN", "BOT TOKEN", "A=B"])
def test_env_names_rejected(name):
    with pytest.raises(PipelineError, match="Invalid credential variable"):
        ValidationService().validate_env_name(name)


def test_paths_must_match_their_side_of_the_stage_boundary():
    service = ValidationService()

    service.validate_absolute_path("/app", "Runtime working directory")
    service.validate_relative_path("target/release/Cryptocat", "Artifact path")

    with pytest.raises(PipelineError, match="absolute"):
        service.validate_absolute_path("app", "Runtime working directory")
    with pytest.raises(PipelineError, match="relative"):
        service.validate_relative_path("../outside/bot", "Artifact path")
    with pytest.raises(PipelineError, match="relative"):
        service.validate_relative_path("/abs/bot", "Artifact path")


@pytest.mark.parametrize(
    "reference",
    [
        "rust",
        "rust:latest",
        "debian:bookworm-slim",
        "rust:1-bookworm",
        "gcr.io/distroless/cc-debian12",
        "ghcr.io/org/bot:1.2.3",
        "localhost:5000/bot",
    ],
)
def test_image_references_accepted(reference):
    ValidationService().validate_image_reference(reference, "builder")


@pytest.mark.parametrize("reference", ["", "Rust:latest", "bot:", "bad image"])
def test_image_references_rejected(reference):
    with pytest.raises(PipelineError, match="image reference"):
        ValidationService().validate_image_reference(reference, "builder")


def test_credential_must_fit_a_dotenv_line():
    service = ValidationService()

    service.validate_credential("123456:ABC-def_ghi", "TELOXIDE_TOKEN")

    with pytest.raises(PipelineError, match="single line"):
        service.validate_credential("abc\ndef", "TELOXIDE_TOKEN")
    with pytest.raises(PipelineError, match="empty"):
        service.validate_credential("", "TELOXIDE_TOKEN")


def test_credential_errors_do_not_echo_the_value():
    with pytest.raises(PipelineError) as error:
        ValidationService().validate_credential("top\nsecret", "TELOXIDE_TOKEN")

    assert "top" not in str(error.value)


def test_build_command_must_be_single_line():
    with pytest.raises(PipelineError, match="single line"):
        ValidationService().validate_build_command("cargo build\nrm -rf /")


def test_normalize_sha256():
    service = ValidationService()

    assert service.normalize_sha256(" " + "A" * 64 + " ", "--context-sha256") == "a" * 64
    assert service.normalize_sha256(None, "--context-sha256") is None
    with pytest.raises(PipelineError, match="valid SHA-256"):
        service.normalize_sha256("abc", "--context-sha256")
