from click.testing import CliRunner

import botrelease.cli as cli_module


def _fake_pipeline(captured, exit_code=0):
    class FakePipeline:
        SECRET_DELIVERIES = cli_module.ReleasePipeline.SECRET_DELIVERIES

        def __init__(self, **kwargs):
            captured.update(kwargs)

        def run(self):
            return exit_code

    return FakePipeline


def test_build_uses_config_and_allows_cli_override(tmp_path, monkeypatch):
    config_file = tmp_path / "release.yml"
    config_file.write_text(
        "context: ./bot\n"
        "artifact_name: Cryptocat\n"
        "secret_delivery: build_time_file\n"
        "runtime_image: debian:bookworm-slim\n"
        "keep_builder: true\n",
        encoding="utf-8",
    )

    captured = {}
    monkeypatch.setattr(cli_module, "ReleasePipeline", _fake_pipeline(captured))

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        [
            "build",
            "--config",
            str(config_file),
            "--secret-delivery",
            "runtime_env",
            "--tag",
            "cryptocat:1.2.0",
            "--dry-run",
        ],
    )

    assert result.exit_code == 0, result.output
    assert captured["context"] == "./bot"
    assert captured["artifact_name"] == "Cryptocat"
    assert captured["secret_delivery"] == "runtime_env"
    assert captured["image_tag"] == "cryptocat:1.2.0"
    assert captured["keep_builder"] is True
    assert captured["dry_run"] is True
    assert captured["credential_env"] == "TELOXIDE_TOKEN"
    assert captured["builder_image"] == "rust:1-bookworm"
    assert captured["context_marker"] == "Cargo.toml"


def test_build_uses_default_config_file_when_present(tmp_path, monkeypatch):
    (tmp_path / ".botrelease.yml").write_text(
        "context: ./bot\n" "artifact_name: Cryptocat\n" "credential_env: BOT_TOKEN\n",
        encoding="utf-8",
    )

    captured = {}
    monkeypatch.setattr(cli_module, "ReleasePipeline", _fake_pipeline(captured))
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["build"])

    assert result.exit_code == 0, result.output
    assert captured["context"] == "./bot"
    assert captured["credential_env"] == "BOT_TOKEN"
    assert captured["secret_delivery"] == "runtime_env"


def test_build_propagates_pipeline_exit_code(tmp_path, monkeypatch):
    captured = {}
    monkeypatch.setattr(cli_module, "ReleasePipeline", _fake_pipeline(captured, exit_code=1))
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main, ["build", "--context", "./bot", "--artifact-name", "Cryptocat"]
    )

    assert result.exit_code == 1


def test_build_requires_context(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["build", "--artifact-name", "Cryptocat"])

    assert result.exit_code != 0
    assert "Missing required option '--context'" in result.output


def test_build_rejects_unknown_secret_delivery(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        ["build", "--context", "./bot", "--artifact-name", "Cryptocat", "--secret-delivery", "baked"],
    )

    assert result.exit_code != 0
    assert "Invalid value for '--secret-delivery'" in result.output


def test_build_rejects_config_with_credential_value(tmp_path, monkeypatch):
    config_file = tmp_path / "release.yml"
    config_file.write_text("context: ./bot\n" "token: 123:abc\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["build", "--config", str(config_file)])

    assert result.exit_code != 0
    assert "must not contain credential values" in result.output
    assert "123:abc" not in result.output


def test_run_passes_container_exit_code_through(tmp_path, monkeypatch):
    captured = {}

    def fake_run_released_image(image, credential_env, name=None):
        captured["image"] = image
        captured["credential_env"] = credential_env
        captured["name"] = name
        return 7

    monkeypatch.setattr(cli_module, "run_released_image", fake_run_released_image)
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["run", "--image", "cryptocat:latest", "--name", "bot"])

    assert result.exit_code == 7
    assert captured == {"image": "cryptocat:latest", "credential_env": "TELOXIDE_TOKEN", "name": "bot"}


def test_run_falls_back_to_configured_tag(tmp_path, monkeypatch):
    (tmp_path / ".botrelease.yml").write_text(
        "context: ./bot\n" "artifact_name: Cryptocat\n" "tag: cryptocat:2.0\n",
        encoding="utf-8",
    )
    captured = {}

    def fake_run_released_image(image, credential_env, name=None):
        captured["image"] = image
        return 0

    monkeypatch.setattr(cli_module, "run_released_image", fake_run_released_image)
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["run"])

    assert result.exit_code == 0
    assert captured["image"] == "cryptocat:2.0"


def test_run_requires_an_image(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["run"])

    assert result.exit_code != 0
    assert "Missing required option '--image'" in result.output
