import zipfile

import pytest

from botrelease.errors import PipelineError
from botrelease.services.archive import ArchiveService


def test_archive_service_blocks_path_traversal(tmp_path):
    service = ArchiveService()

    zip_path = tmp_path / "malicious.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        zip_file.writestr("src/main.rs", "fn main() {}")
        zip_file.writestr("../escape.txt", "malicious")

    destination = tmp_path / "extract"
    destination.mkdir()

    with pytest.raises(PipelineError, match="path traversal"):
        service.safe_extract_zip(str(zip_path), str(destination))

    assert not (tmp_path / "escape.txt").exists()
    assert not (destination / "src" / "main.rs").exists()


def test_archive_service_rejects_symlink_entries(tmp_path):
    service = ArchiveService()

    zip_path = tmp_path / "link.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        info = zipfile.ZipInfo("link")
        info.external_attr = (0o120777 << 16)
        zip_file.writestr(info, "/etc/passwd")

    destination = tmp_path / "extract"
    destination.mkdir()

    with pytest.raises(PipelineError, match="symbolic link"):
        service.safe_extract_zip(str(zip_path), str(destination))


def test_archive_service_extracts_and_unwraps_single_directory(tmp_path):
    service = ArchiveService()

    zip_path = tmp_path / "bot-main.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        zip_file.writestr("bot-main/Cargo.toml", "[package]\nname = \"bot\"\n")
        zip_file.writestr("bot-main/src/main.rs", "fn main() {}")

    destination = tmp_path / "extract"
    destination.mkdir()

    service.safe_extract_zip(str(zip_path), str(destination))
    root = service.source_root(str(destination), marker="Cargo.toml")

    assert root == str(destination / "bot-main")
    assert (destination / "bot-main" / "src" / "main.rs").read_text(encoding="utf-8") == "fn main() {}"


def test_source_root_keeps_flat_layout(tmp_path):
    (tmp_path / "Cargo.toml").write_text("", encoding="utf-8")
    (tmp_path / "src").mkdir()

    assert ArchiveService().source_root(str(tmp_path), marker="Cargo.toml") == str(tmp_path)


def test_source_root_keeps_lone_directory_without_build_manifest(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.rs").write_text("fn main() {}", encoding="utf-8")

    assert ArchiveService().source_root(str(tmp_path), marker="Cargo.toml") == str(tmp_path)


def test_source_root_keeps_root_that_holds_the_build_manifest(tmp_path):
    (tmp_path / "Cargo.toml").write_text("", encoding="utf-8")
    (tmp_path / "crate").mkdir()
    (tmp_path / "crate" / "Cargo.toml").write_text("", encoding="utf-8")

    assert ArchiveService().source_root(str(tmp_path), marker="Cargo.toml") == str(tmp_path)


def test_archive_service_reports_invalid_zip(tmp_path):
    broken = tmp_path / "broken.zip"
    broken.write_text("not a zip", encoding="utf-8")

    with pytest.raises(PipelineError, match="Invalid ZIP archive"):
        ArchiveService().safe_extract_zip(str(broken), str(tmp_path))
