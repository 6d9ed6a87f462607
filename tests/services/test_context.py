import os
import zipfile

from botrelease.services.archive import ArchiveService
from botrelease.services.context import BuildContextService
from botrelease.services.validation import ValidationService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeDownloadService:
    def __init__(self, archive_bytes: bytes):
        self.archive_bytes = archive_bytes
        self.calls = []

    def download_file(self, url, dest_path, description="", expected_sha256=None):
        self.calls.append((url, dest_path, expected_sha256))
        os.makedirs(os.path.dirname(dest_path), exist_ok=True)
        with open(dest_path, "wb") as file_obj:
            file_obj.write(self.archive_bytes)


def _zip_bytes(tmp_path) -> bytes:
    zip_path = tmp_path / "source.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        zip_file.writestr("cryptocat-main/Cargo.toml", "[package]\n")
        zip_file.writestr("cryptocat-main/src/main.rs", "fn main() {}")
    return zip_path.read_bytes()


def _service(download_service=None) -> BuildContextService:
    return BuildContextService(
        validation_service=ValidationService(),
        archive_service=ArchiveService(),
        download_service=download_service,
        logger=DummyLogger(),
        console=DummyConsole(),
    )


def test_directory_context_is_used_in_place(tmp_path):
    source = tmp_path / "bot"
    source.mkdir()
    (source / "Cargo.toml").write_text("", encoding="utf-8")
    work_dir = tmp_path / "work"
    work_dir.mkdir()

    context = _service().resolve(str(source), str(work_dir))

    assert context.directory == str(source)
    assert context.extracted is False
    assert list(work_dir.iterdir()) == []


def test_local_zip_context_is_extracted_into_work_dir(tmp_path):
    archive = tmp_path / "bot.zip"
    archive.write_bytes(_zip_bytes(tmp_path))
    work_dir = tmp_path / "work"
    work_dir.mkdir()

    context = _service().resolve(str(archive), str(work_dir))

    assert context.extracted is True
    assert context.directory.startswith(str(work_dir))
    assert context.directory.endswith("cryptocat-main")


def test_remote_zip_context_is_downloaded_with_checksum(tmp_path):
    downloader = FakeDownloadService(_zip_bytes(tmp_path))
    work_dir = tmp_path / "work"
    work_dir.mkdir()

    context = _service(downloader).resolve(
        "https://example.com/archive/main.zip", str(work_dir), expected_sha256="a" * 64
    )

    url, dest_path, expected = downloader.calls[0]
    assert url == "https://example.com/archive/main.zip"
    assert dest_path.endswith("main.zip")
    assert expected == "a" * 64
    assert context.directory.endswith("cryptocat-main")
