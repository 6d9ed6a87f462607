"""Build context acquisition for the builder stage."""

import os
from urllib.parse import urlparse

from botrelease.constants import DEFAULT_CONTEXT_MARKER
from botrelease.models import BuildContext


class BuildContextService:
    """Turns a context location into a local source directory.

    Directories are used in place; archives (local or downloaded) are
    extracted into the run's private work directory so they disappear with
    it once the run ends.
    """

    def __init__(self, validation_service, archive_service, download_service, logger, console):
        self.validation_service = validation_service
        self.archive_service = archive_service
        self.download_service = download_service
        self.logger = logger
        self.console = console

    def resolve(
        self, location: str, work_dir: str, expected_sha256=None, marker=DEFAULT_CONTEXT_MARKER
    ) -> BuildContext:
        if os.path.isdir(location):
            directory = os.path.abspath(location)
            self.logger.info("Using build context directory %s", directory)
            return BuildContext(location=location, directory=directory, extracted=False)

        archive_path = location
        if self.validation_service.is_url(location):
            file_name = os.path.basename(urlparse(location).path) or "context.zip"
            archive_path = os.path.join(work_dir, "downloads", file_name)
            self.download_service.download_file(
                location,
                archive_path,
                "Downloading build context...",
                expected_sha256=expected_sha256,
            )
        elif expected_sha256:
            self.logger.warning("--context-sha256 only applies to remote contexts; ignoring it.")

        extract_dir = os.path.join(work_dir, "context")
        os.makedirs(extract_dir, exist_ok=True)
        self.console.print("[blue]Extracting build context...[/blue]")
        self.archive_service.safe_extract_zip(archive_path, extract_dir)

        directory = self.archive_service.source_root(extract_dir, marker=marker)
        self.logger.info("Build context extracted to %s", directory)
        return BuildContext(location=location, directory=directory, extracted=True)
