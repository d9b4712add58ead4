"""HTTP artifact downloader with resume support."""

from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from cardsmith import __version__
from cardsmith.core.errors import (
    AcquisitionError,
    ArtifactNotFoundError,
    DownloadTimeoutError,
    NetworkError,
)
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.models.artifact import ArtifactRef
from cardsmith.protocols.io_protocols import ByteProgress


DOWNLOAD_CHUNK = 1024 * 1024
PARTIAL_SUFFIX = ".part"
GONE_STATUSES = {404, 410}


def local_path_for(locator: str) -> Path | None:
    """Path for a local or ``file://`` locator, None for remote ones."""
    parsed = urlparse(locator)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme in ("http", "https"):
        return None
    return Path(locator).expanduser()


class HttpDownloader(StructlogMixin):
    """Fetch artifacts into a working directory.

    Remote artifacts stream into ``<name>.part`` and are renamed once complete; a
    leftover partial file is resumed with an HTTP Range request. Local paths are
    returned in place.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        chunk_size: int = DOWNLOAD_CHUNK,
    ) -> None:
        super().__init__()
        self.session = session or requests.Session()
        self.session.headers.update({"user-agent": f"cardsmith/{__version__}"})
        self.timeout = timeout
        self.chunk_size = chunk_size

    def fetch(
        self,
        artifact: ArtifactRef,
        workdir: Path,
        on_progress: ByteProgress | None = None,
    ) -> Path:
        local = local_path_for(artifact.locator)
        if local is not None:
            if not local.is_file():
                raise ArtifactNotFoundError(
                    f"Image file not found: {local}", {"locator": artifact.locator}
                )
            self.logger.info("artifact_local", path=str(local))
            return local

        workdir.mkdir(parents=True, exist_ok=True)
        target = workdir / artifact.filename
        partial = target.with_name(target.name + PARTIAL_SUFFIX)

        try:
            self._download(artifact.locator, partial, on_progress)
        except requests.exceptions.Timeout as e:
            raise DownloadTimeoutError(
                f"Timed out fetching {artifact.locator}: {e}",
                {"locator": artifact.locator},
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(
                f"Connection failed for {artifact.locator}: {e}",
                {"locator": artifact.locator},
            ) from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Network error: {e}", {"locator": artifact.locator}) from e
        except OSError as e:
            raise AcquisitionError(
                f"Cannot store download in {workdir}: {e}",
                {"locator": artifact.locator},
            ) from e

        partial.replace(target)
        self.logger.info(
            "artifact_downloaded", path=str(target), size=target.stat().st_size
        )
        return target

    def _download(
        self, url: str, partial: Path, on_progress: ByteProgress | None
    ) -> None:
        offset = partial.stat().st_size if partial.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset else {}

        with self.session.get(
            url, headers=headers, stream=True, timeout=self.timeout
        ) as response:
            if response.status_code in GONE_STATUSES:
                raise ArtifactNotFoundError(
                    f"{url} returned HTTP {response.status_code}",
                    {"locator": url, "status": response.status_code},
                )
            if response.status_code == 416:
                # Range past the end: the partial file already holds everything
                self.logger.debug("download_already_complete", url=url, size=offset)
                return
            response.raise_for_status()

            if offset and response.status_code != 206:
                self.logger.info("download_resume_unsupported", url=url)
                offset = 0
            elif offset:
                self.logger.info("download_resumed", url=url, offset=offset)

            length = int(response.headers.get("content-length") or 0)
            total = offset + length if length else 0
            done = offset
            mode = "ab" if offset else "wb"
            with partial.open(mode) as fh:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if not chunk:
                        continue
                    fh.write(chunk)
                    done += len(chunk)
                    if on_progress:
                        on_progress(done, total)


__all__ = ["HttpDownloader", "local_path_for"]
