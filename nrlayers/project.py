import logging
from pathlib import Path
from typing import Final

from nrlayers.exceptions import ManifestNotFoundError

logger = logging.getLogger(__name__)

MANIFEST_FILENAMES: Final = ("serverless.yml", "serverless.yaml")


def find_manifest(start: Path | None = None) -> Path:
    """Find serverless.yml by walking up from start (defaults to the current directory).

    Raises ManifestNotFoundError if not found.
    """
    current = (start or Path.cwd()).resolve()

    while True:
        for filename in MANIFEST_FILENAMES:
            candidate = current / filename
            if candidate.is_file():
                logger.debug("Found manifest: %s", candidate)
                return candidate
        if current == current.parent:
            break
        current = current.parent

    raise ManifestNotFoundError(
        "Could not find serverless.yml in the current or parent directories"
    )
