"""Model store: locate, download and read the model file and its labels.

A model comes either from a local path or from a HuggingFace repo, in which
case it is downloaded into ``models_dir`` once and reused afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download

from liteclassify.ml.errors import LabelLoadError, ModelLoadError

if TYPE_CHECKING:
    from liteclassify.config import Settings

logger = logging.getLogger(__name__)


class ModelStore:
    """Resolves the configured model and label files."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._paths: dict[str, Path] = {}

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, filename: str) -> Path:
        """Download a file from the configured repo if not already present locally."""
        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise ModelLoadError("No model source configured; set LITECLASSIFY_MODEL_PATH or LITECLASSIFY_MODEL_REPO_ID")

        cached = self._paths.get(filename)
        if cached is not None and cached.exists():
            return cached

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=filename,
                    subfolder=self._settings.model_subfolder,
                    local_dir=str(self._models_dir),
                )
            )
        except OSError as exc:
            raise ModelLoadError(f"Cannot download {filename} from {repo_id}: {exc}") from exc
        self._paths[filename] = downloaded
        logger.info("Downloaded %s from %s to %s", filename, repo_id, downloaded)
        return downloaded

    def model_file(self) -> Path:
        if self._settings.model_path is not None:
            return Path(self._settings.model_path)
        return self.ensure_downloaded(self._settings.model_filename)

    def labels_file(self) -> Path:
        if self._settings.labels_path is not None:
            return Path(self._settings.labels_path)
        try:
            return self.ensure_downloaded(self._settings.labels_filename)
        except ModelLoadError as exc:
            raise LabelLoadError(str(exc)) from exc

    def read_model_bytes(self) -> bytes:
        """Return the raw model file contents.

        Raises:
            ModelLoadError: If the file cannot be located or read.
        """
        path = self.model_file()
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise ModelLoadError(f"Cannot read model file {path}: {exc}") from exc
        if not data:
            raise ModelLoadError(f"Model file {path} is empty")
        logger.info("Read model %s (%d bytes)", path, len(data))
        return data

    def load_labels(self) -> list[str]:
        """Return labels in output-index order, one per non-blank line.

        Raises:
            LabelLoadError: If the file cannot be read or holds no labels.
        """
        path = self.labels_file()
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise LabelLoadError(f"Cannot read labels file {path}: {exc}") from exc

        labels = [line.strip() for line in text.splitlines() if line.strip()]
        if not labels:
            raise LabelLoadError(f"Labels file {path} is empty")
        logger.info("Loaded %d labels from %s", len(labels), path)
        return labels
