"""Filesystem artifact store for per-unit payloads and final outputs.

Layout under the artifact directory::

    batch_1.json               validated first-pass payload (resume signal)
    batch_1.json.raw.txt       raw model response (audit)
    windows/<digest>/window_1.json
    windows/<digest>/window_1.json.raw.txt
    run_summary.json

Access is strictly sequential and single-process, so a plain
existence-check-then-write is enough.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.errors import MalformedPayloadError, PersistenceError

logger = logging.getLogger(__name__)

RAW_SUFFIX = ".raw.txt"


@dataclass(frozen=True)
class UnitKey:
    """Identifies a batch or window artifact. ``index`` is 0-based."""

    kind: str
    index: int
    namespace: str = ""

    @property
    def label(self) -> str:
        return f"{self.kind} {self.index + 1}"

    @property
    def filename(self) -> str:
        return f"{self.kind}_{self.index + 1}.json"


def dump_json(data: Any) -> str:
    """Serialize *data* the same way for every artifact and output file."""
    return json.dumps(data, ensure_ascii=False, indent=2) + "\n"


def content_digest(text: str, length: int = 12) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


class ArtifactStore:
    """Reads and writes unit artifacts and final outputs on local disk."""

    def __init__(self, artifact_dir: str | Path, output_dir: str | Path = ".") -> None:
        self.artifact_dir = Path(artifact_dir)
        self.output_dir = Path(output_dir)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    def payload_path(self, key: UnitKey) -> Path:
        base = self.artifact_dir
        if key.namespace:
            base = base / f"{key.kind}s" / key.namespace
        return base / key.filename

    def raw_path(self, key: UnitKey) -> Path:
        payload = self.payload_path(key)
        return payload.with_name(payload.name + RAW_SUFFIX)

    # ------------------------------------------------------------------
    # Unit artifacts
    # ------------------------------------------------------------------
    def has_payload(self, key: UnitKey) -> bool:
        return self.payload_path(key).is_file()

    def read_payload(self, key: UnitKey) -> Any | None:
        """Return the parsed payload for *key*, or None if it was never written.

        Raises:
            MalformedPayloadError: If the file exists but is not valid JSON.
            PersistenceError: If the file exists but cannot be read.
        """
        path = self.payload_path(key)
        if not path.is_file():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Cannot read {path}: {e}") from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedPayloadError(f"Stored payload {path} is not valid JSON: {e}") from e

    def write_payload(self, key: UnitKey, data: Any) -> Path:
        return self._write(self.payload_path(key), dump_json(data))

    def write_raw(self, key: UnitKey, content: str) -> Path:
        return self._write(self.raw_path(key), content)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------
    def write_output(self, name: str, data: Any) -> Path:
        path = self._write(self.output_dir / name, dump_json(data))
        logger.info("Wrote %s", path)
        return path

    def write_summary(self, data: dict[str, Any]) -> Path:
        return self._write(self.artifact_dir / "run_summary.json", dump_json(data))

    def _write(self, path: Path, content: str) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}") from e
        return path
