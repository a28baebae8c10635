from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Mapping, Protocol

from .exceptions import ArtifactNotFoundError, StoreError
from .rotation import (
    ARTIFACT_NAMES,
    CA_KEY_NAME,
    LEAF_CERT_NAME,
    LEAF_KEY_NAME,
    ArtifactBundle,
)

DATA_LINK_NAME = "..data"
_PRIVATE_NAMES = {CA_KEY_NAME, LEAF_KEY_NAME}

_logger = logging.getLogger("cert_rotator.store")


def _is_version_name(name: str) -> bool:
    # Version directories are direct children created by mkdtemp(prefix="..").
    return (
        name.startswith("..")
        and name != DATA_LINK_NAME
        and os.sep not in name
        and (os.altsep is None or os.altsep not in name)
        and name.strip(".") != ""
    )


class ArtifactStore(Protocol):
    """Named blob storage for the four rotation artifacts."""

    def load(self, name: str) -> bytes:
        """Return the blob stored under name or raise ArtifactNotFoundError."""

    def save(self, bundle: ArtifactBundle) -> None:
        """Persist all four blobs of bundle in one operation."""


def load_bundle(store: ArtifactStore) -> ArtifactBundle:
    data: dict[str, bytes] = {}
    for name in ARTIFACT_NAMES:
        try:
            data[name] = store.load(name)
        except ArtifactNotFoundError:
            _logger.debug("Artifact %s not found; treating as empty.", name)
    return ArtifactBundle.from_mapping(data)


class MemoryArtifactStore:
    """Dict-backed store, mostly for tests and embedding."""

    def __init__(self, initial: Mapping[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})
        self.save_count = 0

    def load(self, name: str) -> bytes:
        try:
            return self._data[name]
        except KeyError as exc:
            raise ArtifactNotFoundError(f"No artifact named {name}.") from exc

    def save(self, bundle: ArtifactBundle) -> None:
        self._data = bundle.to_mapping()
        self.save_count += 1


class DirectoryArtifactStore:
    """
    Store artifacts as files in a certificate directory.

    The layout mirrors a mounted secret volume: each name is a symlink into
    a versioned directory reached through the `..data` link. save() writes a
    complete new version and then swaps `..data` with a single rename, so
    readers see either the old four files or the new four files.
    """

    def __init__(self, cert_dir: str | Path) -> None:
        self._cert_dir = Path(cert_dir)

    @property
    def cert_dir(self) -> Path:
        return self._cert_dir

    def load(self, name: str) -> bytes:
        if name not in ARTIFACT_NAMES:
            raise ArtifactNotFoundError(f"Unknown artifact name {name}.")
        path = self._cert_dir / name
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ArtifactNotFoundError(f"Artifact file not found: {path}") from exc
        except OSError as exc:
            raise StoreError(f"Failed to read {path}: {exc}") from exc

    def save(self, bundle: ArtifactBundle) -> None:
        data_link = self._cert_dir / DATA_LINK_NAME
        version_dir: Path | None = None
        try:
            self._cert_dir.mkdir(parents=True, exist_ok=True)
            previous = os.readlink(data_link) if data_link.is_symlink() else None
            version_dir = Path(tempfile.mkdtemp(prefix="..", dir=self._cert_dir))
            for name, blob in bundle.to_mapping().items():
                target = version_dir / name
                target.write_bytes(blob)
                if name in _PRIVATE_NAMES:
                    target.chmod(0o600)
                else:
                    target.chmod(0o644)
            os.chmod(version_dir, 0o755)

            self._replace_with_symlink(data_link, version_dir.name)
            for name in ARTIFACT_NAMES:
                link = self._cert_dir / name
                if not link.is_symlink():
                    self._replace_with_symlink(link, f"{DATA_LINK_NAME}/{name}")
        except OSError as exc:
            _logger.exception("Failed to save artifacts to %s", self._cert_dir)
            if version_dir is not None and not self._is_current(version_dir.name):
                shutil.rmtree(version_dir, ignore_errors=True)
            raise StoreError(f"Failed to save artifacts to {self._cert_dir}: {exc}") from exc

        if previous and previous != version_dir.name:
            if _is_version_name(previous):
                shutil.rmtree(self._cert_dir / previous, ignore_errors=True)
            else:
                _logger.warning("Not removing previous version outside %s: %s", self._cert_dir, previous)
        _logger.info("Saved artifacts to %s (version=%s)", self._cert_dir, version_dir.name)

    def _is_current(self, version_name: str) -> bool:
        data_link = self._cert_dir / DATA_LINK_NAME
        return data_link.is_symlink() and os.readlink(data_link) == version_name

    def _replace_with_symlink(self, path: Path, target: str) -> None:
        staging = path.with_name(f"{path.name}.tmp")
        if staging.is_symlink() or staging.exists():
            staging.unlink()
        os.symlink(target, staging)
        os.replace(staging, path)


def ensure_certs_mounted(cert_dir: str | Path) -> bool:
    """True once the serving certificate is present in cert_dir."""
    return (Path(cert_dir) / LEAF_CERT_NAME).is_file()
