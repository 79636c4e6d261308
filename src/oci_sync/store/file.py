"""
Content stores for pulled artifacts.

FileStore writes titled blobs (files and directory tarballs) under a
destination directory and keeps untitled blobs (manifests, configs) in
memory. Every named object is streamed into a private staging directory,
verified against its descriptor, and only then promoted into place with an
atomic rename, so readers of the destination never see a partial file.
"""

import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from oci_sync.core.context import SyncContext
from oci_sync.core.exceptions import StoreError, VerificationError
from oci_sync.core.models import Descriptor

logger = logging.getLogger(__name__)

STAGING_PREFIX = ".oci-sync-staging-"


class ContentStore(ABC):
    """Destination for content copied from a registry."""

    @abstractmethod
    def push(self, descriptor: Descriptor, chunks: Iterable[bytes]) -> None:
        """Write the object described by ``descriptor``."""

    @abstractmethod
    def exists(self, ctx: SyncContext, descriptor: Descriptor) -> bool:
        """Report whether the object is present in the store."""

    @abstractmethod
    def fetch(self, descriptor: Descriptor) -> bytes:
        """Read back a stored object."""

    @abstractmethod
    def tag(self, descriptor: Descriptor, reference: str) -> None:
        """Associate ``reference`` with a stored object."""

    @abstractmethod
    def close(self) -> None:
        """Release any resources held by the store."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class FileStore(ContentStore):
    """
    File-backed store rooted at a destination directory.

    One instance serves one pull attempt; create a fresh one per attempt and
    close it on every exit path.

    Staging lives inside the root (as a hidden STAGING_PREFIX directory) so
    that promotion is a same-filesystem rename. Readers of the destination can
    see it while a pull runs. Leftovers from a crashed process are removed
    when the next store opens, so a destination must belong to one artifact.
    """

    def __init__(self, root: Path):
        """Open the store, creating ``root`` and a staging area inside it."""
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            _clear_stale_staging(self._root)
            self._staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self._root))
        except OSError as e:
            raise StoreError(f"failed to create file store: {e}", path=str(self._root)) from e

        self._memory: dict[str, bytes] = {}
        self._present: dict[str, Descriptor] = {}
        self._tags: dict[str, Descriptor] = {}
        self._closed = False

    @property
    def root(self) -> Path:
        return self._root

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, descriptor: Descriptor, chunks: Iterable[bytes]) -> None:
        self._ensure_open()
        title = descriptor.title
        if not title:
            data = b"".join(chunks)
            _verify_bytes(descriptor, data)
            self._memory[descriptor.digest] = data
            self._present[descriptor.digest] = descriptor
            return

        target = _safe_output_path(self._root, title)
        staged = self._stage(descriptor, chunks)
        try:
            if descriptor.unpack:
                self._promote_directory(staged, target, title)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                os.replace(staged, target)
        except OSError as e:
            raise StoreError(f"failed to write {title}: {e}", path=str(target)) from e
        finally:
            if staged.exists():
                staged.unlink()

        self._present[descriptor.digest] = descriptor
        logger.debug(f"Stored {title} ({descriptor.digest}, {descriptor.size} bytes)")

    def exists(self, ctx: SyncContext, descriptor: Descriptor) -> bool:
        ctx.raise_if_done()
        stored = self._present.get(descriptor.digest)
        if stored is None:
            return False
        if stored.title:
            return _safe_output_path(self._root, stored.title).exists()
        return True

    def fetch(self, descriptor: Descriptor) -> bytes:
        if descriptor.digest in self._memory:
            return self._memory[descriptor.digest]
        stored = self._present.get(descriptor.digest)
        if stored is not None and stored.title and not stored.unpack:
            return _safe_output_path(self._root, stored.title).read_bytes()
        raise StoreError(f"{descriptor.digest} not found in store", path=str(self._root))

    def tag(self, descriptor: Descriptor, reference: str) -> None:
        self._ensure_open()
        if descriptor.digest not in self._present:
            raise StoreError(
                f"cannot tag {reference}: {descriptor.digest} not found", path=str(self._root)
            )
        self._tags[reference] = descriptor

    def resolve(self, reference: str) -> Descriptor | None:
        return self._tags.get(reference)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        shutil.rmtree(self._staging, ignore_errors=True)

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError("file store is closed", path=str(self._root))

    def _stage(self, descriptor: Descriptor, chunks: Iterable[bytes]) -> Path:
        """Stream chunks into a staging file, verifying size and digest."""
        staged = self._staging / uuid.uuid4().hex
        hasher = _hasher_for(descriptor)
        size = 0
        try:
            with staged.open("wb") as f:
                for chunk in chunks:
                    hasher.update(chunk)
                    size += len(chunk)
                    f.write(chunk)
            _verify(descriptor, hasher, size)
        except VerificationError:
            staged.unlink(missing_ok=True)
            raise
        except OSError as e:
            staged.unlink(missing_ok=True)
            raise StoreError(f"failed to stage {descriptor.digest}: {e}", path=str(staged)) from e
        return staged

    def _promote_directory(self, tarball: Path, target: Path, title: str) -> None:
        """Extract a directory tarball in staging, then swap it into place."""
        unpack_dir = self._staging / f"unpack-{uuid.uuid4().hex}"
        unpack_dir.mkdir()
        try:
            with tarfile.open(tarball, "r:*") as tf:
                _safe_tar_extract(tf, unpack_dir)
        except tarfile.TarError as e:
            raise VerificationError(f"invalid directory archive for {title}: {e}") from e

        extracted = unpack_dir / title
        if not extracted.is_dir():
            extracted = unpack_dir

        target.parent.mkdir(parents=True, exist_ok=True)
        backup = None
        if target.exists():
            backup = self._staging / f"previous-{uuid.uuid4().hex}"
            os.replace(target, backup)
        try:
            os.replace(extracted, target)
        except OSError:
            if backup is not None:
                os.replace(backup, target)
            raise
        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)


def _clear_stale_staging(root: Path) -> None:
    for leftover in root.glob(STAGING_PREFIX + "*"):
        if leftover.is_dir():
            logger.debug(f"Removing stale staging directory {leftover}")
            shutil.rmtree(leftover, ignore_errors=True)


def _hasher_for(descriptor: Descriptor):
    algorithm, _, _ = descriptor.digest.partition(":")
    try:
        return hashlib.new(algorithm)
    except ValueError as e:
        raise VerificationError(
            f"unsupported digest algorithm {algorithm!r}", digest=descriptor.digest
        ) from e


def _verify(descriptor: Descriptor, hasher, size: int) -> None:
    if size != descriptor.size:
        raise VerificationError(
            "size mismatch",
            digest=descriptor.digest,
            expected=str(descriptor.size),
            actual=str(size),
        )
    actual = f"{hasher.name}:{hasher.hexdigest()}"
    if actual != descriptor.digest:
        raise VerificationError(
            "digest mismatch",
            digest=descriptor.digest,
            expected=descriptor.digest,
            actual=actual,
        )


def _verify_bytes(descriptor: Descriptor, data: bytes) -> None:
    hasher = _hasher_for(descriptor)
    hasher.update(data)
    _verify(descriptor, hasher, len(data))


def _safe_output_path(base_dir: Path, relative_path: str) -> Path:
    target = (base_dir / relative_path).resolve()
    root = base_dir.resolve()
    if target == root or root not in target.parents:
        raise StoreError(f"path traversal blocked for {relative_path!r}", path=str(base_dir))
    return target


def _safe_tar_extract(tf: tarfile.TarFile, dest: Path) -> None:
    dest = dest.resolve()
    for m in tf.getmembers():
        target = (dest / m.name).resolve()
        if not str(target).startswith(str(dest) + os.sep) and target != dest:
            raise StoreError(f"unsafe tar member path: {m.name}", path=str(dest))
        if m.issym() or m.islnk():
            base = target.parent if m.issym() else dest
            link = (base / m.linkname).resolve()
            if not str(link).startswith(str(dest) + os.sep):
                raise StoreError(f"unsafe tar link: {m.name} -> {m.linkname}", path=str(dest))
    if hasattr(tarfile, "data_filter"):
        tf.extractall(dest, filter="data")
    else:
        tf.extractall(dest)
