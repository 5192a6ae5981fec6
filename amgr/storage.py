from __future__ import annotations

import os
import secrets
import tarfile
import zipfile


class StorageError(Exception):
    pass


def validate_name(value: str, field: str) -> str:
    # Keep every target inside the managed directory.
    v = (value or "").strip()
    if not v:
        raise ValueError(f"{field} must not be empty")
    if os.path.isabs(v) or "\\" in v:
        raise ValueError(f"{field} must be a relative name")
    parts = v.split("/")
    if any(p in {"", ".", ".."} for p in parts):
        raise ValueError(f"{field} must not contain empty, '.' or '..' segments")
    return v


def is_archive(path: str) -> bool:
    try:
        return tarfile.is_tarfile(path) or zipfile.is_zipfile(path)
    except OSError:
        return False


def _check_member(into_dir: str, name: str) -> None:
    root = os.path.realpath(into_dir)
    target = os.path.realpath(os.path.join(root, name))
    if target != root and not target.startswith(root + os.sep):
        raise StorageError(f"archive member {name!r} escapes {into_dir}")


def extract(path: str, into_dir: str) -> bool:
    """Extract ``path`` into ``into_dir`` if it is an archive.

    Returns True when something was extracted.
    """
    if not is_archive(path):
        return False
    try:
        if tarfile.is_tarfile(path):
            with tarfile.open(path) as tar:
                for m in tar.getmembers():
                    _check_member(into_dir, m.name)
                    if m.issym() or m.islnk():
                        _check_member(into_dir, os.path.join(os.path.dirname(m.name), m.linkname))
                tar.extractall(into_dir, filter="data")
        else:
            with zipfile.ZipFile(path) as zf:
                for name in zf.namelist():
                    _check_member(into_dir, name)
                zf.extractall(into_dir)
    except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
        raise StorageError(f"failed to extract {path}: {e}") from e
    return True


def symlink(src: str, dst: str) -> None:
    """Point ``dst`` at ``src``, replacing an existing link atomically."""
    if os.path.isdir(dst) and not os.path.islink(dst):
        raise StorageError(f"{dst} is a directory, refusing to replace it with a symlink")
    tmp = f"{dst}.{secrets.token_hex(4)}.tmp"
    try:
        os.symlink(src, tmp)
        os.replace(tmp, dst)
    except OSError as e:
        if os.path.lexists(tmp):
            os.unlink(tmp)
        raise StorageError(f"failed to link {dst} -> {src}: {e}") from e
