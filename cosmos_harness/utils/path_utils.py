"""
Path Utils
==========
Sandbox confinement for every path a model asks us to touch.

Responsibilities:
    - Normalise path separators to forward slashes
    - Reject empty, absolute (POSIX, drive-letter, UNC) and '..' paths
    - Reject any symlink among the existing components beneath the root
    - Canonicalise the nearest existing ancestor and require it to stay
      under the canonical sandbox root
    - Allow new files in new directories inside the sandbox

resolve_allow_new is deterministic: resolving the same request twice gives
the same absolute path.
"""
import os
import re
from pathlib import Path
from typing import Iterable, List, Union

from cosmos_harness.core.errors import HarnessError

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


class PathEscapeError(HarnessError):
    """A requested path resolves outside the sandbox root."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Path '{path}' rejected: {reason}")
        self.path = path
        self.reason = reason


def normalize_separators(path: str) -> str:
    """Convert backslashes to forward slashes."""
    return path.replace("\\", "/")


def is_within(path: Path, root: Path) -> bool:
    """True if ``path`` equals ``root`` or lies beneath it (both canonical)."""
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def relative_components(requested: str) -> list[str]:
    """
    Split a requested path into safe relative components.

    Raises
    ------
    PathEscapeError
        If the path is empty, absolute, or contains '..'.
    """
    raw = (requested or "").strip()
    if not raw:
        raise PathEscapeError(requested or "", "empty path")
    normalized = normalize_separators(raw)
    if normalized.startswith("/") or _DRIVE_RE.match(normalized):
        raise PathEscapeError(requested, "absolute paths are not allowed")
    parts = [p for p in normalized.split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        raise PathEscapeError(requested, "parent traversal ('..') is not allowed")
    if not parts:
        raise PathEscapeError(requested, "path resolves to the sandbox root itself")
    return parts


def resolve_allow_new(sandbox_root: Union[str, Path], requested: str) -> Path:
    """
    Resolve ``requested`` beneath ``sandbox_root``, allowing paths that do not
    exist yet.

    Parameters
    ----------
    sandbox_root : str or Path
        Existing sandbox directory.
    requested : str
        Model-emitted relative path.

    Returns
    -------
    Path
        Absolute path inside the canonical sandbox root.

    Raises
    ------
    PathEscapeError
        If the path escapes the sandbox or traverses a symlink.
    """
    root = Path(sandbox_root).resolve(strict=True)
    parts = relative_components(requested)

    current = root
    for part in parts:
        current = current / part
        if current.is_symlink():
            raise PathEscapeError(requested, "symlinks are not allowed")
        if not os.path.lexists(current):
            break

    candidate = root.joinpath(*parts)
    ancestor = candidate.parent
    while not ancestor.exists():
        ancestor = ancestor.parent
    if not is_within(ancestor.resolve(), root):
        raise PathEscapeError(requested, "resolves outside the sandbox")
    return candidate


def to_relative(sandbox_root: Union[str, Path], path: Union[str, Path]) -> str:
    """Sandbox-relative forward-slash form of an absolute path."""
    root = Path(sandbox_root).resolve()
    return Path(path).relative_to(root).as_posix()


def ordered_union(*groups: Iterable[str]) -> List[str]:
    """Concatenate path lists, dropping repeats while keeping first-seen order."""
    seen: dict[str, None] = {}
    for group in groups:
        for item in group:
            seen.setdefault(item, None)
    return list(seen)
