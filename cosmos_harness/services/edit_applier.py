"""
Edit Applier
============
Materialises model-emitted file changes inside the sandbox.

Two-phase application:
    prepare(changes)  — pure: resolves every path (PathEscapeError), applies
                        edit lists in memory (EditApplyError), normalises
                        bodies. Nothing touches disk, so a bad path anywhere
                        in the response means nothing is written.
    commit(prepared)  — captures a FileSnapshot once per path, then writes
                        each file atomically (sibling temp file → fsync →
                        os.replace). File I/O runs in a worker thread.

Snapshots:
    - Exactly one FileSnapshot per path per run, taken before the first write
    - Later writes overwrite in place; edit_kind is always computed against
      the snapshot (create / modify / delete)
    - rollback() restores every snapshot; it is never invoked implicitly
"""
import asyncio
import contextlib
import logging
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from cosmos_harness.core.errors import HarnessError
from cosmos_harness.models.fix_result import (
    AppliedFix,
    DeleteFileChange,
    EditKind,
    EditListChange,
    FileSnapshot,
    ReplaceFileChange,
)
from cosmos_harness.utils.cancellation import CancellationToken
from cosmos_harness.utils.content_normalizer import normalize_generated_content
from cosmos_harness.utils.edit_ops import EditApplyError, apply_edits
from cosmos_harness.utils.path_utils import resolve_allow_new, to_relative

logger = logging.getLogger(__name__)

_NEW_FILE_MODE = 0o644


class WriteError(HarnessError):
    """A file could not be read or written inside the sandbox."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to write '{path}': {reason}")
        self.path = path
        self.reason = reason


@dataclass
class PreparedChange:
    path: str                       # sandbox-relative, forward slashes
    abs_path: Path
    new_content: Optional[str]      # None = delete


# ---------------------------------------------------------------------------
# Atomic file helpers
# ---------------------------------------------------------------------------
def atomic_write(path: Path, content: str) -> None:
    """
    Write ``content`` to ``path`` via a sibling temp file and ``os.replace``.

    The temp name is short and independent of the target name, so targets
    near the file-name length limit still write.

    Raises
    ------
    WriteError
        If stat, temp creation, writing or renaming fails; the temp file is removed.
    """
    tmp: Optional[str] = None
    try:
        mode = _NEW_FILE_MODE
        if path.exists():
            mode = stat.S_IMODE(path.stat().st_mode)
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except OSError as exc:
        if tmp is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
        raise WriteError(str(path), str(exc)) from exc


def read_text_exact(path: Path) -> Optional[str]:
    """Read a UTF-8 file without newline translation; None if it does not exist."""
    try:
        if not path.exists():
            return None
        if path.is_dir():
            raise WriteError(str(path), "path is a directory")
        with open(path, "r", encoding="utf-8", newline="") as fh:
            return fh.read()
    except UnicodeDecodeError as exc:
        raise WriteError(str(path), "not a UTF-8 text file") from exc
    except OSError as exc:
        raise WriteError(str(path), str(exc)) from exc


# ---------------------------------------------------------------------------
# Edit Applier
# ---------------------------------------------------------------------------
class EditApplier:
    """
    Applies structured file changes beneath a sandbox root.

    Parameters
    ----------
    sandbox_root : str or Path
        Existing directory; every write must resolve strictly beneath it.
    """

    def __init__(self, sandbox_root: Union[str, Path]) -> None:
        self.root = Path(sandbox_root).resolve(strict=True)
        if not self.root.is_dir():
            raise NotADirectoryError(f"Sandbox root is not a directory: {self.root}")
        self._snapshots: Dict[str, FileSnapshot] = {}
        self._current: Dict[str, Optional[str]] = {}

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def resolve(self, requested: str) -> tuple[str, Path]:
        """Return (sandbox-relative path, absolute path); raises PathEscapeError."""
        abs_path = resolve_allow_new(self.root, requested)
        return to_relative(self.root, abs_path), abs_path

    def read_current(self, path: str) -> Optional[str]:
        """Latest content for ``path``: in-memory map first, then disk."""
        rel, abs_path = self.resolve(path)
        if rel in self._current:
            return self._current[rel]
        return read_text_exact(abs_path)

    def old_content(self, path: str) -> str:
        """Content captured before the first edit ("" for new files)."""
        rel, _ = self.resolve(path)
        snapshot = self._snapshots.get(rel)
        if snapshot is None or snapshot.old_content is None:
            return ""
        return snapshot.old_content

    @property
    def snapshots(self) -> Dict[str, FileSnapshot]:
        return dict(self._snapshots)

    def touched_paths(self) -> List[str]:
        return list(self._snapshots)

    def current_contents(self) -> Dict[str, Optional[str]]:
        """Latest content of every touched path (None = deleted)."""
        return {path: self._current.get(path) for path in self._snapshots}

    def applied_files(self) -> List[AppliedFix]:
        """Net effect of the run per touched path, relative to its snapshot."""
        applied: List[AppliedFix] = []
        for path, snapshot in self._snapshots.items():
            new = self._current.get(path)
            kind = self._edit_kind(snapshot.old_content, new)
            if kind is None or (kind is EditKind.MODIFY and new == snapshot.old_content):
                continue
            applied.append(AppliedFix(path=path, new_content=new, edit_kind=kind))
        return applied

    @staticmethod
    def _edit_kind(old: Optional[str], new: Optional[str]) -> Optional[EditKind]:
        if old is None and new is None:
            return None
        if old is None:
            return EditKind.CREATE
        if new is None:
            return EditKind.DELETE
        return EditKind.MODIFY

    # -------------------------------------------------------------------
    # Phase 1: prepare (pure)
    # -------------------------------------------------------------------
    def prepare(self, changes: Sequence[Union[ReplaceFileChange, EditListChange, DeleteFileChange]]) -> List[PreparedChange]:
        """
        Validate and compute new contents for ``changes`` without writing.

        Parameters
        ----------
        changes : sequence of file changes
            Tagged changes in the order the model emitted them.

        Returns
        -------
        list of PreparedChange
            One entry per distinct path, in first-seen order.

        Raises
        ------
        PathEscapeError
            If any path escapes the sandbox (checked for all changes first).
        EditApplyError
            If an edit list cannot be applied or a delete targets nothing.
        WriteError
            If an existing target cannot be read.
        """
        resolved = [(change, *self.resolve(change.path)) for change in changes]

        working: Dict[str, Optional[str]] = {}
        prepared: Dict[str, PreparedChange] = {}
        for change, rel, abs_path in resolved:
            current = working[rel] if rel in working else self.read_current(rel)

            if isinstance(change, ReplaceFileChange):
                new_content: Optional[str] = normalize_generated_content(change.content)
            elif isinstance(change, EditListChange):
                edited = apply_edits(current or "", change.edits, rel)
                new_content = normalize_generated_content(edited)
            else:
                if current is None:
                    raise EditApplyError(f"Cannot delete {rel}: file does not exist", path=rel)
                new_content = None

            working[rel] = new_content
            prepared[rel] = PreparedChange(path=rel, abs_path=abs_path, new_content=new_content)
        return list(prepared.values())

    # -------------------------------------------------------------------
    # Phase 2: commit (file I/O)
    # -------------------------------------------------------------------
    async def commit(
        self,
        prepared: Sequence[PreparedChange],
        cancel: Optional[CancellationToken] = None,
    ) -> List[AppliedFix]:
        """
        Write prepared changes in order.

        Returns
        -------
        list of AppliedFix
            One per written change, edit_kind relative to the snapshot.

        Raises
        ------
        WriteError
            If any write fails (earlier writes stay on disk).
        RunCancelled
            If cancellation is requested between writes.
        """
        applied: List[AppliedFix] = []
        for change in prepared:
            if cancel is not None:
                cancel.raise_if_cancelled()
            await asyncio.to_thread(self._commit_one, change)
            kind = self._edit_kind(self._snapshots[change.path].old_content, change.new_content)
            if kind is not None:
                applied.append(AppliedFix(path=change.path, new_content=change.new_content, edit_kind=kind))
            logger.info("Applied %s (%s)", change.path, kind.value if kind else "no-op")
        return applied

    def _commit_one(self, change: PreparedChange) -> None:
        if change.path not in self._snapshots:
            self._snapshots[change.path] = FileSnapshot(
                path=change.path, old_content=read_text_exact(change.abs_path),
            )

        if change.new_content is None:
            try:
                if change.abs_path.exists():
                    change.abs_path.unlink()
            except OSError as exc:
                raise WriteError(change.path, str(exc)) from exc
        else:
            try:
                change.abs_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise WriteError(change.path, str(exc)) from exc
            atomic_write(change.abs_path, change.new_content)
        self._current[change.path] = change.new_content

    # -------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------
    def rollback(self) -> List[str]:
        """
        Restore every snapshot. Returns the restored paths.

        Raises
        ------
        WriteError
            If a file cannot be restored.
        """
        restored: List[str] = []
        for path, snapshot in self._snapshots.items():
            abs_path = self.root / path
            if snapshot.old_content is None:
                if abs_path.exists():
                    try:
                        abs_path.unlink()
                    except OSError as exc:
                        raise WriteError(path, str(exc)) from exc
            else:
                abs_path.parent.mkdir(parents=True, exist_ok=True)
                atomic_write(abs_path, snapshot.old_content)
            self._current[path] = snapshot.old_content
            restored.append(path)
        logger.info("Rolled back %d file(s)", len(restored))
        return restored
