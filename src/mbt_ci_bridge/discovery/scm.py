"""Commit-to-commit change detection restricted to UFT test artifacts.

Both commit trees are walked and compared blob by blob (no git rename
detection is used). Rename pairing and the similarity fallback for
modified files follow the bridge's own rules:

* a deleted path whose blob reappears under an added path is a rename;
* a modified path whose content is at least half unchanged keeps its
  history (EDIT carrying the commit ids), otherwise it is treated as a
  new artifact at the same path (EDIT carrying the new blob id twice).
"""

from __future__ import annotations

import difflib
import logging
import posixpath
import re
from dataclasses import dataclass

from git import Repo
from git.exc import GitCommandError

from ..errors import ScmError
from .models import ChangeType, ScmAffectedFile, ToolType

logger = logging.getLogger(__name__)

RENAME_THRESHOLD = 0.5

_UFT_EXTENSIONS = re.compile(r"\.(xls|xlsx|tsp|st)$", re.IGNORECASE)
_MBT_EXTENSIONS = re.compile(r"\.(tsp|st)$", re.IGNORECASE)
_ACTIONS_XML = "ACTIONS.XML"
_RESOURCE_MTR = "RESOURCE.MTR"


@dataclass
class _RawChange:
    from_path: str | None
    to_path: str | None
    from_id: str
    to_id: str


def is_relevant_path(tool_type: ToolType, path: str) -> bool:
    """True when *path* is a file type tracked for *tool_type*."""
    name = posixpath.basename(path)
    if tool_type == ToolType.MBT:
        return bool(_MBT_EXTENSIONS.search(name)) or name.upper() in (
            _ACTIONS_XML,
            _RESOURCE_MTR,
        )
    return bool(_UFT_EXTENSIONS.search(name)) or name.upper() == _ACTIONS_XML


def _tree_blobs(repo: Repo, commit_sha: str, tool_type: ToolType) -> dict[str, str]:
    blobs: dict[str, str] = {}
    for item in repo.commit(commit_sha).tree.traverse():
        if item.type == "blob" and is_relevant_path(tool_type, item.path):
            blobs[item.path] = item.hexsha
    return blobs


def _read_blob(repo: Repo, commit_sha: str, path: str) -> str:
    blob = repo.commit(commit_sha).tree / path
    return blob.data_stream.read().decode("utf-8", errors="replace")


def _normalize_line(line: str) -> str:
    return " ".join(line.split())


def line_similarity(old_text: str, new_text: str) -> float:
    """Fraction of unchanged lines between two texts, whitespace ignored.

    The denominator counts every line once: unchanged, removed and added.
    """
    old_lines = [_normalize_line(line) for line in old_text.splitlines()]
    new_lines = [_normalize_line(line) for line in new_text.splitlines()]
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    unchanged = sum(block.size for block in matcher.get_matching_blocks())
    total = len(old_lines) + len(new_lines) - unchanged
    return unchanged / total if total > 0 else 0.0


def calculate_similarity(
    repo: Repo, old_commit: str, new_commit: str, old_path: str, new_path: str
) -> float:
    """Similarity of a path across two commits; 0 when a blob cannot be read."""
    try:
        return line_similarity(
            _read_blob(repo, old_commit, old_path),
            _read_blob(repo, new_commit, new_path),
        )
    except (KeyError, ValueError, GitCommandError) as exc:
        logger.error(
            "Failed to compute similarity for %s -> %s: %s",
            old_path,
            new_path,
            exc,
        )
        return 0.0


def _walk_changes(
    repo: Repo, tool_type: ToolType, old_commit: str, new_commit: str
) -> list[_RawChange]:
    old_blobs = _tree_blobs(repo, old_commit, tool_type)
    new_blobs = _tree_blobs(repo, new_commit, tool_type)
    changes: list[_RawChange] = []
    for path in sorted(old_blobs.keys() | new_blobs.keys()):
        from_id = old_blobs.get(path, "")
        to_id = new_blobs.get(path, "")
        if from_id == to_id:
            continue
        changes.append(
            _RawChange(
                from_path=path if from_id else None,
                to_path=path if to_id else None,
                from_id=from_id,
                to_id=to_id,
            )
        )
    return changes


def get_scm_changes(
    tool_type: ToolType, repo_dir: str, old_commit: str, new_commit: str
) -> list[ScmAffectedFile]:
    """Classify test-relevant changes between *old_commit* and *new_commit*.

    Args:
        tool_type: Selects the file allow-list.
        repo_dir: Working tree of the repository.
        old_commit: Last synchronised commit (any revision git understands).
        new_commit: Commit being synchronised.

    Returns:
        Renames/deletes first, then adds, then modifications.

    Raises:
        ScmError: The repository or one of the commits cannot be read.
    """
    try:
        repo = Repo(repo_dir)
        old_sha = repo.commit(old_commit).hexsha
        new_sha = repo.commit(new_commit).hexsha
        raw = _walk_changes(repo, tool_type, old_sha, new_sha)

        deletes = [c for c in raw if c.to_path is None]
        adds = [c for c in raw if c.from_path is None]
        modifies = [c for c in raw if c.from_path and c.to_path]

        result: list[ScmAffectedFile] = []
        paired: set[int] = set()
        for deleted in deletes:
            match = next(
                (
                    i
                    for i, added in enumerate(adds)
                    if i not in paired and added.to_id == deleted.from_id
                ),
                None,
            )
            if match is not None:
                paired.add(match)
                result.append(
                    ScmAffectedFile(
                        new_path=adds[match].to_path,
                        old_path=deleted.from_path,
                        change_type=ChangeType.EDIT,
                        old_id=old_sha,
                        new_id=new_sha,
                    )
                )
            else:
                result.append(
                    ScmAffectedFile(
                        new_path=deleted.from_path,
                        old_path=deleted.from_path,
                        change_type=ChangeType.DELETE,
                        old_id=deleted.from_id,
                        new_id="",
                    )
                )

        for i, added in enumerate(adds):
            if i in paired:
                continue
            result.append(
                ScmAffectedFile(
                    new_path=added.to_path,
                    old_path=None,
                    change_type=ChangeType.ADD,
                    old_id="",
                    new_id=added.to_id,
                )
            )

        for modified in modifies:
            similarity = calculate_similarity(
                repo, old_sha, new_sha, modified.from_path, modified.to_path
            )
            if similarity >= RENAME_THRESHOLD:
                result.append(
                    ScmAffectedFile(
                        new_path=modified.to_path,
                        old_path=modified.from_path,
                        change_type=ChangeType.EDIT,
                        old_id=old_sha,
                        new_id=new_sha,
                    )
                )
            else:
                result.append(
                    ScmAffectedFile(
                        new_path=modified.to_path,
                        old_path=modified.from_path,
                        change_type=ChangeType.EDIT,
                        old_id=modified.to_id,
                        new_id=modified.to_id,
                    )
                )
        logger.info(
            "Found %d test-relevant changes between %s and %s",
            len(result),
            old_sha[:8],
            new_sha[:8],
        )
        return result
    except ScmError:
        raise
    except Exception as exc:
        raise ScmError(f"Failed to process SCM changes: {exc}") from exc
