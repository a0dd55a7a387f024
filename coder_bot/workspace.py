"""Workspace path containment helpers shared by the agent and its tools."""

from pathlib import Path

from coder_bot.exceptions import WorkspaceError


def is_within_workspace(path: Path | str, workspace_root: Path | str) -> bool:
    """Return True when *path* resolves to the root or somewhere below it."""
    resolved = Path(path).expanduser().resolve()
    root = Path(workspace_root).expanduser().resolve()
    return resolved == root or root in resolved.parents


def resolve_in_workspace(
    path: Path | str,
    workspace_root: Path | str,
    base: Path | str | None = None,
) -> Path:
    """Resolve *path* (relative paths against *base*, default the root).

    Raises:
        WorkspaceError: the resolved path escapes the workspace root.
    """
    root = Path(workspace_root).expanduser().resolve()
    raw = Path(str(path)).expanduser()
    anchor = Path(base).expanduser().resolve() if base is not None else root
    resolved = raw.resolve() if raw.is_absolute() else (anchor / raw).resolve()
    if not is_within_workspace(resolved, root):
        raise WorkspaceError(str(resolved), str(root))
    return resolved


def truncate_output(output: str, max_length: int) -> str:
    """Clip *output* to *max_length* chars with an omission marker."""
    if len(output) <= max_length:
        return output
    return output[:max_length] + f"\n... [Output truncated, {len(output) - max_length} characters omitted]"
