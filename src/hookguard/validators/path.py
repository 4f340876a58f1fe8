"""
File path validator for Write and Edit.

Every path is canonicalised before any rule sees it:

1. Resolve the raw path against the project root (absolute paths are
   accepted as given) and normalise "." and ".." lexically.
2. Block if the result is not inside the project root. The root is
   checked both as given and with its symlinks resolved, so a project
   reached through a symlinked directory (e.g., /var -> /private/var)
   still contains its own files.
3. lstat the final component. A symlink is rejected; a missing file is a
   new file and fine; any other failure (permission denied, ...) asks.
   Symlinked parent directories are accepted (linked worktrees).
4. Match the configured path globs against the root-relative POSIX path.
5. For Write, enforce max_write_bytes when it is set.

Unmatched paths are allowed.
"""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from hookguard.policy.engine import RuleEngine
from hookguard.policy.resolver import reduce
from hookguard.schema import Decision, PathCall, PolicyConfig, ToolCall
from hookguard.validators.base import ValidationContext, Validator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectPath:
    """
    A path canonicalised against the project root.

    Attributes:
        absolute: Normalised absolute path
        relative: Root-relative path with "/" separators ("." for the root)
        inside: Whether the path lies inside the project root
    """

    absolute: str
    relative: str
    inside: bool


def _project_roots(project_root: Path) -> list[str]:
    given = os.path.normpath(os.path.abspath(project_root))
    roots = [given]
    real = os.path.realpath(given)
    if real != given:
        roots.append(real)
    return roots


def canonicalize(raw_path: str, project_root: Path) -> ProjectPath:
    """
    Normalise a tool path against the project root without touching the disk.

    Args:
        raw_path: Path as sent by the agent (relative or absolute)
        project_root: The project root

    Returns:
        ProjectPath; relative is "" when the path is outside the root
    """
    roots = _project_roots(project_root)
    if os.path.isabs(raw_path):
        absolute = os.path.normpath(raw_path)
    else:
        absolute = os.path.normpath(os.path.join(roots[0], raw_path))

    for root in roots:
        if absolute == root or absolute.startswith(root.rstrip(os.sep) + os.sep):
            relative = os.path.relpath(absolute, root).replace(os.sep, "/")
            return ProjectPath(absolute=absolute, relative=relative, inside=True)

    return ProjectPath(absolute=absolute, relative="", inside=False)


class PathValidator(Validator):
    """Validates Write and Edit targets."""

    tool_names = ("Write", "Edit")

    def validate(self, call: ToolCall, config: PolicyConfig, context: ValidationContext) -> Decision:
        if not isinstance(call, PathCall):
            msg = f"PathValidator cannot validate {call.kind} calls"
            raise TypeError(msg)

        target = canonicalize(call.file_path, context.project_root)
        if not target.inside:
            return Decision.block(
                f"Path traversal: {call.file_path} resolves outside the project",
                detail=f"Resolved to {target.absolute}; writes must stay under {context.project_root}",
                category="path_traversal",
            )

        try:
            info = os.lstat(target.absolute)
        except (FileNotFoundError, NotADirectoryError):
            info = None
        except (OSError, ValueError) as e:
            logger.info("Cannot inspect %s: %s", target.absolute, e)
            return Decision.ask(
                f"Cannot verify path {call.file_path}: {e}",
                detail="The target could not be inspected; confirm the write manually.",
                category="path_unverifiable",
            )

        if info is not None and stat.S_ISLNK(info.st_mode):
            return Decision.block(
                f"Refusing to {call.tool_name.lower()} through symlink {target.relative}",
                detail="Write to the link target directly if it is inside the project.",
                category="symlink_rejected",
            )

        decision = reduce(RuleEngine(config.path_rules).evaluate(target.relative))
        if decision.blocked:
            return decision

        limit = config.limits.max_write_bytes
        if call.tool_name == "Write" and limit > 0 and call.content is not None:
            size = len(call.content.encode("utf-8"))
            if size > limit:
                return Decision.block(
                    f"Write size ({size} bytes) exceeds limit ({limit})",
                    detail="Split the content or raise limits.max_write_bytes in the policy.",
                    category="write_size",
                )

        return decision
