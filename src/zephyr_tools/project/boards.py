"""Board discovery.

Boards are defined by ``<board>.yaml`` files somewhere below a ``boards``
directory. A workspace may hold several such directories: one at its root,
one inside each top-level folder, and Zephyr's own under ``<folder>/zephyr``.
"""

from pathlib import Path
from typing import List

SKIPPED_NAMES = ("build", ".git")


def find_board_directories(workspace_root: Path) -> List[Path]:
    """List candidate board directories in a workspace.

    Args:
        workspace_root: Workspace root folder

    Returns:
        Existing board directories, root first
    """
    workspace_root = Path(workspace_root)
    found = []

    root_boards = workspace_root / "boards"
    if root_boards.is_dir():
        found.append(root_boards)

    if not workspace_root.is_dir():
        return found

    for child in sorted(workspace_root.iterdir()):
        if not child.is_dir():
            continue
        for candidate in (child / "boards", child / "zephyr" / "boards"):
            if candidate.is_dir():
                found.append(candidate)

    return found


def list_boards(board_dir: Path) -> List[str]:
    """List the boards defined below a board directory.

    Build output and git metadata are skipped.

    Args:
        board_dir: Directory to search

    Returns:
        Sorted, de-duplicated board names
    """
    boards = set()
    pending = [Path(board_dir)]
    while pending:
        folder = pending.pop()
        for entry in folder.iterdir():
            if entry.name.endswith(".yaml") and entry.is_file():
                boards.add(entry.stem)
            elif any(skip in entry.name for skip in SKIPPED_NAMES):
                continue
            elif entry.is_dir():
                pending.append(entry)
    return sorted(boards)


def find_board(workspace_root: Path, board: str) -> Path:
    """Find the board directory that defines a board.

    Raises:
        LookupError: If no board directory in the workspace defines it
    """
    for board_dir in find_board_directories(workspace_root):
        if board in list_boards(board_dir):
            return board_dir
    raise LookupError(f"Board {board} not found in {workspace_root}")
