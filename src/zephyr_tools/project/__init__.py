"""Project selection and west commands."""

from .boards import find_board, find_board_directories, list_boards
from .commands import RUNNERS, ProjectCommands, ProjectError

__all__ = [
    "ProjectCommands",
    "ProjectError",
    "RUNNERS",
    "find_board",
    "find_board_directories",
    "list_boards",
]
