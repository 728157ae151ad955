"""
Local reconstruction of the agent's file workspace.

The path -> contents map is the source of truth. Full snapshots from agent
state replace it; per-file messages update single entries. The directory
tree is a projection recomputed on every request.
"""

import threading
from collections.abc import Iterable, Mapping
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from agentwire.logging_config import get_logger
from agentwire.messages import AGENT_STATE_TYPE, ServerMessage

logger = get_logger(__name__)

SNAPSHOT_TYPES = (AGENT_STATE_TYPE, "agent_connected")
UPSERT_TYPES = ("file_generated", "file_regenerated")
CHUNK_TYPE = "file_chunk_generated"


class FileNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["file"] = "file"
    name: str
    path: str


class DirectoryNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["dir"] = "dir"
    name: str
    path: str
    children: list[Union["DirectoryNode", FileNode]] = Field(default_factory=list)


FileTreeNode = Union[DirectoryNode, FileNode]


def normalize_path(path: str) -> str:
    """
    Canonical workspace path: forward slashes, no leading "/" or "./", no
    empty segments. Returns "" for paths with no segments.
    """
    segments = [segment for segment in path.replace("\\", "/").split("/") if segment and segment != "."]
    return "/".join(segments)


def build_file_tree(paths: Iterable[str]) -> list[FileTreeNode]:
    """
    Build a directory tree from file paths.

    Each level lists directories first, then files, each sorted by name.

    Args:
        paths: Workspace file paths

    Returns:
        Root-level nodes
    """
    # Nested dict: directory name -> subtree, file name -> None
    root: dict[str, Optional[dict]] = {}
    for path in paths:
        segments = [segment for segment in path.split("/") if segment]
        if not segments:
            continue
        level = root
        for segment in segments[:-1]:
            child = level.get(segment)
            if child is None:
                child = {}
                level[segment] = child
            level = child
        level.setdefault(segments[-1], None)

    return _to_nodes(root, "")


def _to_nodes(level: dict[str, Optional[dict]], prefix: str) -> list[FileTreeNode]:
    directories = sorted(name for name, child in level.items() if child is not None)
    files = sorted(name for name, child in level.items() if child is None)

    nodes: list[FileTreeNode] = []
    for name in directories:
        path = f"{prefix}{name}"
        nodes.append(DirectoryNode(name=name, path=path, children=_to_nodes(level[name], f"{path}/")))
    for name in files:
        nodes.append(FileNode(name=name, path=f"{prefix}{name}"))
    return nodes


def _extract_files_map(state: object) -> Optional[dict[str, str]]:
    """Read generatedFilesMap from an agent state payload, if it has one."""
    if not isinstance(state, Mapping):
        return None
    files_map = state.get("generatedFilesMap")
    if not isinstance(files_map, Mapping):
        return None

    files: dict[str, str] = {}
    for key, value in files_map.items():
        if isinstance(value, str):
            path, contents = key, value
        elif isinstance(value, Mapping):
            path = value.get("filePath") or key
            contents = value.get("fileContents")
            if not isinstance(contents, str):
                continue
        else:
            continue
        normalized = normalize_path(str(path))
        if normalized:
            files[normalized] = contents
    return files


class WorkspaceStore:
    """
    Path -> contents map rebuilt from server messages.

    Thread-safe, although normally only touched from the event loop.
    """

    def __init__(self):
        self._files: dict[str, str] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def apply(self, message: ServerMessage) -> bool:
        """
        Fold one server message into the workspace.

        Args:
            message: Typed server message (other types are ignored)

        Returns:
            True if the workspace changed
        """
        if message.type in SNAPSHOT_TYPES:
            files = _extract_files_map(getattr(message, "state", None))
            if files is None:
                return False
            with self._lock:
                self._files = files
            logger.debug(f"Workspace snapshot: {len(files)} file(s)")
            return True

        if message.type in UPSERT_TYPES:
            path = getattr(message, "path", None) or getattr(message, "file_path", None)
            contents = getattr(message, "contents", None)
            if not path or not isinstance(contents, str):
                return False
            return self.write(path, contents)

        if message.type == CHUNK_TYPE:
            path = getattr(message, "file_path", None)
            chunk = getattr(message, "chunk", None)
            if not path or not isinstance(chunk, str):
                return False
            return self.append(path, chunk)

        return False

    def write(self, path: str, contents: str) -> bool:
        """Create or replace one file. Returns False for an empty path."""
        normalized = normalize_path(path)
        if not normalized:
            return False
        with self._lock:
            self._files[normalized] = contents
        return True

    def append(self, path: str, chunk: str) -> bool:
        """Append to one file, creating it empty first. Returns False for an empty path."""
        normalized = normalize_path(path)
        if not normalized:
            return False
        with self._lock:
            self._files[normalized] = self._files.get(normalized, "") + chunk
        return True

    # Queries

    def paths(self) -> list[str]:
        """All file paths, sorted."""
        with self._lock:
            return sorted(self._files)

    def read(self, path: str) -> Optional[str]:
        with self._lock:
            return self._files.get(normalize_path(path))

    def snapshot(self) -> dict[str, str]:
        """Copy of the path -> contents map."""
        with self._lock:
            return dict(self._files)

    def tree(self) -> list[FileTreeNode]:
        return build_file_tree(self.paths())

    def clear(self) -> None:
        with self._lock:
            self._files = {}
