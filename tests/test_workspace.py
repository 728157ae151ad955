"""Tests for agentwire.workspace -- file map reconstruction and tree projection."""

import pytest

from agentwire.messages import classify
from agentwire.workspace import DirectoryNode, FileNode, WorkspaceStore, build_file_tree, normalize_path


def apply(store, payload):
    return store.apply(classify(payload))


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

class TestNormalizePath:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("src/app.py", "src/app.py"),
            ("/src/app.py", "src/app.py"),
            ("./src/app.py", "src/app.py"),
            ("src\\lib\\util.py", "src/lib/util.py"),
            ("src//app.py", "src/app.py"),
            ("/", ""),
            ("", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_path(raw) == expected


# ---------------------------------------------------------------------------
# Applying messages
# ---------------------------------------------------------------------------

class TestApply:

    def test_snapshot_replaces_map(self, agent_state):
        store = WorkspaceStore()
        store.write("stale.txt", "old")

        assert apply(store, agent_state) is True

        assert store.snapshot() == {"src/index.ts": "export {};", "README.md": "# Demo"}

    def test_agent_connected_with_state_is_a_snapshot(self, agent_state):
        store = WorkspaceStore()

        apply(store, {"type": "agent_connected", "state": agent_state})

        assert store.paths() == ["README.md", "src/index.ts"]

    def test_snapshot_without_files_map_leaves_workspace(self):
        store = WorkspaceStore()
        store.write("keep.txt", "1")

        changed = apply(store, {"behaviorType": "agentic", "projectType": "app"})

        assert changed is False
        assert store.paths() == ["keep.txt"]

    def test_nested_file_upsert(self):
        store = WorkspaceStore()

        apply(store, {"type": "file_generated", "file": {"filePath": "/src/a.ts", "fileContents": "a"}})
        apply(store, {"type": "file_regenerated", "file": {"filePath": "src/a.ts", "fileContents": "b"}})

        assert store.snapshot() == {"src/a.ts": "b"}

    def test_flat_file_upsert(self):
        store = WorkspaceStore()

        apply(store, {"type": "file_generated", "filePath": "b.txt", "fileContents": ""})

        assert store.read("b.txt") == ""

    def test_upsert_without_contents_is_ignored(self):
        store = WorkspaceStore()

        assert apply(store, {"type": "file_generated", "filePath": "x.txt"}) is False
        assert len(store) == 0

    def test_chunks_append_in_order(self):
        store = WorkspaceStore()

        for chunk in ["con", "sole.", "log()"]:
            apply(store, {"type": "file_chunk_generated", "filePath": "main.js", "chunk": chunk})

        assert store.read("main.js") == "console.log()"

    def test_unknown_messages_are_ignored(self):
        store = WorkspaceStore()

        assert apply(store, {"type": "future_feature", "filePath": "x"}) is False
        assert store.paths() == []

    def test_snapshot_then_delta(self):
        store = WorkspaceStore()

        apply(store, {"behaviorType": "phasic", "projectType": "app", "generatedFilesMap": {"a.txt": "1"}})
        apply(store, {"type": "file_generated", "file": {"filePath": "b/c.txt", "fileContents": "2"}})

        assert store.paths() == ["a.txt", "b/c.txt"]
        assert store.tree() == [
            DirectoryNode(name="b", path="b", children=[FileNode(name="c.txt", path="b/c.txt")]),
            FileNode(name="a.txt", path="a.txt"),
        ]


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

class TestTree:

    def test_directories_first_then_files_sorted(self):
        tree = build_file_tree(["z.txt", "a.txt", "lib/x.py", "docs/guide.md", "lib/sub/y.py"])

        assert [node.name for node in tree] == ["docs", "lib", "a.txt", "z.txt"]
        lib = tree[1]
        assert [node.name for node in lib.children] == ["sub", "x.py"]
        assert lib.children[0].children[0].path == "lib/sub/y.py"

    def test_tree_is_recomputed(self):
        store = WorkspaceStore()
        store.write("a.txt", "1")
        first = store.tree()

        store.write("b.txt", "2")

        assert len(first) == 1
        assert len(store.tree()) == 2

    def test_empty_workspace(self):
        assert WorkspaceStore().tree() == []

    def test_clear(self):
        store = WorkspaceStore()
        store.write("a.txt", "1")

        store.clear()

        assert store.snapshot() == {}
