import random

from src.sitesmith.core.history import SnapshotHistory
from src.sitesmith.domain.models import ProjectFile


def _files(*names):
    return [ProjectFile(name=n, content=f"<p>{n}</p>") for n in names]


def test_fresh_history_has_one_empty_snapshot():
    history = SnapshotHistory()
    assert len(history) == 1
    assert history.cursor == 0
    assert history.current().files == ()
    assert not history.can_undo
    assert not history.can_redo


def test_push_after_undo_discards_redo_branch():
    history = SnapshotHistory()
    history.push(_files("index.html"))
    history.push(_files("index.html", "style.css"))
    assert history.undo() is True
    cursor_before = history.cursor

    history.push(_files("about.html"))

    assert len(history) == cursor_before + 2
    assert history.cursor == len(history) - 1
    assert history.current().file_names() == ["about.html"]
    assert history.redo() is False


def test_undo_and_redo_are_noops_at_the_bounds():
    history = SnapshotHistory()
    assert history.undo() is False
    history.push(_files("index.html"))
    assert history.redo() is False
    assert history.undo() is True
    assert history.undo() is False
    assert history.cursor == 0


def test_versions_are_unique_and_compared_by_value():
    history = SnapshotHistory()
    first = history.push(_files("index.html"))
    history.undo()
    second = history.push(_files("index.html"))
    assert first.files == second.files
    assert first.version != second.version


def test_push_keeps_last_file_for_duplicate_names():
    history = SnapshotHistory()
    snap = history.push(
        [
            ProjectFile(name="index.html", content="old"),
            ProjectFile(name="app.js", content="js"),
            ProjectFile(name="index.html", content="new"),
        ]
    )
    assert snap.file_names() == ["index.html", "app.js"]
    assert snap.get("index.html").content == "new"
    assert snap.get("index.html").language == "html"
    assert snap.get("app.js").language == "javascript"


def test_from_persisted_sanitizes_history_and_cursor():
    history = SnapshotHistory.from_persisted(
        [
            {"version": 4, "files": [{"name": "index.html", "content": "x"}, {"content": "no name"}]},
            "garbage",
        ],
        7,
    )
    assert len(history) == 2
    assert history.cursor == 0
    assert history.current().file_names() == ["index.html"]

    empty = SnapshotHistory.from_persisted(None, None)
    assert len(empty) == 1
    assert empty.current().files == ()


def test_round_trip_through_dict_keeps_cursor():
    history = SnapshotHistory()
    history.push(_files("index.html"))
    history.push(_files("index.html", "style.css"))
    history.undo()
    raw = history.to_dict()
    restored = SnapshotHistory.from_persisted(raw["history"], raw["history_index"])
    assert restored.cursor == 1
    assert restored.current().version == history.current().version
    # New versions never collide with restored ones
    assert restored.push([]).version > max(s.version for s in history.snapshots)


def test_undo_then_redo_restores_any_interior_position():
    history = SnapshotHistory()
    for n in range(4):
        history.push(_files(f"page{n}.html"))

    for start in range(len(history)):
        while history.cursor > start:
            history.undo()
        while history.cursor < start:
            history.redo()
        before = history.current()

        if history.undo():
            assert history.redo() is True
        assert history.current() == before
        assert history.cursor == start
        assert len(history) == 5


def test_random_operations_match_a_list_model():
    rng = random.Random(20240611)
    history = SnapshotHistory()
    model = [()]
    cursor = 0

    for step in range(500):
        op = rng.choice(["push", "undo", "undo", "redo", "redo"])
        if op == "push":
            files = tuple(_files(f"step{step}.html"))
            history.push(files)
            model = model[: cursor + 1] + [files]
            cursor = len(model) - 1
        elif op == "undo":
            assert history.undo() is (cursor > 0)
            cursor = max(0, cursor - 1)
        else:
            assert history.redo() is (cursor < len(model) - 1)
            cursor = min(len(model) - 1, cursor + 1)

        assert 0 <= history.cursor < len(history)
        assert history.cursor == cursor
        assert len(history) == len(model)
        assert history.current().files == model[cursor]
        assert history.can_undo == (cursor > 0)
        assert history.can_redo == (cursor < len(model) - 1)
