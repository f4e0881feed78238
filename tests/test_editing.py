import asyncio

from src.sitesmith.domain.models import ProjectFile
from src.sitesmith.infrastructure.conversation_store import InMemoryConversationStore
from src.sitesmith.services.editing import EditingService, replace_element_html

PAGE = (
    "<!DOCTYPE html>\n<html><head><title>Bakery</title></head>"
    '<body><h1 data-ai-id="title">Old name</h1><p data-ai-id="lead">Fresh</p></body></html>'
)


def _store():
    store = InMemoryConversationStore()
    store.create()
    store.push_snapshot([ProjectFile(name="index.html", content=PAGE), ProjectFile(name="style.css", content="h1{}")])
    return store


def test_replace_element_html_preserves_doctype():
    updated = replace_element_html(PAGE, "title", "New <em>name</em>")
    assert updated.startswith("<!DOCTYPE html>\n<html>")
    assert '<h1 data-ai-id="title">New <em>name</em></h1>' in updated
    assert '<p data-ai-id="lead">Fresh</p>' in updated
    assert updated.count("<!DOCTYPE html>") == 1


def test_replace_element_html_without_doctype_or_target():
    fragment = '<div data-ai-id="x">a</div>'
    assert replace_element_html(fragment, "x", "b") == '<div data-ai-id="x">b</div>'
    assert replace_element_html(fragment, "missing", "b") is None


def test_element_text_edit_pushes_snapshot_immediately():
    store = _store()
    editing = EditingService(store, debounce_seconds=10)

    snapshot = editing.apply_element_text_edit("lead", "Baked daily")

    assert snapshot is not None
    assert store.active().history_length == 3
    assert "Baked daily" in snapshot.get("index.html").content
    assert snapshot.get("style.css").content == "h1{}"
    assert editing.apply_element_text_edit("nope", "x") is None
    assert store.active().history_length == 3


def test_manual_edits_commit_latest_content_once():
    store = _store()
    editing = EditingService(store, debounce_seconds=0.01)

    async def scenario():
        editing.edit_file("style.css", "h1{color:red}")
        editing.edit_file("style.css", "h1{color:blue}")
        # Visible through the overlay before the commit
        assert store.effective_files()[1].content == "h1{color:blue}"
        assert store.active().history_length == 2
        await editing.flush()

    asyncio.run(scenario())

    conv = store.active()
    assert conv.history_length == 3
    assert not conv.has_overlay
    assert conv.files[1].content == "h1{color:blue}"
    assert editing.last_commit.version == store.current_snapshot().version


def test_manual_edit_dropped_when_history_moves_first():
    store = _store()
    editing = EditingService(store, debounce_seconds=0.01)

    async def scenario():
        editing.edit_file("index.html", "<p>draft</p>")
        store.undo()
        await editing.flush()

    asyncio.run(scenario())

    conv = store.active()
    assert conv.history_length == 2
    assert conv.history_index == 0
    assert editing.last_commit is None


def test_manual_edit_of_new_file_adds_it():
    store = _store()
    editing = EditingService(store, debounce_seconds=0)

    async def scenario():
        editing.edit_file("app.js", "console.log('hi')")
        await editing.flush()

    asyncio.run(scenario())
    assert [f.name for f in store.active().files] == ["index.html", "style.css", "app.js"]
    assert store.active().files[2].language == "javascript"
