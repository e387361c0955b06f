import logging

import pytest

from route_monitor.models import PageWindow
from route_monitor.reconciler import ViewReconciler
from tests.mocks.fake_daemon import RecordingSink, make_item


def window(*items, page=1, total=None):
    return PageWindow("movies", page, 25, list(items), len(items) if total is None else total)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def reconciler(sink):
    return ViewReconciler(sink)


def test_first_render_creates_every_row(reconciler, sink):
    result = reconciler.reconcile("movies", None, window(make_item("a"), make_item("b")))
    assert list(result.handles) == ["a", "b"]
    assert sink.created == ["a", "b"]
    assert result.created == 2
    assert sink.frames == 1
    assert set(sink.cells("movies")["a"]) == {"name", "transfer", "size", "health", "pieces"}


def test_reconciling_the_same_window_twice_is_idempotent(reconciler, sink):
    page = window(make_item("a"), make_item("b", seeders=0))
    first = reconciler.reconcile("movies", None, page)
    sink.reset_counts()

    second = reconciler.reconcile("movies", first.handles, page)

    assert sink.mutations == 0
    assert second.mutations == 0
    assert second.handles["a"] is first.handles["a"]


def test_only_changed_cells_are_written(reconciler, sink):
    first = reconciler.reconcile("movies", None, window(make_item("a", seeders=1), make_item("b")))
    sink.reset_counts()

    reconciler.reconcile("movies", first.handles, window(make_item("a", seeders=9), make_item("b")))

    assert sink.updated == [("a", "health")]
    assert sink.created == []
    assert sink.removed == []


@pytest.mark.parametrize("before, after", [
    (["a", "b"], ["b", "c"]),
    (["a"], []),
    ([], ["x", "y", "z"]),
    (["a", "b", "c"], ["c", "b", "a"]),
])
def test_handle_set_always_equals_window_ids(reconciler, before, after):
    first = reconciler.reconcile("movies", None, window(*[make_item(i) for i in before]))
    result = reconciler.reconcile("movies", first.handles, window(*[make_item(i) for i in after]))
    assert set(result.handles) == set(after)


def test_empty_window_removes_everything_and_inserts_nothing(reconciler, sink):
    first = reconciler.reconcile("movies", None, window(make_item("a"), make_item("b")))
    sink.reset_counts()

    result = reconciler.reconcile("movies", first.handles, window())

    assert result.handles == {}
    assert sorted(sink.removed) == ["a", "b"]
    assert sink.created == []
    assert sink.cells("movies") == {}


def test_new_rows_follow_arrival_order(reconciler, sink):
    first = reconciler.reconcile("movies", None, window(make_item("b")))
    result = reconciler.reconcile("movies", first.handles, window(make_item("c"), make_item("b"), make_item("a")))
    assert sink.created == ["b", "c", "a"]
    assert list(result.handles) == ["c", "b", "a"]


def test_duplicate_ids_keep_the_first_occurrence_and_warn(reconciler, sink, caplog):
    with caplog.at_level(logging.WARNING, logger="route_monitor.reconciler"):
        result = reconciler.reconcile("movies", None, window(make_item("a", seeders=0), make_item("a", seeders=5)))
    assert list(result.handles) == ["a"]
    assert sink.created == ["a"]
    assert "0/" in sink.cells("movies")["a"]["health"]
    assert "Duplicate torrent 'a'" in caplog.text


def test_preserved_rows_keep_their_cells(reconciler, sink):
    first = reconciler.reconcile("movies", None, window(make_item("a", seeders=1), make_item("b", seeders=1)))
    sink.reset_counts()

    result = reconciler.reconcile("movies", first.handles,
                                  window(make_item("a", seeders=7), make_item("b", seeders=7)), preserve={"a"})

    assert sink.updated == [("b", "health")]
    assert set(result.handles) == {"a", "b"}


def test_preserved_rows_are_still_removed_when_gone(reconciler, sink):
    first = reconciler.reconcile("movies", None, window(make_item("a"), make_item("b")))
    result = reconciler.reconcile("movies", first.handles, window(make_item("b")), preserve={"a"})
    assert set(result.handles) == {"b"}
    assert "a" in sink.removed
