import pytest

import storage
from storage import (
    DATA_DIR_ENV_VAR,
    GameStore,
    InvalidSaveNameError,
    LoadError,
    PersistenceIOError,
    Snapshot,
    StorageConfig,
)


def make_snapshot(score=12):
    return Snapshot(size=2, grid=[[2, 0], [4, 8]], score=score)


# --- Snapshot format ---

def test_snapshot_text_format():
    assert make_snapshot().to_text() == "2\n2 0\n4 8\n12\n"


def test_snapshot_reads_rows_with_trailing_spaces():
    snapshot = Snapshot.from_text("2\n2 0 \n4 8 \n12\n\n")
    assert snapshot == make_snapshot()


def test_snapshot_rejects_bad_grid():
    with pytest.raises(ValueError):
        Snapshot(size=2, grid=[[2, 0, 0], [4, 8]], score=0)
    with pytest.raises(ValueError):
        Snapshot(size=2, grid=[[3, 0], [4, 8]], score=0)
    with pytest.raises(ValueError):
        Snapshot(size=2, grid=[[2, 0], [4, 8]], score=-4)


# --- Saving and loading ---

def test_save_then_load_round_trip(store):
    store.save_snapshot("first", make_snapshot())

    assert store.snapshot_path("first").read_text() == "2\n2 0\n4 8\n12\n"
    assert store.load_snapshot("first") == make_snapshot()
    assert store.list_saved_names() == ["first"]


def test_resave_overwrites_content_without_duplicating_name(store):
    store.save_snapshot("slot", make_snapshot(score=12))
    store.save_snapshot("other", make_snapshot(score=0))
    store.save_snapshot("slot", make_snapshot(score=40))

    assert store.list_saved_names() == ["slot", "other"]
    assert store.load_snapshot("slot").score == 40


def test_list_saved_names_without_index(store):
    assert store.list_saved_names() == []


def test_list_saved_names_keeps_external_duplicates(store):
    store.index_path.write_text("a\nb\na\n\n")
    assert store.list_saved_names() == ["a", "b", "a"]


def test_load_missing_snapshot(store):
    with pytest.raises(LoadError):
        store.load_snapshot("nothing-here")


@pytest.mark.parametrize("text", [
    "",
    "\n\n",
    "four\n",
    "1\n2\n0\n",
    "2\n2 0\n",
    "2\n2 0\n4 8\n",
    "2\n2 0 0\n4 8\n12\n",
    "2\n2\n4 8\n12\n",
    "2\n2 a\n4 8\n12\n",
    "2\n3 0\n4 8\n12\n",
    "2\n2 0\n4 8\n-1\n",
    "2\n2 0\n4 8\n12\n99\n",
    "2\n2 0\n4 8\n12 5\n",
])
def test_load_malformed_snapshot(store, text):
    store.saves_path.mkdir(parents=True)
    store.snapshot_path("broken").write_text(text)
    with pytest.raises(LoadError):
        store.load_snapshot("broken")


def test_load_binary_snapshot(store):
    store.saves_path.mkdir(parents=True)
    store.snapshot_path("binary").write_bytes(b"\xff\xfe\x00\x01")
    with pytest.raises(LoadError):
        store.load_snapshot("binary")


@pytest.mark.parametrize("name", ["", "   ", ".", "..", "a/b", "../escape", "a\\b", "two\nlines"])
def test_invalid_save_names(store, name):
    with pytest.raises(InvalidSaveNameError):
        store.save_snapshot(name, make_snapshot())
    with pytest.raises(LoadError):
        store.load_snapshot(name)
    assert store.list_saved_names() == []


# --- Score ledger ---

def test_high_score_with_empty_ledger(store):
    assert store.scores() == []
    assert store.current_high_score() == 0


def test_ledger_appends_every_score(store):
    for score in (120, 480, 480, 36):
        store.record_final_score(score)

    assert store.scores() == [120, 480, 480, 36]
    assert store.current_high_score() == 480
    assert store.ledger_path.read_text() == "120\n480\n480\n36\n"


def test_ledger_is_reread_on_each_query(store):
    store.record_final_score(10)
    assert store.current_high_score() == 10

    with store.ledger_path.open("a") as handle:
        handle.write("900\n")
    assert store.current_high_score() == 900


def test_ledger_skips_unreadable_lines(store):
    store.ledger_path.write_text("10\nnot a score\n\n30\n")
    assert store.scores() == [10, 30]
    assert store.current_high_score() == 30


def test_negative_score_is_rejected(store):
    with pytest.raises(ValueError):
        store.record_final_score(-5)


# --- Storage failures ---

@pytest.fixture
def broken_store(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    return GameStore(StorageConfig(data_dir=blocker))


def test_save_on_unwritable_storage(broken_store):
    with pytest.raises(PersistenceIOError):
        broken_store.save_snapshot("game", make_snapshot())


def test_ledger_on_unwritable_storage(broken_store):
    with pytest.raises(PersistenceIOError):
        broken_store.record_final_score(10)
    with pytest.raises(PersistenceIOError):
        broken_store.current_high_score()


def fail_write(path, text):
    raise OSError("disk full")


def test_failed_resave_keeps_earlier_snapshot(store, monkeypatch):
    store.save_snapshot("game", make_snapshot(score=12))

    monkeypatch.setattr(storage, "_write_atomic", fail_write)
    with pytest.raises(PersistenceIOError, match="disk full"):
        store.save_snapshot("game", make_snapshot(score=99))

    assert store.list_saved_names() == ["game"]
    assert store.load_snapshot("game").score == 12


def test_failed_first_save_lists_name_without_content(store, monkeypatch):
    monkeypatch.setattr(storage, "_write_atomic", fail_write)
    with pytest.raises(PersistenceIOError):
        store.save_snapshot("fresh", make_snapshot())

    assert store.list_saved_names() == ["fresh"]
    assert not store.snapshot_path("fresh").exists()
    with pytest.raises(LoadError):
        store.load_snapshot("fresh")


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv(DATA_DIR_ENV_VAR, str(tmp_path))
    assert StorageConfig.from_env().data_dir == tmp_path

    monkeypatch.delenv(DATA_DIR_ENV_VAR)
    assert str(StorageConfig.from_env().data_dir) == "."
