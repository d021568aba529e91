"""
Tests du stockage local du poste (cache + file de synchronisation).
Chaque test tourne sur les deux implémentations : SQLite et mémoire.
"""

import pytest
from datetime import datetime, timedelta, timezone

from reservoir.kiosk import store as store_module
from reservoir.kiosk.models import AttendeeSnapshot
from reservoir.kiosk.store import (
    MemoryLocalStore,
    SqliteLocalStore,
    UnknownAttendeeError,
    build_store,
)


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    if request.param == "sqlite":
        s = SqliteLocalStore(str(tmp_path / "offline.db"))
    else:
        s = MemoryLocalStore()
    yield s
    s.close()


def seed(store, code="abc-123", **flags):
    return store.put(AttendeeSnapshot(code=code, **flags))


# ============================================================
# Cache
# ============================================================

def test_participant_absent(store):
    assert store.get("inconnu") is None


def test_put_puis_get(store):
    seed(store, lunch_distributed=True)

    snapshot = store.get("abc-123")

    assert snapshot.code == "abc-123"
    assert snapshot.lunch_distributed is True
    assert snapshot.checked_in is False
    assert snapshot.last_updated is not None


def test_statut_ne_redescend_jamais(store):
    seed(store, lunch_distributed=True)

    store.put(AttendeeSnapshot(code="abc-123", lunch_distributed=False, kit_distributed=True))

    snapshot = store.get("abc-123")
    assert snapshot.lunch_distributed is True
    assert snapshot.kit_distributed is True


def test_upsert_snapshot_complet(store):
    count = store.upsert_many([
        AttendeeSnapshot(code="a-1"),
        AttendeeSnapshot(code="a-2", checked_in=True),
        AttendeeSnapshot(code="a-3", kit_distributed=True),
    ])

    assert count == 3
    assert [a.code for a in store.get_all()] == ["a-1", "a-2", "a-3"]


def test_upsert_conserve_un_statut_local_non_synchronise(store):
    """Un pull renvoyant False ne doit pas effacer une action hors-ligne en attente."""
    seed(store)
    store.record_action("abc-123", "lunch_distributed")

    store.upsert_many([AttendeeSnapshot(code="abc-123", lunch_distributed=False)])

    assert store.get("abc-123").lunch_distributed is True
    assert store.count_pending() == 1


def test_upsert_doublon_dans_le_snapshot(store):
    count = store.upsert_many([
        AttendeeSnapshot(code="a-1", checked_in=True),
        AttendeeSnapshot(code="a-1", kit_distributed=True),
    ])

    assert count == 2
    snapshot = store.get("a-1")
    assert snapshot.checked_in is True
    assert snapshot.kit_distributed is True


def test_filtre_par_statut(store):
    store.upsert_many([
        AttendeeSnapshot(code="a-1", lunch_distributed=True),
        AttendeeSnapshot(code="a-2"),
        AttendeeSnapshot(code="a-3", lunch_distributed=True),
    ])

    assert [a.code for a in store.filter_by_flag("lunch_distributed", True)] == ["a-1", "a-3"]
    assert [a.code for a in store.filter_by_flag("lunch_distributed", False)] == ["a-2"]


def test_filtre_statut_inconnu(store):
    with pytest.raises(ValueError):
        store.filter_by_flag("dessert_distributed", True)


# ============================================================
# File de synchronisation
# ============================================================

def test_action_met_a_jour_le_statut_et_la_file(store):
    seed(store)

    action = store.record_action("abc-123", "kit_distributed")

    assert action.id is not None
    assert action.synced is False
    assert store.get("abc-123").kit_distributed is True
    pending = store.list_pending()
    assert len(pending) == 1
    assert pending[0].code == "abc-123"
    assert pending[0].action_type == "kit_distributed"


def test_action_participant_absent_du_cache(store):
    with pytest.raises(UnknownAttendeeError):
        store.record_action("inconnu", "lunch_distributed")
    assert store.list_pending() == []


def test_action_type_inconnu(store):
    seed(store)
    with pytest.raises(ValueError):
        store.record_action("abc-123", "dessert_distributed")


def test_action_conditionnelle_deja_faite(store):
    seed(store, lunch_distributed=True)

    assert store.record_action("abc-123", "lunch_distributed", only_if_unset=True) is None
    assert store.list_pending() == []


def test_ordre_fifo_par_id_et_non_par_horodatage(store):
    """L'horloge du poste peut reculer : seul l'ordre d'insertion compte."""
    store.upsert_many([AttendeeSnapshot(code="a-1"), AttendeeSnapshot(code="a-2")])
    late = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    early = late - timedelta(hours=2)

    first = store.record_action("a-1", "lunch_distributed", timestamp=late)
    second = store.record_action("a-2", "lunch_distributed", timestamp=early)

    pending = store.list_pending()
    assert [a.id for a in pending] == [first.id, second.id]
    assert first.id < second.id


def test_marquage_idempotent(store):
    seed(store)
    action = store.record_action("abc-123", "lunch_distributed")

    assert store.mark_synced([action.id]) == 1
    assert store.mark_synced([action.id]) == 0
    assert store.list_pending() == []
    assert store.list_queue()[0].synced is True


def test_marquage_liste_vide(store):
    assert store.mark_synced([]) == 0


def test_compactage_des_actions_synchronisees(store):
    store.upsert_many([AttendeeSnapshot(code="a-1"), AttendeeSnapshot(code="a-2")])
    old = datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc)
    synced = store.record_action("a-1", "lunch_distributed", timestamp=old)
    store.record_action("a-2", "lunch_distributed", timestamp=old)
    store.mark_synced([synced.id])

    removed = store.compact_synced(old + timedelta(hours=1))

    assert removed == 1
    remaining = store.list_queue()
    assert len(remaining) == 1
    assert remaining[0].code == "a-2"


def test_statistiques(store):
    store.upsert_many([
        AttendeeSnapshot(code="a-1", checked_in=True),
        AttendeeSnapshot(code="a-2", checked_in=True, lunch_distributed=True),
        AttendeeSnapshot(code="a-3"),
    ])
    store.record_action("a-3", "kit_distributed")

    assert store.stats() == {
        "total": 3,
        "checked_in": 2,
        "lunch_distributed": 1,
        "kit_distributed": 1,
        "pending_sync": 1,
    }


# ============================================================
# Atomicité : statut + file dans une seule transaction
# ============================================================

def test_echec_en_cours_d_action_ne_laisse_aucune_trace(store, monkeypatch):
    seed(store)

    def crash(*args, **kwargs):
        raise RuntimeError("arrêt brutal")

    # Le mémoire construit une SyncAction, le SQLite une QueueEntry : les deux sont interceptées
    monkeypatch.setattr(store_module, "QueueEntry", crash)
    monkeypatch.setattr(store_module, "SyncAction", crash)

    with pytest.raises(RuntimeError):
        store.record_action("abc-123", "lunch_distributed")

    monkeypatch.undo()
    assert store.get("abc-123").lunch_distributed is False
    assert store.list_queue() == []


def test_echec_en_cours_de_snapshot_ne_modifie_pas_le_cache(store):
    seed(store, checked_in=True)

    def snapshots():
        yield AttendeeSnapshot(code="abc-123", kit_distributed=True)
        yield AttendeeSnapshot(code="def-456")
        raise RuntimeError("réponse tronquée")

    with pytest.raises(RuntimeError):
        store.upsert_many(snapshots())

    assert store.get("abc-123").kit_distributed is False
    assert store.get("def-456") is None


# ============================================================
# Durabilité SQLite et fabrique
# ============================================================

def test_sqlite_survit_a_un_redemarrage(tmp_path):
    path = str(tmp_path / "offline.db")
    first = SqliteLocalStore(path)
    first.put(AttendeeSnapshot(code="abc-123"))
    first.record_action("abc-123", "lunch_distributed")
    first.close()

    reopened = SqliteLocalStore(path)
    try:
        assert reopened.get("abc-123").lunch_distributed is True
        assert len(reopened.list_pending()) == 1
        assert reopened.list_pending()[0].timestamp.tzinfo is not None
    finally:
        reopened.close()


def test_fabrique_de_stockage(tmp_path):
    assert isinstance(build_store("memory"), MemoryLocalStore)
    sqlite_store = build_store("sqlite", str(tmp_path / "kiosk.db"))
    assert isinstance(sqlite_store, SqliteLocalStore)
    sqlite_store.close()
    with pytest.raises(ValueError):
        build_store("redis")


def test_export_etat_cache_et_file(store):
    seed(store)
    action = store.record_action("abc-123", "lunch_distributed")

    attendees, queue = store.export_state()

    assert [a.code for a in attendees] == ["abc-123"]
    assert attendees[0].lunch_distributed is True
    assert [q.id for q in queue] == [action.id]
