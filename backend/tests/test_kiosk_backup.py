"""
Tests des sauvegardes JSON du poste et de leur rotation.
"""

import json
from datetime import datetime, timedelta, timezone

from reservoir.kiosk.backup import BackupExporter
from reservoir.kiosk.models import AttendeeSnapshot
from reservoir.kiosk.store import MemoryLocalStore


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        current = self.now
        self.now += timedelta(minutes=10)
        return current


def make_store():
    store = MemoryLocalStore()
    store.upsert_many([AttendeeSnapshot(code="abc-123"), AttendeeSnapshot(code="def-456", checked_in=True)])
    store.record_action("abc-123", "lunch_distributed")
    return store


def test_contenu_de_la_sauvegarde(tmp_path):
    exporter = BackupExporter(make_store(), str(tmp_path / "backups"))

    result = exporter.create_backup()

    with open(result.path, encoding="utf-8") as f:
        document = json.load(f)
    assert document["timestamp"] == result.timestamp
    assert [a["code"] for a in document["attendees"]] == ["abc-123", "def-456"]
    assert document["attendees"][0]["lunch_distributed"] is True
    assert len(document["syncQueue"]) == 1
    assert document["syncQueue"][0]["action_type"] == "lunch_distributed"
    assert document["syncQueue"][0]["synced"] is False


def test_rotation_garde_les_dix_plus_recentes(tmp_path):
    clock = FakeClock(datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc))
    exporter = BackupExporter(make_store(), str(tmp_path), retention=10, clock=clock)

    paths = [exporter.create_backup().path for _ in range(12)]

    remaining = [str(p) for p in exporter.list_backups()]
    assert len(remaining) == 10
    assert remaining == paths[2:]


def test_retention_nulle_garde_tout(tmp_path):
    clock = FakeClock(datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc))
    exporter = BackupExporter(make_store(), str(tmp_path), retention=0, clock=clock)

    for _ in range(3):
        exporter.create_backup()

    assert len(exporter.list_backups()) == 3


def test_aucun_fichier_temporaire_restant(tmp_path):
    exporter = BackupExporter(make_store(), str(tmp_path))
    exporter.create_backup()

    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []


def test_dossier_inexistant(tmp_path):
    exporter = BackupExporter(MemoryLocalStore(), str(tmp_path / "absent"))
    assert exporter.list_backups() == []


class InterleavingStore(MemoryLocalStore):
    """Une action est enregistrée entre la lecture du cache et celle de la file."""

    def get_all(self):
        attendees = super().get_all()
        self.record_action("def-456", "kit_distributed")
        return attendees


def test_sauvegarde_coherente_cache_et_file(tmp_path):
    store = InterleavingStore()
    store.upsert_many([AttendeeSnapshot(code="def-456")])
    exporter = BackupExporter(store, str(tmp_path))

    with open(exporter.create_backup().path, encoding="utf-8") as f:
        document = json.load(f)

    queued = {q["code"] for q in document["syncQueue"] if not q["synced"]}
    for attendee in document["attendees"]:
        if attendee["code"] in queued:
            assert attendee["kit_distributed"] is True


def test_compactage_apres_rotation(tmp_path):
    store = make_store()
    old = datetime(2026, 5, 1, 7, 0, tzinfo=timezone.utc)
    acknowledged = store.record_action("def-456", "kit_distributed", timestamp=old)
    store.mark_synced([acknowledged.id])
    clock = FakeClock(datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc))
    exporter = BackupExporter(store, str(tmp_path), clock=clock)

    result = exporter.create_backup()

    assert result.compacted == 1
    # L'action acquittée reste dans la sauvegarde, la file locale ne garde que l'action en attente
    with open(result.path, encoding="utf-8") as f:
        document = json.load(f)
    assert len(document["syncQueue"]) == 2
    assert [a.code for a in store.list_queue()] == ["abc-123"]


def test_pas_de_compactage_sans_retention(tmp_path):
    store = make_store()
    synced = store.list_pending()[0]
    store.mark_synced([synced.id])
    exporter = BackupExporter(store, str(tmp_path), retention=0)

    assert exporter.create_backup().compacted == 0
    assert len(store.list_queue()) == 1
