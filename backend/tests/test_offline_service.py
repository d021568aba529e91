"""
Tests unitaires pour le service de synchronisation des postes (pull + rejeu de file).
"""

import pytest
from unittest.mock import MagicMock

from reservoir.models.attendee import Attendee
from reservoir.schemas.offline import QueueAction
from reservoir.services.offline_service import (
    get_offline_attendee,
    get_offline_snapshot,
    process_queue,
)


# --- Helpers ---

def make_attendee(qr_code="abc-123", checked_in=False, lunch=False, kit=False, name="Alice Dupont"):
    a = MagicMock(spec=Attendee)
    a.id = 1
    a.name = name
    a.email = "alice@example.com"
    a.phone = None
    a.qr_code = qr_code
    a.checked_in = checked_in
    a.lunch_distributed = lunch
    a.kit_distributed = kit
    return a


def make_db(lookups=None, attendees=None):
    """
    lookups   : liste des participants retournés par chaque .scalar() successif
    attendees : liste retournée par .scalars().all() (snapshot)
    """
    db = MagicMock()
    if attendees is not None:
        result = MagicMock()
        result.scalars.return_value.all.return_value = attendees
        db.execute.return_value = result
    else:
        results = []
        for attendee in lookups or []:
            r = MagicMock()
            r.scalar.return_value = attendee
            results.append(r)
        db.execute.side_effect = results
    return db


def action(qr_code="abc-123", action_type="lunch_distributed"):
    return QueueAction(qr_code=qr_code, action_type=action_type, timestamp="2026-05-01T12:00:00Z")


# ============================================================
# Snapshot (pull)
# ============================================================

def test_snapshot_contient_tous_les_participants():
    db = make_db(attendees=[
        make_attendee("a-1", checked_in=True),
        make_attendee("a-2", lunch=True, kit=True),
    ])

    snapshot = get_offline_snapshot(db)

    assert snapshot.status == "success"
    assert [a.qr_code for a in snapshot.data] == ["a-1", "a-2"]
    assert snapshot.data[0].checked_in is True
    assert snapshot.data[1].lunch_distributed is True
    assert snapshot.data[1].kit_distributed is True
    assert snapshot.timestamp is not None


def test_snapshot_statuts_null_deviennent_false():
    attendee = make_attendee()
    attendee.lunch_distributed = None
    db = make_db(attendees=[attendee])

    snapshot = get_offline_snapshot(db)

    assert snapshot.data[0].lunch_distributed is False


def test_snapshot_vide():
    db = make_db(attendees=[])
    assert get_offline_snapshot(db).data == []


def test_consultation_participant_introuvable():
    db = make_db(lookups=[None])
    with pytest.raises(ValueError, match="introuvable"):
        get_offline_attendee(db, "inconnu")


def test_consultation_participant():
    db = make_db(lookups=[make_attendee(kit=True)])
    detail = get_offline_attendee(db, "abc-123")
    assert detail.name == "Alice Dupont"
    assert detail.kit_distributed is True
    assert detail.lunch_distributed is False


# ============================================================
# Rejeu de file (push)
# ============================================================

def test_action_appliquee():
    attendee = make_attendee()
    db = make_db(lookups=[attendee])

    report = process_queue(db, [action()])

    assert report.status == "completed"
    result = report.results[0]
    assert result.status == "success"
    assert result.synced is True
    assert result.qr_code == "abc-123"
    assert result.action_type == "lunch_distributed"
    assert attendee.lunch_distributed is True
    db.commit.assert_called_once()


def test_action_deja_satisfaite_warning_synchronisee():
    """Le serveur a déjà le statut à True → warning, mais l'action peut quitter la file."""
    db = make_db(lookups=[make_attendee(lunch=True)])

    result = process_queue(db, [action()]).results[0]

    assert result.status == "warning"
    assert result.synced is True


def test_participant_inconnu_reste_en_file():
    db = make_db(lookups=[None])

    result = process_queue(db, [action(qr_code="inconnu")]).results[0]

    assert result.status == "error"
    assert result.message == "Attendee not found"
    assert result.synced is False


def test_action_mal_formee():
    db = make_db(lookups=[])

    result = process_queue(db, [QueueAction(action_type="lunch_distributed")]).results[0]

    assert result.status == "error"
    assert result.message == "Invalid action data"
    assert result.synced is False
    db.execute.assert_not_called()


def test_type_action_inconnu():
    db = make_db(lookups=[])

    result = process_queue(db, [action(action_type="dessert_distributed")]).results[0]

    assert result.status == "error"
    assert result.message == "Unknown action type"
    assert result.synced is False


def test_check_in_accepte_en_rejeu():
    attendee = make_attendee()
    db = make_db(lookups=[attendee])

    result = process_queue(db, [action(action_type="checked_in")]).results[0]

    assert result.status == "success"
    assert attendee.checked_in is True


def test_doublon_dans_le_meme_batch():
    """Deux actions identiques : la première s'applique, la seconde est un warning."""
    attendee = make_attendee()
    # Le même objet est retourné deux fois ; on simule autoflush=False en gardant le statut d'origine
    first, second = MagicMock(), MagicMock()
    first.scalar.return_value = attendee
    stale = make_attendee()
    second.scalar.return_value = stale
    db = MagicMock()
    db.execute.side_effect = [first, second]

    results = process_queue(db, [action(), action()]).results

    assert [r.status for r in results] == ["success", "warning"]
    assert all(r.synced for r in results)


def test_un_resultat_par_action_dans_l_ordre():
    db = make_db(lookups=[make_attendee("a-1"), None, make_attendee("a-3", kit=True)])

    results = process_queue(db, [
        action("a-1", "lunch_distributed"),
        action("a-2", "lunch_distributed"),
        action("a-3", "kit_distributed"),
    ]).results

    assert [r.qr_code for r in results] == ["a-1", "a-2", "a-3"]
    assert [r.status for r in results] == ["success", "error", "warning"]
    db.commit.assert_called_once()
