"""
Cache local du poste de scan + file de synchronisation (outbox).

Une seule interface, LocalStore, avec deux implémentations choisies par
configuration (KIOSK_STORE_BACKEND) :
- SqliteLocalStore : fichier SQLite durable (poste desktop)
- MemoryLocalStore : stockage embarqué en mémoire du processus

Règles communes :
- Les statuts sont monotones : put() et upsert_many() font un OU avec
  l'existant, aucune opération ne repasse un statut à False.
- record_action() modifie le participant ET ajoute l'action en file dans une
  seule transaction : les deux réussissent ou aucun n'est visible.
- list_pending() renvoie les actions par id croissant (FIFO), pas par timestamp.
- mark_synced() est idempotent.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.orm import sessionmaker

from reservoir.kiosk.models import (
    FLAGS,
    AttendeeSnapshot,
    LocalAttendee,
    LocalBase,
    QueueEntry,
    SyncAction,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Erreur du stockage local."""


class UnknownAttendeeError(StoreError):
    """QR code absent du cache local (jamais synchronisé)."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite ne conserve pas le fuseau : les dates sont toujours écrites en UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _check_flag(flag: str) -> None:
    if flag not in FLAGS:
        raise ValueError(f"Statut inconnu : {flag}")


class LocalStore(ABC):
    """Contrat du cache local + file de synchronisation."""

    # --- Cache ---

    @abstractmethod
    def get(self, code: str) -> Optional[AttendeeSnapshot]:
        """Participant par QR code, None s'il n'a jamais été synchronisé."""

    @abstractmethod
    def put(self, snapshot: AttendeeSnapshot) -> AttendeeSnapshot:
        """Upsert par QR code (statuts fusionnés avec l'existant)."""

    @abstractmethod
    def upsert_many(self, snapshots: Iterable[AttendeeSnapshot]) -> int:
        """Upsert d'un snapshot serveur complet, en une seule transaction."""

    @abstractmethod
    def get_all(self) -> List[AttendeeSnapshot]:
        """Tous les participants du cache."""

    @abstractmethod
    def filter_by_flag(self, flag: str, value: bool) -> List[AttendeeSnapshot]:
        """Participants dont le statut `flag` vaut `value`."""

    # --- File de synchronisation ---

    @abstractmethod
    def record_action(
        self,
        code: str,
        action_type: str,
        timestamp: Optional[datetime] = None,
        only_if_unset: bool = False,
    ) -> Optional[SyncAction]:
        """
        Passe le statut à True et ajoute l'action en file, atomiquement.
        Lève UnknownAttendeeError si le QR code n'est pas en cache.
        Avec only_if_unset=True, ne fait rien et retourne None si le statut
        est déjà à True.
        """

    @abstractmethod
    def list_pending(self) -> List[SyncAction]:
        """Actions non synchronisées, par id croissant."""

    @abstractmethod
    def list_queue(self) -> List[SyncAction]:
        """Toute la file (synchronisées comprises), par id croissant."""

    @abstractmethod
    def mark_synced(self, ids: Iterable[int]) -> int:
        """Marque les ids comme synchronisés ; retourne le nombre réellement modifié."""

    @abstractmethod
    def compact_synced(self, before: datetime) -> int:
        """Supprime les actions synchronisées antérieures à `before`."""

    @abstractmethod
    def export_state(self) -> Tuple[List[AttendeeSnapshot], List[SyncAction]]:
        """
        Cache et file lus ensemble, sans écriture intercalée : une action
        présente dans la file a toujours son statut à True dans le cache.
        """

    def count_pending(self) -> int:
        return len(self.list_pending())

    def stats(self) -> Dict[str, int]:
        """Compteurs pour le tableau de bord hors-ligne."""
        attendees = self.get_all()
        result = {"total": len(attendees)}
        for flag in FLAGS:
            result[flag] = sum(1 for a in attendees if getattr(a, flag))
        result["pending_sync"] = self.count_pending()
        return result

    def close(self) -> None:
        """Libère les ressources du stockage."""


class SqliteLocalStore(LocalStore):
    """Cache durable dans un fichier SQLite (via SQLAlchemy)."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False, "timeout": 15},
        )
        LocalBase.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        # SQLite n'accepte qu'un écrivain à la fois : on sérialise les écritures du processus
        self._write_lock = threading.Lock()

    @staticmethod
    def _to_snapshot(row: LocalAttendee) -> AttendeeSnapshot:
        return AttendeeSnapshot(
            code=row.qr_code,
            checked_in=bool(row.checked_in),
            lunch_distributed=bool(row.lunch_distributed),
            kit_distributed=bool(row.kit_distributed),
            last_updated=_as_utc(row.last_updated),
        )

    @staticmethod
    def _to_action(row: QueueEntry) -> SyncAction:
        return SyncAction(
            id=row.id,
            code=row.qr_code,
            action_type=row.action_type,
            timestamp=_as_utc(row.timestamp),
            synced=bool(row.synced),
        )

    @staticmethod
    def _merge_into(session, snapshot: AttendeeSnapshot, now: datetime) -> None:
        row = session.get(LocalAttendee, snapshot.code)
        if row is None:
            row = LocalAttendee(qr_code=snapshot.code)
            for flag in FLAGS:
                setattr(row, flag, False)
            session.add(row)
            session.flush()
        for flag in FLAGS:
            setattr(row, flag, bool(getattr(row, flag)) or getattr(snapshot, flag))
        row.last_updated = snapshot.last_updated or now

    def get(self, code: str) -> Optional[AttendeeSnapshot]:
        with self._sessions() as session:
            row = session.get(LocalAttendee, code)
            return self._to_snapshot(row) if row else None

    def put(self, snapshot: AttendeeSnapshot) -> AttendeeSnapshot:
        with self._write_lock, self._sessions.begin() as session:
            self._merge_into(session, snapshot, _utcnow())
        return self.get(snapshot.code)

    def upsert_many(self, snapshots: Iterable[AttendeeSnapshot]) -> int:
        now = _utcnow()
        count = 0
        with self._write_lock, self._sessions.begin() as session:
            for snapshot in snapshots:
                self._merge_into(session, snapshot, now)
                count += 1
        return count

    def get_all(self) -> List[AttendeeSnapshot]:
        with self._sessions() as session:
            rows = session.execute(select(LocalAttendee).order_by(LocalAttendee.qr_code)).scalars().all()
            return [self._to_snapshot(r) for r in rows]

    def filter_by_flag(self, flag: str, value: bool) -> List[AttendeeSnapshot]:
        _check_flag(flag)
        column = getattr(LocalAttendee, flag)
        with self._sessions() as session:
            rows = session.execute(
                select(LocalAttendee).where(column.is_(value)).order_by(LocalAttendee.qr_code)
            ).scalars().all()
            return [self._to_snapshot(r) for r in rows]

    def record_action(
        self,
        code: str,
        action_type: str,
        timestamp: Optional[datetime] = None,
        only_if_unset: bool = False,
    ) -> Optional[SyncAction]:
        _check_flag(action_type)
        now = timestamp or _utcnow()

        with self._write_lock, self._sessions.begin() as session:
            row = session.get(LocalAttendee, code)
            if row is None:
                raise UnknownAttendeeError(f"Participant {code} absent du cache local.")
            if only_if_unset and getattr(row, action_type):
                return None

            setattr(row, action_type, True)
            row.last_updated = now

            entry = QueueEntry(qr_code=code, action_type=action_type, timestamp=now, synced=False)
            session.add(entry)
            session.flush()
            action = self._to_action(entry)

        logger.debug("Action %s #%d mise en file pour %s", action_type, action.id, code)
        return action

    def list_pending(self) -> List[SyncAction]:
        with self._sessions() as session:
            rows = session.execute(
                select(QueueEntry).where(QueueEntry.synced.is_(False)).order_by(QueueEntry.id)
            ).scalars().all()
            return [self._to_action(r) for r in rows]

    def list_queue(self) -> List[SyncAction]:
        with self._sessions() as session:
            rows = session.execute(select(QueueEntry).order_by(QueueEntry.id)).scalars().all()
            return [self._to_action(r) for r in rows]

    def export_state(self) -> Tuple[List[AttendeeSnapshot], List[SyncAction]]:
        # Toutes les écritures du processus passent par _write_lock
        with self._write_lock, self._sessions() as session:
            attendees = session.execute(
                select(LocalAttendee).order_by(LocalAttendee.qr_code)
            ).scalars().all()
            queue = session.execute(select(QueueEntry).order_by(QueueEntry.id)).scalars().all()
            return [self._to_snapshot(r) for r in attendees], [self._to_action(r) for r in queue]

    def count_pending(self) -> int:
        with self._sessions() as session:
            return session.execute(
                select(func.count(QueueEntry.id)).where(QueueEntry.synced.is_(False))
            ).scalar_one()

    def mark_synced(self, ids: Iterable[int]) -> int:
        ids = set(ids)
        if not ids:
            return 0
        with self._write_lock, self._sessions.begin() as session:
            result = session.execute(
                update(QueueEntry)
                .where(QueueEntry.id.in_(ids), QueueEntry.synced.is_(False))
                .values(synced=True)
            )
            return result.rowcount

    def compact_synced(self, before: datetime) -> int:
        with self._write_lock, self._sessions.begin() as session:
            entries = session.execute(
                select(QueueEntry).where(QueueEntry.synced.is_(True))
            ).scalars().all()
            removed = 0
            for entry in entries:
                if _as_utc(entry.timestamp) < _as_utc(before):
                    session.delete(entry)
                    removed += 1
        return removed

    def close(self) -> None:
        self.engine.dispose()


class MemoryLocalStore(LocalStore):
    """
    Stockage embarqué en mémoire, protégé par un verrou.
    Les transactions sont simulées en préparant les nouvelles valeurs avant
    de les publier : une erreur en cours de route ne laisse aucune trace.
    """

    def __init__(self):
        self._attendees: Dict[str, AttendeeSnapshot] = {}
        self._queue: List[SyncAction] = []
        self._next_id = 1
        self._lock = threading.RLock()

    def get(self, code: str) -> Optional[AttendeeSnapshot]:
        with self._lock:
            snapshot = self._attendees.get(code)
            return snapshot.model_copy() if snapshot else None

    @staticmethod
    def _merged(
        snapshot: AttendeeSnapshot, existing: Optional[AttendeeSnapshot], now: datetime
    ) -> AttendeeSnapshot:
        merged = snapshot.merged_with(existing) if existing else snapshot.model_copy()
        merged.last_updated = snapshot.last_updated or now
        return merged

    def put(self, snapshot: AttendeeSnapshot) -> AttendeeSnapshot:
        with self._lock:
            merged = self._merged(snapshot, self._attendees.get(snapshot.code), _utcnow())
            self._attendees[snapshot.code] = merged
            return merged.model_copy()

    def upsert_many(self, snapshots: Iterable[AttendeeSnapshot]) -> int:
        now = _utcnow()
        with self._lock:
            staged = dict(self._attendees)
            count = 0
            for snapshot in snapshots:
                staged[snapshot.code] = self._merged(snapshot, staged.get(snapshot.code), now)
                count += 1
            self._attendees = staged
            return count

    def get_all(self) -> List[AttendeeSnapshot]:
        with self._lock:
            return [self._attendees[code].model_copy() for code in sorted(self._attendees)]

    def filter_by_flag(self, flag: str, value: bool) -> List[AttendeeSnapshot]:
        _check_flag(flag)
        return [a for a in self.get_all() if getattr(a, flag) == bool(value)]

    def record_action(
        self,
        code: str,
        action_type: str,
        timestamp: Optional[datetime] = None,
        only_if_unset: bool = False,
    ) -> Optional[SyncAction]:
        _check_flag(action_type)
        now = timestamp or _utcnow()

        with self._lock:
            existing = self._attendees.get(code)
            if existing is None:
                raise UnknownAttendeeError(f"Participant {code} absent du cache local.")
            if only_if_unset and getattr(existing, action_type):
                return None

            updated = existing.model_copy(update={action_type: True, "last_updated": now})
            action = SyncAction(id=self._next_id, code=code, action_type=action_type, timestamp=now)

            # Publication : rien n'est visible avant ce point
            self._attendees[code] = updated
            self._queue.append(action)
            self._next_id += 1

        logger.debug("Action %s #%d mise en file pour %s", action_type, action.id, code)
        return action.model_copy()

    def list_pending(self) -> List[SyncAction]:
        with self._lock:
            return [a.model_copy() for a in self._queue if not a.synced]

    def list_queue(self) -> List[SyncAction]:
        with self._lock:
            return [a.model_copy() for a in self._queue]

    def export_state(self) -> Tuple[List[AttendeeSnapshot], List[SyncAction]]:
        with self._lock:
            attendees = [self._attendees[code].model_copy() for code in sorted(self._attendees)]
            return attendees, [a.model_copy() for a in self._queue]

    def mark_synced(self, ids: Iterable[int]) -> int:
        ids = set(ids)
        changed = 0
        with self._lock:
            for action in self._queue:
                if action.id in ids and not action.synced:
                    action.synced = True
                    changed += 1
        return changed

    def compact_synced(self, before: datetime) -> int:
        with self._lock:
            kept = [a for a in self._queue if not (a.synced and _as_utc(a.timestamp) < _as_utc(before))]
            removed = len(self._queue) - len(kept)
            self._queue = kept
            return removed


def build_store(backend: str, db_path: str = "") -> LocalStore:
    """Instancie le stockage local choisi par configuration."""
    if backend == "sqlite":
        return SqliteLocalStore(db_path)
    if backend == "memory":
        return MemoryLocalStore()
    raise ValueError(f"Backend de stockage inconnu : {backend}")
