"""
Sauvegarde périodique du cache local et de la file de synchronisation.

Chaque sauvegarde est un document JSON :
    {"timestamp": ..., "attendees": [...], "syncQueue": [...]}
écrit dans <backup_dir>/backup_<timestamp>.json. Le nom de fichier trie dans
l'ordre chronologique ; seules les `retention` plus récentes sont conservées.

Après la rotation, les actions déjà acquittées et antérieures à la plus
ancienne sauvegarde conservée sont retirées de la file : toutes les
sauvegardes restantes les contiennent déjà.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from reservoir.kiosk.models import BackupResult
from reservoir.kiosk.store import LocalStore

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup_"
FILE_STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"


class BackupExporter:
    """Export JSON du stockage local avec rotation."""

    def __init__(
        self,
        store: LocalStore,
        backup_dir: str,
        retention: int = 10,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.backup_dir = Path(backup_dir)
        self.retention = retention
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def list_backups(self) -> List[Path]:
        """Sauvegardes existantes, de la plus ancienne à la plus récente."""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"))

    def create_backup(self) -> BackupResult:
        """
        Écrit une sauvegarde complète puis supprime les plus anciennes.
        L'écriture passe par un fichier temporaire renommé : une sauvegarde
        interrompue ne laisse jamais de JSON tronqué sous un nom valide.
        """
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        now = self._clock()
        timestamp = now.isoformat()
        # Les ":" et "." sont remplacés pour des noms de fichiers portables
        file_stamp = now.astimezone(timezone.utc).strftime(FILE_STAMP_FORMAT)
        path = self.backup_dir / f"{BACKUP_PREFIX}{file_stamp}.json"

        attendees, queue = self.store.export_state()
        document = {
            "timestamp": timestamp,
            "attendees": [a.model_dump(mode="json") for a in attendees],
            "syncQueue": [q.model_dump(mode="json") for q in queue],
        }

        tmp_path = self.backup_dir / f".{path.name}.tmp"
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp_path, path)

        removed = self._prune()
        compacted = self._compact()
        logger.info(
            "Sauvegarde créée : %s (%d participants, %d actions, %d anciennes supprimées, %d actions compactées)",
            path, len(attendees), len(queue), removed, compacted,
        )
        return BackupResult(path=str(path), timestamp=timestamp, compacted=compacted)

    def _prune(self) -> int:
        backups = self.list_backups()
        obsolete = backups[:-self.retention] if self.retention > 0 else []
        for old in obsolete:
            old.unlink()
        return len(obsolete)

    def _compact(self) -> int:
        backups = self.list_backups()
        if self.retention <= 0 or not backups:
            return 0
        stamp = backups[0].stem[len(BACKUP_PREFIX):]
        try:
            oldest = datetime.strptime(stamp, FILE_STAMP_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning("Nom de sauvegarde non reconnu, compactage sauté : %s", backups[0].name)
            return 0
        return self.store.compact_synced(oldest)
