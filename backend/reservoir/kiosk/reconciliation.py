"""
Moteur de réconciliation poste ↔ serveur.

Deux protocoles indépendants, chacun en single-flight (un appel concurrent
pendant une exécution en cours est refusé avec error="in_progress") :

Pull : sync_from_server()
  GET /offline/sync puis upsert de tous les participants dans le cache local,
  en UNE transaction locale : une erreur de stockage laisse le cache intact.
  Les statuts sont fusionnés par OU : un statut local à True (action en file
  pas encore acquittée) n'est jamais écrasé par un False serveur.

Push : sync_offline_actions()
  Rejoue la file dans l'ordre FIFO (id croissant) via POST /offline/process-queue,
  par lots de MAX_BATCH_SIZE. Chaque résultat serveur est rapproché d'une seule
  entrée de file par (qr_code, action_type), en consommant les entrées dans
  l'ordre FIFO : deux scans identiques en file ne sont jamais acquittés par un
  même résultat.

Les conditions attendues (hors-ligne, file vide, déjà en cours, réseau coupé
en plein échange) donnent un SyncResult, jamais une exception. Les erreurs de
stockage local remontent à l'appelant.
"""

import logging
import threading
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Sequence, Tuple

import httpx
from pydantic import ValidationError

from reservoir.kiosk.connectivity import ConnectivityMonitor
from reservoir.kiosk.models import PullResponse, SyncAction, SyncResult
from reservoir.kiosk.store import LocalStore
from reservoir.schemas.offline import (
    MAX_BATCH_SIZE,
    ProcessQueueResponse,
    QueueActionResult,
)

logger = logging.getLogger(__name__)


def match_results(
    pending: Sequence[SyncAction],
    results: Sequence[QueueActionResult],
) -> List[int]:
    """
    Retourne les ids de file à marquer comme synchronisés.

    Chaque résultat consomme exactement une entrée en attente portant la même
    clé (qr_code, action_type), la plus ancienne d'abord, qu'il soit
    synchronisé ou non. Un résultat sans action_type consomme l'entrée la plus
    ancienne de ce qr_code. Un résultat sans entrée correspondante est ignoré.
    """
    by_key: Dict[Tuple[str, str], Deque[SyncAction]] = defaultdict(deque)
    for action in sorted(pending, key=lambda a: a.id):
        by_key[(action.code, action.action_type)].append(action)

    synced_ids: List[int] = []

    for result in results:
        if result.action_type:
            candidates = by_key.get((result.qr_code, result.action_type))
        else:
            same_code = [
                q for (code, _), q in by_key.items() if code == result.qr_code and q
            ]
            candidates = min(same_code, key=lambda q: q[0].id) if same_code else None

        if not candidates:
            logger.warning(
                "Résultat serveur sans entrée de file correspondante : %s %s",
                result.qr_code, result.action_type,
            )
            continue

        action = candidates.popleft()
        if result.synced:
            synced_ids.append(action.id)

    return synced_ids


class ReconciliationEngine:
    """Orchestration pull / push entre le cache local et le serveur."""

    def __init__(
        self,
        store: LocalStore,
        client: httpx.Client,
        monitor: ConnectivityMonitor,
        batch_size: int = MAX_BATCH_SIZE,
    ):
        self.store = store
        self.client = client
        self.monitor = monitor
        self.batch_size = batch_size
        self._pull_lock = threading.Lock()
        self._push_lock = threading.Lock()

    @staticmethod
    def _single_flight(lock: threading.Lock, name: str, operation: Callable[[], SyncResult]) -> SyncResult:
        if not lock.acquire(blocking=False):
            logger.info("%s déjà en cours, appel ignoré", name)
            return SyncResult(error="in_progress", message=f"{name} already running")
        try:
            return operation()
        finally:
            lock.release()

    # --- Pull ---

    def sync_from_server(self) -> SyncResult:
        """Serveur → cache local (snapshot complet)."""
        return self._single_flight(self._pull_lock, "Pull", self._pull)

    def _pull(self) -> SyncResult:
        if not self.monitor.is_online():
            return SyncResult(error="offline", message="Cannot sync while offline")

        try:
            response = self.client.get("/offline/sync")
            response.raise_for_status()
            payload = PullResponse.model_validate(response.json())
        except httpx.HTTPStatusError as exc:
            logger.error("Pull refusé par le serveur : HTTP %d", exc.response.status_code)
            return SyncResult(error="server_error", message=f"Failed to sync: HTTP {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.error("Pull interrompu : %s", exc)
            return SyncResult(error="network", message=f"Failed to sync: {exc}")
        except (ValidationError, ValueError) as exc:
            logger.error("Réponse de pull invalide : %s", exc)
            return SyncResult(error="invalid_response", message="Invalid response from server")

        if payload.status != "success":
            return SyncResult(error="invalid_response", message="Invalid response from server")

        count = self.store.upsert_many(record.to_snapshot() for record in payload.data)

        logger.info("Pull terminé : %d participants synchronisés", count)
        return SyncResult(
            success=True,
            count=count,
            message=f"Synced {count} attendees for offline use",
        )

    # --- Push ---

    def sync_offline_actions(self) -> SyncResult:
        """File locale → serveur."""
        return self._single_flight(self._push_lock, "Push", self._push)

    def _push(self) -> SyncResult:
        if not self.monitor.is_online():
            return SyncResult(error="offline", message="Cannot sync while offline")

        pending = self.store.list_pending()
        if not pending:
            return SyncResult(success=True, count=0, message="No actions to sync")

        marked = 0
        details: List[dict] = []

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            body = {
                "actions": [
                    {
                        "qr_code": action.code,
                        "action_type": action.action_type,
                        "timestamp": action.timestamp.isoformat(),
                    }
                    for action in batch
                ]
            }

            try:
                response = self.client.post("/offline/process-queue", json=body)
                response.raise_for_status()
                payload = ProcessQueueResponse.model_validate(response.json())
            except httpx.HTTPStatusError as exc:
                logger.error("Push refusé par le serveur : HTTP %d", exc.response.status_code)
                return SyncResult(error="server_error", count=marked, details=details,
                                  message=f"Failed to sync: HTTP {exc.response.status_code}")
            except httpx.HTTPError as exc:
                logger.error("Push interrompu : %s", exc)
                return SyncResult(error="network", count=marked, details=details,
                                  message=f"Failed to sync: {exc}")
            except (ValidationError, ValueError) as exc:
                logger.error("Réponse de push invalide : %s", exc)
                return SyncResult(error="invalid_response", count=marked, details=details,
                                  message="Invalid response from server")

            if payload.status != "completed":
                return SyncResult(error="invalid_response", count=marked, details=details,
                                  message="Invalid response from server")

            synced_ids = match_results(batch, payload.results)
            marked += self.store.mark_synced(synced_ids)
            details.extend(r.model_dump() for r in payload.results)

        errors = sum(1 for d in details if d["status"] == "error")
        logger.info(
            "Push terminé : %d en file, %d acquittées, %d erreurs",
            len(pending), marked, errors,
        )
        return SyncResult(
            success=True,
            count=marked,
            message=f"Synced {marked} actions to server",
            details=details,
        )

    # --- Cycle complet ---

    def sync_all(self) -> Tuple[SyncResult, SyncResult]:
        """Push puis pull (utilisé au retour du réseau)."""
        push = self.sync_offline_actions()
        pull = self.sync_from_server()
        return push, pull
