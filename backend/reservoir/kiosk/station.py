"""
Opérations de scan du poste : check-in, repas, kit.

Principe offline-first : un scan n'est jamais bloqué par le réseau.
- En ligne : l'appel serveur fait foi, sa réponse est renvoyée telle quelle
  (success, already_distributed, participant introuvable). Le cache local est
  mis à jour en miroir pour qu'une coupure juste après ne permette pas un
  deuxième passage.
- Hors-ligne (sonde KO, erreur réseau ou 5xx) : décision sur le cache local,
  et en cas de succès mise à jour du statut + ajout en file dans une seule
  transaction. Aucune requête n'est faite en dehors de la sonde.

Le check-in n'est mis en file hors-ligne que si offline_checkin=True
(KIOSK_OFFLINE_CHECKIN). Par défaut il exige le serveur.
"""

import logging
from typing import Optional

import httpx

from reservoir.kiosk.connectivity import ConnectivityMonitor
from reservoir.kiosk.store import LocalStore

logger = logging.getLogger(__name__)


class KioskStation:
    """Façade utilisée par l'interface de scan."""

    def __init__(
        self,
        store: LocalStore,
        client: httpx.Client,
        monitor: ConnectivityMonitor,
        offline_checkin: bool = False,
    ):
        self.store = store
        self.client = client
        self.monitor = monitor
        self.offline_checkin = offline_checkin

    def distribute_lunch(self, code: str) -> dict:
        return self._scan(code, "lunch_distributed", "/distribute/lunch", "already_distributed", "Lunch")

    def distribute_kit(self, code: str) -> dict:
        return self._scan(code, "kit_distributed", "/distribute/kit", "already_distributed", "Kit")

    def check_in(self, code: str) -> dict:
        return self._scan(code, "checked_in", "/checkin", "already_checked_in", "Check-in")

    def _scan(self, code: str, flag: str, path: str, conflict_status: str, label: str) -> dict:
        if self.monitor.is_online():
            answer = self._scan_online(code, flag, path)
            if answer is not None:
                return answer
            logger.info("Requête en ligne échouée, bascule en mode hors-ligne (%s)", code)

        return self._scan_offline(code, flag, conflict_status, label)

    def _scan_online(self, code: str, flag: str, path: str) -> Optional[dict]:
        """Réponse serveur, ou None si le serveur n'a pas pu trancher."""
        try:
            response = self.client.post(path, json={"qrCode": code})
        except httpx.HTTPError as exc:
            logger.warning("Scan en ligne impossible : %s", exc)
            return None

        if response.status_code >= 500:
            return None
        try:
            answer = response.json()
        except ValueError:
            return None

        if answer.get("status") in ("success", "already_distributed", "already_checked_in"):
            self._mirror(code, flag)
        return answer

    def _mirror(self, code: str, flag: str) -> None:
        # Uniquement si le participant est déjà en cache : l'absence signifie "jamais synchronisé"
        snapshot = self.store.get(code)
        if snapshot is not None and not getattr(snapshot, flag):
            self.store.put(snapshot.model_copy(update={flag: True, "last_updated": None}))

    def _scan_offline(self, code: str, flag: str, conflict_status: str, label: str) -> dict:
        if flag == "checked_in" and not self.offline_checkin:
            return {
                "status": "error",
                "error": "Offline check-in is disabled",
                "offline": True,
            }

        snapshot = self.store.get(code)
        if snapshot is None:
            return {"status": "error", "error": "Attendee not found", "offline": True}

        action = self.store.record_action(code, flag, only_if_unset=True)
        if action is None:
            return {
                "status": conflict_status,
                "error": f"{label} already recorded for this attendee",
                "offline": True,
            }

        logger.info("%s enregistré hors-ligne pour %s (action #%d)", label, code, action.id)
        return {
            "status": "success",
            "message": f"{label} recorded successfully (offline)",
            "offline": True,
            "pending_sync": self.store.count_pending(),
        }

    def get_attendee(self, code: str) -> dict:
        """Consultation d'un participant, serveur d'abord puis cache local."""
        if self.monitor.is_online():
            try:
                response = self.client.get(f"/offline/attendee/{code}")
                if response.status_code == 404:
                    return {"error": "Attendee not found"}
                if response.is_success:
                    return response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.info("Consultation en ligne échouée, bascule sur le cache : %s", exc)

        snapshot = self.store.get(code)
        if snapshot is None:
            return {"error": "Attendee not found", "offline": True}
        return {
            "qr_code": snapshot.code,
            "checked_in": snapshot.checked_in,
            "lunch_distributed": snapshot.lunch_distributed,
            "kit_distributed": snapshot.kit_distributed,
            "offline": True,
        }

    def get_offline_stats(self) -> dict:
        """Compteurs du cache local et nombre d'actions en attente."""
        return self.store.stats()
