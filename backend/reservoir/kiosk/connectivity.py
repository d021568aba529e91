"""
Détection en ligne / hors-ligne du poste de scan.

Deux sources :
- le signal réseau de la plateforme (notify_network_up / notify_network_down,
  ou une fonction `network_status` fournie à la construction)
- une sonde active GET /health avec un timeout court

Une interface réseau active ne suffit pas : le serveur peut être injoignable.
is_online() ne renvoie True que si la sonde répond en 2xx dans le délai.
"""

import logging
import threading
from typing import Callable, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Sonde de connectivité + notification (anti-rebond) du retour en ligne."""

    def __init__(
        self,
        client: httpx.Client,
        timeout: float = 2.0,
        debounce: float = 2.0,
        network_status: Optional[Callable[[], bool]] = None,
        health_path: str = "/health",
    ):
        self.client = client
        self.timeout = timeout
        self.debounce = debounce
        self.health_path = health_path
        self._network_status = network_status
        self._network_up = True
        self._callbacks: List[Callable[[], None]] = []
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def network_up(self) -> bool:
        """Signal réseau de la plateforme (sans requête)."""
        if self._network_status is not None:
            return bool(self._network_status())
        return self._network_up

    def is_online(self) -> bool:
        """
        True si le serveur répond à la sonde de santé.
        Jamais d'exception : timeout, erreur réseau ou réponse non-2xx → False.
        """
        if not self.network_up:
            return False

        try:
            response = self.client.get(self.health_path, timeout=self.timeout)
        except httpx.HTTPError as exc:
            logger.debug("Sonde de santé en échec : %s", exc)
            return False

        if not response.is_success:
            logger.debug("Sonde de santé : HTTP %d", response.status_code)
            return False
        return True

    def on_became_online(self, callback: Callable[[], None]) -> None:
        """Enregistre un callback appelé au retour du réseau (après anti-rebond)."""
        self._callbacks.append(callback)

    def notify_network_up(self) -> None:
        """
        Événement plateforme "réseau disponible".
        Les événements rapprochés relancent le délai : un seul déclenchement
        `debounce` secondes après le dernier.
        """
        with self._lock:
            self._network_up = True
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._fire_online)
            self._timer.daemon = True
            self._timer.start()

    def notify_network_down(self) -> None:
        """Événement plateforme "réseau perdu" : annule un déclenchement en attente."""
        with self._lock:
            self._network_up = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire_online(self) -> None:
        with self._lock:
            self._timer = None
        if not self.network_up:
            return

        logger.info("Réseau de retour : déclenchement de %d callback(s)", len(self._callbacks))
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception as exc:
                logger.error("Erreur dans un callback de retour en ligne : %s", exc)

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
