"""
Planificateur APScheduler du poste de scan.

Trois jobs périodiques indépendants :
- pull   (KIOSK_PULL_INTERVAL_SECONDS, 5 min)   : sauté par le moteur si hors-ligne
- push   (KIOSK_PUSH_INTERVAL_SECONDS, 30 s)    : sauté par le moteur si hors-ligne
- backup (KIOSK_BACKUP_INTERVAL_SECONDS, 10 min) : toujours

Un job dont l'exécution précédente est encore en cours est sauté, pas mis en
attente. Au retour du réseau (événement anti-rebond du ConnectivityMonitor),
un cycle push + pull est lancé une fois.
Aucune erreur de job n'arrête le planificateur : elles sont journalisées.
"""

import logging
import threading
from typing import Callable, Optional, Set

from apscheduler.schedulers.background import BackgroundScheduler

from reservoir.kiosk.backup import BackupExporter
from reservoir.kiosk.connectivity import ConnectivityMonitor
from reservoir.kiosk.models import BackupResult, SyncResult
from reservoir.kiosk.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class KioskScheduler:
    """Jobs de synchronisation et de sauvegarde du poste."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        exporter: BackupExporter,
        monitor: ConnectivityMonitor,
        pull_interval: int = 300,
        push_interval: int = 30,
        backup_interval: int = 600,
    ):
        self.engine = engine
        self.exporter = exporter
        self.monitor = monitor
        self.pull_interval = pull_interval
        self.push_interval = push_interval
        self.backup_interval = backup_interval
        self.scheduler = BackgroundScheduler()
        self._in_flight: Set[str] = set()
        self._state_lock = threading.Lock()

    def _single_flight(self, name: str, job: Callable[[], object]) -> Optional[object]:
        """Exécute le job sauf si une exécution du même job est déjà en cours."""
        with self._state_lock:
            if name in self._in_flight:
                logger.info("Job %s encore en cours, exécution sautée", name)
                return None
            self._in_flight.add(name)
        try:
            return job()
        finally:
            with self._state_lock:
                self._in_flight.discard(name)

    def run_pull(self) -> Optional[SyncResult]:
        return self._single_flight("pull", self._pull_job)

    def run_push(self) -> Optional[SyncResult]:
        return self._single_flight("push", self._push_job)

    def run_backup(self) -> Optional[BackupResult]:
        return self._single_flight("backup", self._backup_job)

    def run_online_cycle(self) -> None:
        """Cycle unique push puis pull, déclenché au retour du réseau."""
        self.run_push()
        self.run_pull()

    @staticmethod
    def _log_outcome(name: str, result: SyncResult) -> None:
        if result.error == "offline":
            logger.info("Serveur injoignable, %s sauté", name)
        elif result.error:
            logger.warning("%s planifié : %s", name.capitalize(), result.message)

    def _pull_job(self) -> Optional[SyncResult]:
        # La sonde de connectivité est faite par le moteur (error="offline")
        try:
            result = self.engine.sync_from_server()
            self._log_outcome("pull", result)
            return result
        except Exception as exc:
            logger.error("Erreur lors du pull planifié : %s", exc)
            return None

    def _push_job(self) -> Optional[SyncResult]:
        try:
            result = self.engine.sync_offline_actions()
            self._log_outcome("push", result)
            return result
        except Exception as exc:
            logger.error("Erreur lors du push planifié : %s", exc)
            return None

    def _backup_job(self) -> Optional[BackupResult]:
        try:
            return self.exporter.create_backup()
        except Exception as exc:
            logger.error("Erreur lors de la sauvegarde planifiée : %s", exc)
            return None

    def _on_network_back(self) -> None:
        # Exécuté hors du thread du timer anti-rebond
        self.scheduler.add_job(self.run_online_cycle, id="online_cycle", replace_existing=True)

    def start(self) -> None:
        """Enregistre les jobs et démarre le planificateur en arrière-plan."""
        self.monitor.on_became_online(self._on_network_back)
        for job_id, func, seconds in (
            ("kiosk_pull", self.run_pull, self.pull_interval),
            ("kiosk_push", self.run_push, self.push_interval),
            ("kiosk_backup", self.run_backup, self.backup_interval),
        ):
            self.scheduler.add_job(
                func,
                trigger="interval",
                seconds=seconds,
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self.scheduler.start()
        logger.info(
            "Scheduler poste démarré : pull %ds, push %ds, sauvegarde %ds.",
            self.pull_interval, self.push_interval, self.backup_interval,
        )

    def stop(self) -> None:
        """Arrête le planificateur proprement."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler poste arrêté.")
