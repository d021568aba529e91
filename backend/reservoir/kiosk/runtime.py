"""
Assemblage du poste de scan à partir de la configuration.
"""

import logging

import httpx

from reservoir.config import Settings
from reservoir.kiosk.backup import BackupExporter
from reservoir.kiosk.connectivity import ConnectivityMonitor
from reservoir.kiosk.reconciliation import ReconciliationEngine
from reservoir.kiosk.scheduler import KioskScheduler
from reservoir.kiosk.station import KioskStation
from reservoir.kiosk.store import build_store

logger = logging.getLogger(__name__)


class Kiosk:
    """Composants d'un poste de scan, partageant un même client HTTP et un même stockage."""

    def __init__(self, settings: Settings, client: httpx.Client = None):
        self.client = client or httpx.Client(base_url=settings.KIOSK_API_URL)
        self.store = build_store(settings.KIOSK_STORE_BACKEND, settings.KIOSK_DB_PATH)
        self.monitor = ConnectivityMonitor(
            self.client,
            timeout=settings.KIOSK_HEALTH_TIMEOUT,
            debounce=settings.KIOSK_ONLINE_DEBOUNCE,
        )
        self.engine = ReconciliationEngine(self.store, self.client, self.monitor)
        self.station = KioskStation(
            self.store, self.client, self.monitor,
            offline_checkin=settings.KIOSK_OFFLINE_CHECKIN,
        )
        self.exporter = BackupExporter(
            self.store, settings.KIOSK_BACKUP_DIR, retention=settings.KIOSK_BACKUP_RETENTION,
        )
        self.scheduler = KioskScheduler(
            self.engine, self.exporter, self.monitor,
            pull_interval=settings.KIOSK_PULL_INTERVAL_SECONDS,
            push_interval=settings.KIOSK_PUSH_INTERVAL_SECONDS,
            backup_interval=settings.KIOSK_BACKUP_INTERVAL_SECONDS,
        )
        logger.info(
            "Poste initialisé (stockage %s, serveur %s)",
            settings.KIOSK_STORE_BACKEND, settings.KIOSK_API_URL,
        )

    def close(self) -> None:
        self.scheduler.stop()
        self.monitor.close()
        self.store.close()
        self.client.close()


def build_kiosk(settings: Settings, client: httpx.Client = None) -> Kiosk:
    return Kiosk(settings, client=client)
