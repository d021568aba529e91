"""
Test d'assemblage du poste à partir de la configuration.
"""

import httpx

from reservoir.config import Settings
from reservoir.kiosk.runtime import build_kiosk
from reservoir.kiosk.store import MemoryLocalStore


def test_assemblage_hors_ligne_complet(tmp_path):
    def handler(request):
        raise httpx.ConnectError("réseau indisponible", request=request)

    settings = Settings(
        KIOSK_STORE_BACKEND="memory",
        KIOSK_BACKUP_DIR=str(tmp_path / "backups"),
        KIOSK_BACKUP_RETENTION=3,
        KIOSK_OFFLINE_CHECKIN=True,
    )
    http = httpx.Client(base_url="http://serveur.test/api", transport=httpx.MockTransport(handler))
    kiosk = build_kiosk(settings, client=http)

    try:
        assert isinstance(kiosk.store, MemoryLocalStore)
        assert kiosk.exporter.retention == 3
        assert kiosk.station.offline_checkin is True
        assert kiosk.engine.sync_from_server().error == "offline"
        assert kiosk.exporter.create_backup().path.endswith(".json")
    finally:
        kiosk.close()
