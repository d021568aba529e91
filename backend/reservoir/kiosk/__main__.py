"""
Lance un poste de scan en tâche de fond : python -m reservoir.kiosk

Synchronisation initiale si le serveur répond, puis jobs planifiés
jusqu'à Ctrl+C.
"""

import logging
import threading

from reservoir.config import settings
from reservoir.kiosk.runtime import build_kiosk

logger = logging.getLogger("reservoir.kiosk")


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    kiosk = build_kiosk(settings)

    if kiosk.monitor.is_online():
        push, pull = kiosk.engine.sync_all()
        logger.info("Synchronisation initiale : %s / %s", push.message, pull.message)
    else:
        logger.warning("Serveur injoignable au démarrage, fonctionnement hors-ligne")

    kiosk.scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Arrêt du poste demandé")
    finally:
        kiosk.close()


if __name__ == "__main__":
    main()
