"""
Planificateur APScheduler du serveur : envoi différé des emails de notification.

Le job s'exécute toutes les EMAIL_RETRY_MINUTES et traite les notifications
PENDING (nouvelles ou en attente de retry après un échec SMTP).
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from reservoir.config import settings
from reservoir.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _deliver_emails_scheduled() -> None:
    """
    Tâche planifiée : envoie un lot de notifications en attente.
    Import local pour éviter les imports circulaires.
    """
    from reservoir.services.email_service import deliver_pending_emails

    db = SessionLocal()
    try:
        report = deliver_pending_emails(db)
        if report.sent_count or report.errors:
            logger.info(
                "Emails : %d envoyés, %d en retry, %d abandonnés",
                report.sent_count,
                report.failed_count,
                report.abandoned_count,
            )
    except Exception as exc:
        logger.error("Erreur lors de l'envoi des emails de notification : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _deliver_emails_scheduled,
        trigger="interval",
        minutes=settings.EMAIL_RETRY_MINUTES,
        id="email_delivery",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré : envoi des emails toutes les %d minute(s).",
        settings.EMAIL_RETRY_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
