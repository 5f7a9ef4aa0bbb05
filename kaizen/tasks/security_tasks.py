import structlog
from celery import shared_task

from kaizen.core.exceptions import PersistenceFailure
from kaizen.db.session import SessionLocal
from kaizen.services.token_service import TokenRevoker

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3)
def cleanup_expired_tokens(self):
    """Delete token rows past their expiry to keep the store bounded."""
    db = SessionLocal()
    try:
        deleted = TokenRevoker().sweep_expired_tokens(db)
        return {"deleted": deleted}
    except PersistenceFailure as exc:
        logger.warning("token_sweep_failed", retries=self.request.retries)
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
