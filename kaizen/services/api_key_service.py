from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaizen.core.exceptions import APIKeyNotFound
from kaizen.core.security import generate_api_key
from kaizen.db.session import SessionLocal
from kaizen.models.api_key import APIKey
from kaizen.schemas.api_key import APIKeyCreate, APIKeyUpdate

logger = structlog.get_logger()


class APIKeyService:

    @staticmethod
    def create_api_key(db: Session, user_id: int, key_data: APIKeyCreate) -> APIKey:
        api_key = APIKey(
            user_id=user_id,
            name=key_data.name,
            key=generate_api_key(),
            expires_at=key_data.expires_at,
            is_active=True,
        )
        db.add(api_key)
        db.commit()
        db.refresh(api_key)
        logger.info("api_key_created", user_id=user_id, api_key_id=api_key.id)
        return api_key

    @staticmethod
    def list_api_keys(db: Session, user_id: int) -> List[APIKey]:
        return (
            db.query(APIKey)
            .filter(APIKey.user_id == user_id)
            .order_by(APIKey.created_at.desc(), APIKey.id.desc())
            .all()
        )

    @staticmethod
    def get_api_key(db: Session, user_id: int, api_key_id: int) -> APIKey:
        api_key = db.query(APIKey).filter(
            APIKey.id == api_key_id,
            APIKey.user_id == user_id,
        ).first()
        if not api_key:
            raise APIKeyNotFound()
        return api_key

    @staticmethod
    def update_api_key(db: Session, user_id: int, api_key_id: int, key_data: APIKeyUpdate) -> APIKey:
        api_key = APIKeyService.get_api_key(db, user_id, api_key_id)
        if key_data.name is not None:
            api_key.name = key_data.name
        if key_data.is_active is not None:
            api_key.is_active = key_data.is_active
        db.commit()
        db.refresh(api_key)
        return api_key

    @staticmethod
    def delete_api_key(db: Session, user_id: int, api_key_id: int) -> None:
        api_key = APIKeyService.get_api_key(db, user_id, api_key_id)
        db.delete(api_key)
        db.commit()
        logger.info("api_key_deleted", user_id=user_id, api_key_id=api_key_id)

    @staticmethod
    def authenticate(db: Session, raw_key: str, now: Optional[datetime] = None) -> Optional[APIKey]:
        """Return the active, unexpired key matching ``raw_key`` exactly, else None."""
        api_key = db.query(APIKey).filter(
            APIKey.key == raw_key,
            APIKey.is_active == True,
        ).first()
        if api_key is None:
            return None
        if api_key.is_expired(now):
            logger.info("api_key_expired", api_key_id=api_key.id, user_id=api_key.user_id)
            return None
        return api_key


def record_api_key_usage(api_key_id: int, used_at: datetime) -> None:
    """Best-effort last-used update, run after the response has been sent."""
    db = None
    try:
        db = SessionLocal()
        db.query(APIKey).filter(APIKey.id == api_key_id).update(
            {"last_used_at": used_at},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as exc:
        if db is not None:
            db.rollback()
        logger.warning("api_key_usage_update_failed", api_key_id=api_key_id, error=str(exc))
    finally:
        if db is not None:
            db.close()
