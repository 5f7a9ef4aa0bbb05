from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from kaizen.api.deps import AuthContext, get_current_identity
from kaizen.core.exceptions import NotAuthenticated
from kaizen.db.session import get_db
from kaizen.models.user import User
from kaizen.schemas.api_key import APIKeyCreate, APIKeyCreated, APIKeyResponse, APIKeyUpdate
from kaizen.schemas.user import UserResponse, UserUpdate
from kaizen.services.api_key_service import APIKeyService
from kaizen.utils.response import success

router = APIRouter()


def _load_user(db: Session, identity: AuthContext) -> User:
    user = db.query(User).filter(User.id == identity.user_id).first()
    if not user:
        # Token outlived its account
        raise NotAuthenticated("User not found")
    return user


@router.get("/me", response_model=dict)
def get_current_user_profile(
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Get current user profile"""
    user = _load_user(db, identity)
    return success(data=UserResponse.model_validate(user), message="User profile retrieved")


@router.put("/me", response_model=dict)
def update_user_profile(
    user_update: UserUpdate,
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Update user profile"""
    user = _load_user(db, identity)
    user.name = user_update.name

    db.commit()
    db.refresh(user)

    return success(data=UserResponse.model_validate(user), message="User profile updated")


# ============= API KEYS =============

@router.post("/api-keys", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_api_key(
    key_data: APIKeyCreate,
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Create an API key. The full key is only ever returned here."""
    api_key = APIKeyService.create_api_key(db, identity.user_id, key_data)
    return success(data=APIKeyCreated.model_validate(api_key), message="API key created")


@router.get("/api-keys", response_model=dict)
def list_api_keys(
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    api_keys = APIKeyService.list_api_keys(db, identity.user_id)
    return success(
        data=[APIKeyResponse.model_validate(key) for key in api_keys],
        message="API keys retrieved",
    )


@router.patch("/api-keys/{api_key_id}", response_model=dict)
def update_api_key(
    api_key_id: int,
    key_data: APIKeyUpdate,
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Rename or (de)activate an API key"""
    api_key = APIKeyService.update_api_key(db, identity.user_id, api_key_id, key_data)
    return success(data=APIKeyResponse.model_validate(api_key), message="API key updated")


@router.delete("/api-keys/{api_key_id}", response_model=dict)
def delete_api_key(
    api_key_id: int,
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    APIKeyService.delete_api_key(db, identity.user_id, api_key_id)
    return success(message="API key deleted")
