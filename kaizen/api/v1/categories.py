from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from kaizen.api.deps import AuthContext, get_any_identity
from kaizen.db.session import get_db
from kaizen.models.finance_category import EntryType
from kaizen.schemas.category import CategoryCreate, CategoryResponse, CategoryUpdate
from kaizen.services.category_service import CategoryService
from kaizen.utils.response import success

router = APIRouter()


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_category(
    category_data: CategoryCreate,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    """Create a finance category."""
    category = CategoryService.create_category(db, identity.user_id, category_data)
    return success(data=CategoryResponse.model_validate(category), message="Category created successfully")


@router.get("/", response_model=dict)
def list_categories(
    entry_type: Optional[EntryType] = Query(None, alias="type"),
    active: Optional[bool] = Query(None),
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    """List the caller's categories, optionally filtered by type and active flag."""
    categories = CategoryService.list_categories(
        db, identity.user_id, entry_type=entry_type, active=active
    )
    return success(
        data=[CategoryResponse.model_validate(category) for category in categories],
        message="Categories retrieved successfully",
    )


@router.get("/{category_id}", response_model=dict)
def get_category(
    category_id: int,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    category = CategoryService.get_category(db, identity.user_id, category_id)
    return success(data=CategoryResponse.model_validate(category), message="Category retrieved successfully")


@router.put("/{category_id}", response_model=dict)
def update_category(
    category_id: int,
    category_data: CategoryUpdate,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    category = CategoryService.update_category(db, identity.user_id, category_id, category_data)
    return success(data=CategoryResponse.model_validate(category), message="Category updated successfully")


@router.delete("/{category_id}", response_model=dict)
def delete_category(
    category_id: int,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    CategoryService.delete_category(db, identity.user_id, category_id)
    return success(message="Category deleted successfully")
