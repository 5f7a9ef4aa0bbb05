from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from kaizen.core.exceptions import CategoryNotFound
from kaizen.models.finance_category import EntryType, FinanceCategory
from kaizen.models.finance_journal import FinanceJournal
from kaizen.schemas.category import CategoryCreate, CategoryUpdate


class CategoryService:

    @staticmethod
    def create_category(db: Session, user_id: int, category_data: CategoryCreate) -> FinanceCategory:
        category = FinanceCategory(
            user_id=user_id,
            is_active=True,
            **category_data.model_dump(),
        )
        db.add(category)
        db.commit()
        db.refresh(category)
        return category

    @staticmethod
    def list_categories(
        db: Session,
        user_id: int,
        entry_type: Optional[EntryType] = None,
        active: Optional[bool] = None,
    ) -> List[FinanceCategory]:
        query = db.query(FinanceCategory).filter(FinanceCategory.user_id == user_id)
        if entry_type is not None:
            query = query.filter(FinanceCategory.type == entry_type)
        if active is not None:
            query = query.filter(FinanceCategory.is_active == active)
        return query.order_by(FinanceCategory.name.asc()).all()

    @staticmethod
    def get_category(db: Session, user_id: int, category_id: int) -> FinanceCategory:
        category = db.query(FinanceCategory).filter(
            FinanceCategory.id == category_id,
            FinanceCategory.user_id == user_id,
        ).first()
        if not category:
            raise CategoryNotFound()
        return category

    @staticmethod
    def update_category(
        db: Session,
        user_id: int,
        category_id: int,
        category_data: CategoryUpdate,
    ) -> FinanceCategory:
        category = CategoryService.get_category(db, user_id, category_id)
        for field, value in category_data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(category, field, value)
        db.commit()
        db.refresh(category)
        return category

    @staticmethod
    def delete_category(db: Session, user_id: int, category_id: int) -> None:
        """Hard delete. Refused while any journal entry still points at the category."""
        category = CategoryService.get_category(db, user_id, category_id)

        journal_count = db.query(FinanceJournal).filter(
            FinanceJournal.category_id == category.id
        ).count()
        if journal_count > 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    "Cannot delete category with existing journal entries. "
                    "Delete the entries first or deactivate the category."
                ),
            )

        db.delete(category)
        db.commit()
