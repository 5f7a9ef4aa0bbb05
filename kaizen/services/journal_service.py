from datetime import date
from typing import List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from kaizen.core.exceptions import JournalNotFound
from kaizen.models.finance_category import EntryType, FinanceCategory
from kaizen.models.finance_journal import FinanceJournal
from kaizen.schemas.journal import JournalCreate, JournalSummary, JournalUpdate

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class JournalService:

    @staticmethod
    def _owned_category(db: Session, user_id: int, category_id: int) -> FinanceCategory:
        category = db.query(FinanceCategory).filter(
            FinanceCategory.id == category_id,
            FinanceCategory.user_id == user_id,
        ).first()
        if not category:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Category not found or doesn't belong to you",
            )
        return category

    @staticmethod
    def create_journal(db: Session, user_id: int, journal_data: JournalCreate) -> FinanceJournal:
        """Create an entry; its type is inherited from the category."""
        category = JournalService._owned_category(db, user_id, journal_data.category_id)

        values = journal_data.model_dump()
        values["date"] = values.get("date") or date.today()

        journal = FinanceJournal(
            user_id=user_id,
            type=category.type,
            **values,
        )
        db.add(journal)
        db.commit()
        db.refresh(journal)
        return journal

    @staticmethod
    def list_journals(
        db: Session,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[int] = None,
        entry_type: Optional[EntryType] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[FinanceJournal], int]:
        query = db.query(FinanceJournal).filter(FinanceJournal.user_id == user_id)

        if start_date is not None:
            query = query.filter(FinanceJournal.date >= start_date)
        if end_date is not None:
            query = query.filter(FinanceJournal.date <= end_date)
        if category_id is not None:
            query = query.filter(FinanceJournal.category_id == category_id)
        if entry_type is not None:
            query = query.filter(FinanceJournal.type == entry_type)

        total = query.count()
        journals = (
            query.options(joinedload(FinanceJournal.category))
            .order_by(FinanceJournal.date.desc(), FinanceJournal.created_at.desc(), FinanceJournal.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return journals, total

    @staticmethod
    def get_journal(db: Session, user_id: int, journal_id: int) -> FinanceJournal:
        journal = (
            db.query(FinanceJournal)
            .options(joinedload(FinanceJournal.category))
            .filter(FinanceJournal.id == journal_id, FinanceJournal.user_id == user_id)
            .first()
        )
        if not journal:
            raise JournalNotFound()
        return journal

    @staticmethod
    def update_journal(db: Session, user_id: int, journal_id: int, journal_data: JournalUpdate) -> FinanceJournal:
        journal = JournalService.get_journal(db, user_id, journal_id)
        changes = journal_data.model_dump(exclude_unset=True)

        category_id = changes.pop("category_id", None)
        if category_id is not None:
            category = JournalService._owned_category(db, user_id, category_id)
            journal.category_id = category.id
            journal.type = category.type

        for field, value in changes.items():
            if value is not None:
                setattr(journal, field, value)

        db.commit()
        db.refresh(journal)
        return journal

    @staticmethod
    def delete_journal(db: Session, user_id: int, journal_id: int) -> None:
        journal = JournalService.get_journal(db, user_id, journal_id)
        db.delete(journal)
        db.commit()

    @staticmethod
    def get_summary(
        db: Session,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> JournalSummary:
        """
        Income/expense totals over an inclusive date range.

        Args:
            start_date: defaults to the first day of the current month
            end_date: defaults to today

        Returns:
            JournalSummary: totals, net balance and entry count
        """
        today = date.today()
        start_date = start_date or today.replace(day=1)
        end_date = end_date or today

        totals = dict(
            db.query(FinanceJournal.type, func.coalesce(func.sum(FinanceJournal.amount), 0))
            .filter(
                FinanceJournal.user_id == user_id,
                FinanceJournal.date >= start_date,
                FinanceJournal.date <= end_date,
            )
            .group_by(FinanceJournal.type)
            .all()
        )
        entry_count = db.query(FinanceJournal).filter(
            FinanceJournal.user_id == user_id,
            FinanceJournal.date >= start_date,
            FinanceJournal.date <= end_date,
        ).count()

        total_income = float(totals.get(EntryType.INCOME, 0))
        total_expense = float(totals.get(EntryType.EXPENSE, 0))

        return JournalSummary(
            total_income=total_income,
            total_expense=total_expense,
            net_balance=total_income - total_expense,
            start_date=start_date,
            end_date=end_date,
            entry_count=entry_count,
        )
