from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from kaizen.api.deps import AuthContext, get_any_identity
from kaizen.db.session import get_db
from kaizen.models.finance_category import EntryType
from kaizen.schemas.journal import JournalCreate, JournalResponse, JournalUpdate
from kaizen.services.journal_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, JournalService
from kaizen.utils.response import paginated_response, success

router = APIRouter()


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_journal(
    journal_data: JournalCreate,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    """Record an income or expense entry against one of the caller's categories."""
    journal = JournalService.create_journal(db, identity.user_id, journal_data)
    journal = JournalService.get_journal(db, identity.user_id, journal.id)
    return success(data=JournalResponse.model_validate(journal), message="Journal entry created successfully")


@router.get("/", response_model=dict)
def list_journals(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    category_id: Optional[int] = Query(None),
    entry_type: Optional[EntryType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    """Paginated journal entries, newest first."""
    journals, total = JournalService.list_journals(
        db,
        identity.user_id,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        entry_type=entry_type,
        page=page,
        page_size=page_size,
    )
    return paginated_response(
        items=[JournalResponse.model_validate(journal) for journal in journals],
        total=total,
        page=page,
        limit=page_size,
        message="Journal entries retrieved successfully",
    )


# Declared before /{journal_id} so "summary" is not parsed as an id
@router.get("/summary", response_model=dict)
def get_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    summary = JournalService.get_summary(db, identity.user_id, start_date=start_date, end_date=end_date)
    return success(data=summary, message="Summary retrieved successfully")


@router.get("/{journal_id}", response_model=dict)
def get_journal(
    journal_id: int,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    journal = JournalService.get_journal(db, identity.user_id, journal_id)
    return success(data=JournalResponse.model_validate(journal), message="Journal entry retrieved successfully")


@router.put("/{journal_id}", response_model=dict)
def update_journal(
    journal_id: int,
    journal_data: JournalUpdate,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    JournalService.update_journal(db, identity.user_id, journal_id, journal_data)
    journal = JournalService.get_journal(db, identity.user_id, journal_id)
    return success(data=JournalResponse.model_validate(journal), message="Journal entry updated successfully")


@router.delete("/{journal_id}", response_model=dict)
def delete_journal(
    journal_id: int,
    identity: AuthContext = Depends(get_any_identity),
    db: Session = Depends(get_db),
):
    JournalService.delete_journal(db, identity.user_id, journal_id)
    return success(message="Journal entry deleted successfully")
