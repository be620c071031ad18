from typing import Callable, Generic, TypeVar
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from sqlalchemy import func, select

T = TypeVar("T")
MAX_RESULTS_PER_PAGE = 20

class PaginationInput(BaseModel):
    page: int = Field(default=1, ge=1, description="Requested page number")
    per_page: int = Field(default=MAX_RESULTS_PER_PAGE, ge=1, le=100, description="Items per page")

class Pager(BaseModel):
    p: int = Field(ge=0, description="Page number")
    n: int = Field(ge=0, description="Number of items per page")
    pages: int = Field(ge=0, description="Total number of pages")
    rows: int = Field(ge=0, description="Number of total items")

class Page(BaseModel, Generic[T]):
    pager: Pager = Field(description="Pagination metadata")
    data: list[T] = Field(description="List of items on this Page")

def paginate(
    query,  # SQLAlchemy query
    db: Session,
    pagination_input: PaginationInput,
    transform: Callable | None = None,
) -> Page:
    # Get total count
    total_items = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    per_page = pagination_input.per_page

    # Calculate pagination
    total_pages = max((total_items + per_page - 1) // per_page, 1)
    current_page = min(pagination_input.page, total_pages)
    offset = (current_page - 1) * per_page

    # Apply pagination to query
    items = query.offset(offset).limit(per_page).all()
    if transform:
        items = [transform(item) for item in items]

    return Page(
        pager=Pager(
            p=current_page,
            n=0 if total_items == 0 else per_page,
            pages=total_pages,
            rows=total_items,
        ),
        data=items
    )
