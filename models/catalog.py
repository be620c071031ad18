from typing import Optional
from decimal import Decimal
from datetime import datetime
from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from .model_enums import ProductCategory
from . import Base

class Product(Base):
    '''
    Catalog CRUD lives in the catalog service, only price and category are read here.
    '''
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    internal_code: Mapped[str] = mapped_column(String, unique=True)
    identifier: Mapped[Optional[str]]
    description: Mapped[Optional[str]]
    price: Mapped[Decimal]
    category: Mapped[ProductCategory]
    deleted: Mapped[bool] = mapped_column(default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_lens(self) -> bool:
        return self.category == ProductCategory.LENS
