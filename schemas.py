from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import MAX_YEAR, MIN_YEAR, ExpenseCategory
from trends import GroupBy


class TrendsQuery(BaseModel):
    start_year: int = Field(..., ge=MIN_YEAR, le=MAX_YEAR)
    end_year: int = Field(..., ge=MIN_YEAR, le=MAX_YEAR)
    start_month: Optional[int] = Field(default=None, ge=1, le=12)
    end_month: Optional[int] = Field(default=None, ge=1, le=12)
    category: Optional[ExpenseCategory] = None
    group_by: GroupBy = GroupBy.month


class ArchiveTriggerIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    retention_years: Optional[int] = Field(default=None, ge=0, le=100)


class ArchiveRestoreIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_date: datetime
    end_date: datetime


class ArchiveCleanupIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_archive_years: Optional[int] = Field(default=None, ge=0, le=100)
