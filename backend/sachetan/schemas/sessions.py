from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AdminMessage(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    media_url: Optional[str] = None


class BulkMessage(BaseModel):
    phones: List[str] = Field(min_length=1, max_length=500)
    message: str = Field(min_length=1, max_length=4000)
    media_url: Optional[str] = None


class SessionResponse(BaseModel):
    phone: str
    stage: str
    previous_stage: Optional[str] = None
    user_type: Optional[str] = None
    last_message_at: Optional[datetime] = None


class HistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone: str
    sender: str
    message: str
    media_url: Optional[str] = None
    provider_message_id: Optional[str] = None
    status: Optional[str] = None
    created_at: datetime
