from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Literal, Optional, List, Dict


class TokenCodeRequest(BaseModel):
    token_code: Optional[str] = None


class SpinResponse(BaseModel):
    success: bool = True
    message: str = "Spin successful"
    prize_id: Optional[int] = None
    prize_name: str
    prize_description: Optional[str] = None
    prize_color: str
    is_win: bool
    display_index: int
    slot_count: int
    spin_id: Optional[int] = None
    token_code: str
    token_used_at: datetime


class WheelSlotOut(BaseModel):
    index: int
    prize_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    color: str
    probability: float
    is_win: bool


class WheelStats(BaseModel):
    total_spins: int
    total_prizes: int
    total_active_tokens: int
    timestamp: datetime


class ValidateResponse(BaseModel):
    valid: bool = True
    token_id: int
    expires_at: datetime
    status: str


class CheckHistoryResponse(BaseModel):
    exists: bool
    message: str
    status: Optional[str] = None
    is_used: Optional[bool] = None
    is_deleted: Optional[bool] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class AdminLoginRequest(BaseModel):
    password: str


class AdminLoginResponse(BaseModel):
    token: str


class TokenIssueRequest(BaseModel):
    quantity: int = 1


class TokenOut(BaseModel):
    id: int
    code: str
    status: str
    expires_at: datetime
    created_at: datetime
    created_by: str
    used_at: Optional[datetime] = None
    used_user_agent: Optional[str] = None
    used_ip_address: Optional[str] = None
    deleted_at: Optional[datetime] = None


class TokenIssueResponse(BaseModel):
    message: str
    tokens: List[TokenOut]


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_more: bool


class TokenHistoryResponse(BaseModel):
    tokens: List[TokenOut]
    pagination: Pagination


class TokenStats(BaseModel):
    total_tokens: int
    active_tokens: int
    used_tokens: int
    expired_tokens: int
    deleted_tokens: int
    total_ever_created: int
    available_tokens: int


class DeleteResponse(BaseModel):
    message: str
    deleted_count: int = 1
    code: Optional[str] = None


class PrizeIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    probability: float = Field(ge=0, le=100)
    color: str = "#3B82F6"
    is_active: bool = True
    position: Optional[int] = Field(default=None, ge=0)


class PrizeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    probability: Optional[float] = Field(default=None, ge=0, le=100)
    color: Optional[str] = None
    is_active: Optional[bool] = None
    position: Optional[int] = Field(default=None, ge=0)

    @field_validator("name", "probability", "color", "is_active")
    @classmethod
    def not_null(cls, v):
        # omit the field to leave it unchanged; only description and position can be cleared
        if v is None:
            raise ValueError("may not be null")
        return v


class PrizeOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    probability: float
    color: str
    is_active: bool
    position: Optional[int] = None
    created_at: datetime
    class Config:
        from_attributes = True


class SpinResultOut(BaseModel):
    id: int
    token_code: str
    prize_id: int
    prize_name: Optional[str] = None
    prize_color: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime


class ResultsPage(BaseModel):
    results: List[SpinResultOut]
    pagination: Pagination


class ResultStats(BaseModel):
    total_spins: int
    unique_tokens: int
    prize_stats: Dict[str, int]
    most_popular_prize: Optional[str] = None


class DashboardStats(BaseModel):
    total_tokens: int
    used_tokens: int
    expired_tokens: int
    available_tokens: int
    total_spins: int


class ErrorResponse(BaseModel):
    message: str
    code: str
    reason: Optional[Literal[
        "not_found", "already_used", "already_deleted", "expired",
        "no_selectable_outcome", "invalid_input", "transient_failure", "consumed_without_prize",
    ]] = None
