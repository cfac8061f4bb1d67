from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ChangeType(str, Enum):
    CHECKIN = "checkin"
    REWARD = "reward"
    CONSUME = "consume"


class CallbackStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserBalance(CamelModel):
    user_key: int
    coin_balance: int
    total_earned: int
    last_total_balance: int
    last_checkin_date: Optional[date] = None
    continuous_days: int = 0


class CoinRecordEntry(CamelModel):
    id: int
    user_key: int
    coin_change: int
    change_type: ChangeType
    change_reason: Optional[str] = None
    balance_after: int
    idempotency_key: str
    created_at: datetime


class CreditResult(CamelModel):
    user_key: int
    new_balance: int
    duplicate: bool = False
    coin_change: int = 0
    previous_balance: Optional[int] = None
    record: Optional[CoinRecordEntry] = None


class CallbackRequest(CamelModel):
    app_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("appKey", "channel", "app_key"))
    user_id: Union[int, str]
    task_id: Optional[Union[int, str]] = None
    order_id: str = Field(..., min_length=1, max_length=64)
    coins: int = Field(..., gt=0)
    total_count: int = 0
    completed_count: int = 0
    timestamp: int = Field(..., description="Partner send time, epoch milliseconds")
    timezone: str = "Asia/Shanghai"
    sign: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "appKey": "CS001",
            "userId": "55",
            "taskId": "14",
            "orderId": "ORD1700000000000",
            "coins": 10,
            "totalCount": 2,
            "completedCount": 1,
            "timestamp": 1700000000000,
            "timezone": "Asia/Shanghai",
            "sign": "0f343b0931126a20f133d67c2b018a3b",
        }
    })


class CallbackRecordEntry(CamelModel):
    order_id: str
    user_key: int
    task_id: Optional[str] = None
    reward_coins: int
    total_count: int
    completed_count: int
    callback_timestamp: int
    timezone: str
    status: CallbackStatus
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CallbackOutcome(CamelModel):
    order_id: str
    user_key: int
    coins: int
    new_balance: int
    duplicate: bool = False
    message: str = ""


class CallbackData(CamelModel):
    user_id: int
    order_id: str
    coins: int
    new_balance: int
    duplicate: bool


class CallbackResponse(CamelModel):
    success: bool
    message: str
    data: Optional[CallbackData] = None


class CheckinStatus(CamelModel):
    checked: bool
    last_checkin_date: Optional[date] = None
    continuous_days: int = 0


class CheckinResult(CamelModel):
    user_key: int
    coin_balance: int
    reward_coins: int
    continuous_days: int
    message: str
    duplicate: bool = False


class TodayCheckinResponse(CamelModel):
    checked: bool


class AdjustCoinsRequest(CamelModel):
    user_id: Union[int, str]
    coin_change: int
    change_reason: Optional[str] = Field(default=None, max_length=200)
    idempotency_key: Optional[str] = Field(default=None, max_length=120)


class CoinRecordPage(CamelModel):
    records: list[CoinRecordEntry]
    total: int
    current_page: int
    page_size: int


class UserBalancePage(CamelModel):
    users: list[UserBalance]
    total: int
    current_page: int
    page_size: int


class CoinStatistics(CamelModel):
    total_earned: int
    user_count: int
    total_balance: int
    today_checkin: int
