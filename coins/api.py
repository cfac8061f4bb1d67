from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, configure_logging, get_settings
from .errors import (
    AlreadyCheckedInTodayError,
    CoinServiceError,
    InsufficientBalanceError,
    InvalidUserIdentifierError,
    PersistenceError,
    SignatureError,
)
from .models import (
    AdjustCoinsRequest,
    CallbackData,
    CallbackRequest,
    CallbackResponse,
    CheckinResult,
    CheckinStatus,
    CoinRecordEntry,
    CoinRecordPage,
    CoinStatistics,
    CreditResult,
    TodayCheckinResponse,
    UserBalance,
    UserBalancePage,
)
from .service import CoinService

router = APIRouter()


def get_service(request: Request) -> CoinService:
    return request.app.state.coin_service


def current_user_key(
    service: CoinService = Depends(get_service),
    user_id_cookie: Optional[str] = Cookie(default=None, alias="user_id"),
    x_user_id: Optional[str] = Header(default=None),
    user_id: Optional[str] = Query(default=None, alias="userId"),
) -> int:
    # Session-backed identity first, client supplied userId only as a fallback
    raw = user_id_cookie or x_user_id or user_id
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in or session expired")
    try:
        return service.resolve(raw)
    except InvalidUserIdentifierError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _callback_error(status_code: int, message: str) -> JSONResponse:
    body = CallbackResponse(success=False, message=message, data=None)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True))


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "coin-ledger"}


@router.post("/api/task/callback", response_model=CallbackResponse, tags=["Callbacks"])
def task_callback(request: CallbackRequest, service: CoinService = Depends(get_service)):
    try:
        outcome = service.process_callback(request)
    except SignatureError as e:
        return _callback_error(status.HTTP_401_UNAUTHORIZED, str(e))
    except InvalidUserIdentifierError as e:
        return _callback_error(status.HTTP_400_BAD_REQUEST, str(e))
    except PersistenceError as e:
        return _callback_error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
    except CoinServiceError as e:
        return _callback_error(status.HTTP_400_BAD_REQUEST, str(e))

    return CallbackResponse(
        success=True,
        message=outcome.message,
        data=CallbackData(
            user_id=outcome.user_key,
            order_id=outcome.order_id,
            coins=outcome.coins,
            new_balance=outcome.new_balance,
            duplicate=outcome.duplicate,
        ),
    )


@router.get("/api/checkSigninStatus", response_model=CheckinStatus, tags=["Check-in"])
def check_signin_status(
    user_key: int = Depends(current_user_key),
    service: CoinService = Depends(get_service),
) -> CheckinStatus:
    return service.checkin_status(user_key)


@router.get("/api/checkTodayCheckin", response_model=TodayCheckinResponse, tags=["Check-in"])
def check_today_checkin(
    user_key: int = Depends(current_user_key),
    service: CoinService = Depends(get_service),
) -> TodayCheckinResponse:
    return TodayCheckinResponse(checked=service.checkin_status(user_key).checked)


@router.post("/api/userCheckin", response_model=CheckinResult, tags=["Check-in"])
def user_checkin(
    user_key: int = Depends(current_user_key),
    service: CoinService = Depends(get_service),
) -> CheckinResult:
    try:
        return service.checkin(user_key)
    except AlreadyCheckedInTodayError:
        balance = service.get_user_coins(user_key)
        return CheckinResult(
            user_key=user_key,
            coin_balance=balance.coin_balance,
            reward_coins=0,
            continuous_days=balance.continuous_days,
            message="Already checked in today",
            duplicate=True,
        )
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.get("/api/getUserCoins", response_model=UserBalance, tags=["Coins"])
def get_user_coins(
    user_key: int = Depends(current_user_key),
    service: CoinService = Depends(get_service),
) -> UserBalance:
    try:
        return service.get_user_coins(user_key)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.get("/api/getUserCoinRecords", response_model=list[CoinRecordEntry], tags=["Coins"])
def get_user_coin_records(
    limit: int = Query(default=50, ge=1, le=500),
    user_key: int = Depends(current_user_key),
    service: CoinService = Depends(get_service),
) -> list[CoinRecordEntry]:
    return service.list_coin_records(user_key, limit=limit)


@router.post("/api/admin/updateUserCoins", response_model=CreditResult, tags=["Admin"])
def update_user_coins(request: AdjustCoinsRequest, service: CoinService = Depends(get_service)) -> CreditResult:
    try:
        user_key = service.resolve(request.user_id)
        return service.adjust_balance(
            user_key, request.coin_change, reason=request.change_reason, idempotency_key=request.idempotency_key,
        )
    except InsufficientBalanceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except CoinServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/api/admin/getUserCoinRecords", response_model=CoinRecordPage, tags=["Admin"])
def admin_get_user_coin_records(
    user_id: str = Query(..., alias="userId"),
    current_page: int = Query(default=1, ge=1, alias="currentPage"),
    page_size: int = Query(default=20, ge=1, le=200, alias="pageSize"),
    service: CoinService = Depends(get_service),
) -> CoinRecordPage:
    try:
        user_key = service.resolve(user_id)
    except InvalidUserIdentifierError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return service.list_coin_records_page(user_key, page=current_page, page_size=page_size)


@router.get("/api/admin/getCurrentPageUserCoins", response_model=UserBalancePage, tags=["Admin"])
def admin_get_current_page_user_coins(
    current_page: int = Query(default=1, ge=1, alias="currentPage"),
    page_size: int = Query(default=20, ge=1, le=200, alias="pageSize"),
    service: CoinService = Depends(get_service),
) -> UserBalancePage:
    return service.list_user_balances_page(page=current_page, page_size=page_size)


@router.get("/api/admin/getCoinStatistics", response_model=CoinStatistics, tags=["Admin"])
def get_coin_statistics(service: CoinService = Depends(get_service)) -> CoinStatistics:
    return service.statistics()


def create_app(service: Optional[CoinService] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (service.settings if service else get_settings())
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.coin_service is None:
            app.state.coin_service = CoinService.from_settings(settings)
        yield

    app = FastAPI(
        title="Coin Ledger API",
        description="Partner reward callbacks and daily check-ins over an idempotent coin ledger",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.coin_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=4000)
