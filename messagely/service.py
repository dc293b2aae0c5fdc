"""HTTP API for registration, login, messages and user profiles."""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Dict, List, Optional

import anyio
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .access import MessageAccess, UserAccess
from .config import Settings, load_settings
from .database import Database
from .errors import MessagelyError, StorageError
from .identity import IdentityService
from .models import (
    Message,
    MessageDetail,
    MessageReceipt,
    ReceivedMessage,
    SentMessage,
    User,
    UserSummary,
)
from .security import PasswordHasher, TokenAuth, TokenSigner

logger = logging.getLogger("messagely.service")


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=32)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    token: str


class CreateMessageRequest(BaseModel):
    to_username: Optional[str] = None
    body: Optional[str] = None


class UserSummaryResponse(BaseModel):
    username: str
    first_name: str
    last_name: str
    phone: str


class UserProfileResponse(UserSummaryResponse):
    join_at: datetime
    last_login_at: Optional[datetime]


class MessageDetailResponse(BaseModel):
    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    from_user: UserSummaryResponse
    to_user: UserSummaryResponse


class CreatedMessageResponse(BaseModel):
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: datetime


class ReceiptResponse(BaseModel):
    id: int
    read_at: datetime


class ReceivedMessageResponse(BaseModel):
    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    from_user: UserSummaryResponse


class SentMessageResponse(BaseModel):
    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    to_user: UserSummaryResponse


class MessageDetailEnvelope(BaseModel):
    message: MessageDetailResponse


class CreatedMessageEnvelope(BaseModel):
    message: CreatedMessageResponse


class ReceiptEnvelope(BaseModel):
    message: ReceiptResponse


class UserListEnvelope(BaseModel):
    users: List[UserSummaryResponse]


class UserProfileEnvelope(BaseModel):
    user: UserProfileResponse


class ReceivedListEnvelope(BaseModel):
    messages: List[ReceivedMessageResponse]


class SentListEnvelope(BaseModel):
    messages: List[SentMessageResponse]


def summary_to_response(summary: UserSummary) -> UserSummaryResponse:
    return UserSummaryResponse(
        username=summary.username,
        first_name=summary.first_name,
        last_name=summary.last_name,
        phone=summary.phone,
    )


def user_to_response(user: User) -> UserProfileResponse:
    return UserProfileResponse(
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        phone=user.phone,
        join_at=user.joined_at,
        last_login_at=user.last_login_at,
    )


def detail_to_response(message: MessageDetail) -> MessageDetailResponse:
    return MessageDetailResponse(
        id=message.id,
        body=message.body,
        sent_at=message.sent_at,
        read_at=message.read_at,
        from_user=summary_to_response(message.from_user),
        to_user=summary_to_response(message.to_user),
    )


def created_to_response(message: Message) -> CreatedMessageResponse:
    return CreatedMessageResponse(
        id=message.id,
        from_username=message.from_username,
        to_username=message.to_username,
        body=message.body,
        sent_at=message.sent_at,
    )


def receipt_to_response(receipt: MessageReceipt) -> ReceiptResponse:
    return ReceiptResponse(id=receipt.id, read_at=receipt.read_at)


def received_to_response(message: ReceivedMessage) -> ReceivedMessageResponse:
    return ReceivedMessageResponse(
        id=message.id,
        body=message.body,
        sent_at=message.sent_at,
        read_at=message.read_at,
        from_user=summary_to_response(message.from_user),
    )


def sent_to_response(message: SentMessage) -> SentMessageResponse:
    return SentMessageResponse(
        id=message.id,
        body=message.body,
        sent_at=message.sent_at,
        read_at=message.read_at,
        to_user=summary_to_response(message.to_user),
    )


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "status": status_code}},
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    parts: List[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        detail = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {detail}" if location else detail)
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": {"message", "status"}}``."""

    @app.exception_handler(MessagelyError)
    async def handle_messagely_error(_: Request, exc: MessagelyError) -> JSONResponse:
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, _describe_validation_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error serving %s", request.url.path, exc_info=exc)
        fallback = StorageError()
        return _error_response(fallback.status_code, fallback.message)


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    initialize_database: bool = True,
) -> FastAPI:
    """Build the ASGI application with its identity service and access controllers."""

    if settings is None:
        settings = load_settings()
    if database is None:
        database = Database(settings.database_path)
    if initialize_database:
        database.initialize()

    identity = IdentityService(
        database,
        PasswordHasher(settings.bcrypt_work_factor),
        TokenSigner(settings.secret_key),
    )
    auth = TokenAuth(identity.verify_token)
    messages = MessageAccess(database)
    users = UserAccess(database)

    app = FastAPI(
        title="messagely",
        description="Minimal messaging service with token-based identity",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.database = database
    app.state.identity = identity
    register_exception_handlers(app)

    async def current_username(request: Request) -> str:
        return await auth(request)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    auth_router = APIRouter(prefix="/auth")

    @auth_router.post("/register", response_model=TokenResponse)
    async def register(request: RegisterRequest) -> TokenResponse:
        # Hashing must not block the event loop.
        user = await anyio.to_thread.run_sync(
            partial(
                identity.register,
                request.username,
                request.password,
                first_name=request.first_name,
                last_name=request.last_name,
                phone=request.phone,
            )
        )
        return TokenResponse(token=identity.issue_token(user.username))

    @auth_router.post("/login", response_model=TokenResponse)
    async def login(request: LoginRequest) -> TokenResponse:
        token = await anyio.to_thread.run_sync(identity.login, request.username, request.password)
        return TokenResponse(token=token)

    message_router = APIRouter(prefix="/messages")

    @message_router.get("/{message_id}", response_model=MessageDetailEnvelope)
    async def read_message(message_id: int, username: str = Depends(current_username)) -> MessageDetailEnvelope:
        message = messages.get_message(message_id, username)
        return MessageDetailEnvelope(message=detail_to_response(message))

    @message_router.post("/", response_model=CreatedMessageEnvelope)
    async def send_message(
        request: CreateMessageRequest,
        username: str = Depends(current_username),
    ) -> CreatedMessageEnvelope:
        message = messages.create_message(username, request.to_username, request.body)
        logger.info("Message %s sent from %s to %s", message.id, message.from_username, message.to_username)
        return CreatedMessageEnvelope(message=created_to_response(message))

    @message_router.post("/{message_id}/read", response_model=ReceiptEnvelope)
    async def mark_message_read(message_id: int, username: str = Depends(current_username)) -> ReceiptEnvelope:
        receipt = messages.mark_read(message_id, username)
        return ReceiptEnvelope(message=receipt_to_response(receipt))

    user_router = APIRouter(prefix="/users")

    @user_router.get("/", response_model=UserListEnvelope)
    async def list_users(username: str = Depends(current_username)) -> UserListEnvelope:
        return UserListEnvelope(users=[summary_to_response(item) for item in users.list(username)])

    @user_router.get("/{target}", response_model=UserProfileEnvelope)
    async def read_user(target: str, username: str = Depends(current_username)) -> UserProfileEnvelope:
        return UserProfileEnvelope(user=user_to_response(users.get_profile(target, username)))

    @user_router.get("/{target}/to", response_model=ReceivedListEnvelope)
    async def read_inbox(target: str, username: str = Depends(current_username)) -> ReceivedListEnvelope:
        inbox = users.messages_to(target, username)
        return ReceivedListEnvelope(messages=[received_to_response(item) for item in inbox])

    @user_router.get("/{target}/from", response_model=SentListEnvelope)
    async def read_outbox(target: str, username: str = Depends(current_username)) -> SentListEnvelope:
        outbox = users.messages_from(target, username)
        return SentListEnvelope(messages=[sent_to_response(item) for item in outbox])

    app.include_router(auth_router)
    app.include_router(message_router)
    app.include_router(user_router)

    return app


__all__ = ["create_app", "register_exception_handlers"]
