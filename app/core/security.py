from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from starlette.requests import Request
from app.core.config import settings


@dataclass(frozen=True)
class AuthorizationContext:
    """
    调用方的授权能力

    服务层只关心 is_authorized 这一个布尔能力，不关心调用方是如何认证的。
    """
    actor: Optional[str] = None
    is_authorized: bool = False

    @classmethod
    def anonymous(cls) -> "AuthorizationContext":
        return cls()

    @classmethod
    def admin(cls, actor: str = "system") -> "AuthorizationContext":
        return cls(actor=actor, is_authorized=True)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """创建 JWT Token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
    )
    return encoded_jwt


def decode_authorization(auth_header: Optional[str]) -> AuthorizationContext:
    """把 Authorization 头解析为 AuthorizationContext；无效令牌视为匿名"""
    if not auth_header or not auth_header.startswith("Bearer "):
        return AuthorizationContext.anonymous()

    token = auth_header.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        return AuthorizationContext.anonymous()

    actor = payload.get("sub")
    if actor is None:
        return AuthorizationContext.anonymous()

    return AuthorizationContext(actor=str(actor), is_authorized=bool(payload.get("isAdmin")))


async def get_authorization_context(request: Request) -> AuthorizationContext:
    """FastAPI 依赖：获取当前请求的授权上下文"""
    return decode_authorization(request.headers.get("authorization"))
