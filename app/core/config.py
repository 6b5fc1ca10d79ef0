from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Literal, Optional
import os
import json


class Settings(BaseSettings):
    """应用配置"""

    # API 配置
    API_TITLE: str = "Storefront Catalog API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Category hierarchy management for the storefront admin"

    # JWT 配置（管理端令牌由外部认证服务签发，这里只负责校验）
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 720

    # 数据库配置
    DATABASE_URL: str
    AUTO_CREATE_TABLES: bool = True

    # 分类删除策略
    # - promote: 子分类挂到被删分类的最近存活祖先下（或成为根）
    # - cascade: 连同所有子孙分类一起删除
    DEFAULT_DELETE_POLICY: Literal["promote", "cascade"] = "promote"
    # 被删分类下商品的处理方式：detach 置空 categoryId，reassign 转移到指定分类
    DEFAULT_PRODUCT_POLICY: Literal["detach", "reassign"] = "detach"

    # 批量操作单次允许的最大 ID 数
    MAX_BULK_IDS: int = 500

    DEFAULT_CATEGORY_EMOJI: str = "📦"

    LOG_LEVEL: str = "INFO"

    # CORS 配置
    # 支持通过环境变量 CORS_ORIGINS 覆盖：
    # - JSON 数组：["https://a.com","https://b.com"]
    # - 逗号分隔：https://a.com,https://b.com
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    CORS_ALLOW_ORIGIN_REGEX: Optional[str] = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        if v is None:
            return v
        if isinstance(v, str):
            raw = v.strip()
            if not raw:
                return []
            if raw.startswith("["):
                try:
                    parsed = json.loads(raw)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except ValueError:
                    pass
            return [item.strip() for item in raw.split(",") if item.strip()]
        return v

    @field_validator("CORS_ALLOW_ORIGIN_REGEX", mode="before")
    @classmethod
    def _normalize_cors_regex(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            raw = v.strip()
            return raw or None
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper() or "INFO"
        return v

    @staticmethod
    def _default_env_file() -> str:
        env_file = os.getenv("ENV_FILE")
        if env_file:
            return env_file
        return ".env"

    model_config = SettingsConfigDict(env_file=_default_env_file.__func__(), extra="ignore")


settings = Settings()
