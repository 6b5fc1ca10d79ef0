import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from app.core.config import settings
from app.core.database import Base, engine
from app.core.errors import CategoryError, PartialBulkFailure
from app.models import Category, Product  # noqa: F401  注册表结构
from app.routes import categories, health

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    _run_startup()
    yield


# 创建 FastAPI 应用
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION,
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(PartialBulkFailure)
async def _partial_bulk_failure_handler(request: Request, exc: PartialBulkFailure):
    # 部分生效不是硬错误：把差额返回给调用方，由调用方决定是否重试剩余部分
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "requested": exc.requested,
            "count": exc.count,
            "missing": exc.missing,
        },
    )


@app.exception_handler(CategoryError)
async def _category_error_handler(request: Request, exc: CategoryError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(SQLAlchemyError)
async def _sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    # 统一把数据库异常转换成 JSON 响应，避免前端只看到连接被断开
    logging.exception("数据库异常: %s", exc)
    detail = "数据库错误，请检查数据库连接与表结构"
    if os.getenv("DEBUG_DB_ERRORS", "false").lower() == "true":
        detail = f"{detail}: {exc}"
    return JSONResponse(status_code=500, content={"detail": detail})


def _run_startup() -> None:
    """应用启动时执行：按需创建表"""
    if not settings.AUTO_CREATE_TABLES:
        return
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        logging.exception("数据库初始化失败（无法创建表），请检查 DATABASE_URL 连接与权限: %s", exc)


# CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_origin_regex=settings.CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 包含路由
app.include_router(health.router, prefix="/api/health", tags=["Health"])
app.include_router(categories.router, prefix="/api/categories", tags=["Categories"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
