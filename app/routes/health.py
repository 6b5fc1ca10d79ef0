# 健康检查端点
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.models import Category
import time

router = APIRouter()


@router.get("")
async def health_check(db: Session = Depends(get_db)):
    """
    服务与数据库状态

    分类表缺失时返回 degraded（通常是 AUTO_CREATE_TABLES 被关闭且未建表）
    """
    start = time.time()
    checks: dict = {}

    try:
        db.execute(text("SELECT 1"))
        tables = set(inspect(db.get_bind()).get_table_names())
        missing = sorted({Category.__tablename__, "product"} - tables)
        checks["database"] = {
            "status": "healthy" if not missing else "degraded",
            "missingTables": missing,
            "latency_ms": round((time.time() - start) * 1000, 2),
        }
    except SQLAlchemyError as exc:
        checks["database"] = {"status": f"unhealthy: {exc}", "missingTables": []}

    db_status = checks["database"]["status"]
    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "timestamp": time.time(),
        "checks": checks,
    }


@router.get("/ready")
async def readiness_check(db: Session = Depends(get_db)):
    """就绪检查：数据库可连通才返回 200"""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail="Service not ready") from exc
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    return {"alive": True}
