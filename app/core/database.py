from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.engine.url import make_url
from typing import Generator

from app.core.config import settings

DATABASE_URL = settings.DATABASE_URL

_url = make_url(DATABASE_URL)
_engine_kwargs: dict = {"echo": False, "pool_pre_ping": True}

# SQLite 用于本地开发与测试；MySQL 走 pymysql 连接池
if _url.drivername.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
elif _url.drivername.startswith("mysql"):
    _engine_kwargs.update(
        {
            "pool_size": 10,
            "max_overflow": 20,
            "connect_args": {"charset": "utf8mb4", "connect_timeout": 5},
        }
    )

engine = create_engine(DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """数据库会话依赖注入（每个请求一个会话，不跨请求缓存分类数据）"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
