"""
分类存储适配器

服务层访问数据库的唯一入口。所有写操作都包在 transaction() 里：
单独调用时各自提交；在外层 transaction() 内调用时合并为一个事务。
连接类错误统一转换为 StoreUnavailable，不在这里重试。
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import StoreUnavailable
from app.models import Category, Product
from app.services.category_records import CategoryRecord

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError)

# 允许写入的列，防止调用方把任意键塞进 UPDATE
WRITABLE_FIELDS = frozenset(
    {"name", "slug", "customSlug", "description", "emoji", "parentId", "displayOrder", "isVisible"}
)


def _ids(values: Iterable[int]) -> list[int]:
    return sorted({int(v) for v in values})


class CategoryStore:
    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    # ------------------------------------------------------------------
    # 事务
    # ------------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator["CategoryStore"]:
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self.db.commit()
        except _UNAVAILABLE_ERRORS as exc:
            logger.exception("分类写入失败，数据库不可用: %s", exc)
            self._rollback()
            raise StoreUnavailable() from exc
        except Exception:
            self._rollback()
            raise
        finally:
            self._depth = 0

    @contextmanager
    def _reading(self) -> Iterator[None]:
        try:
            yield
        except _UNAVAILABLE_ERRORS as exc:
            logger.exception("读取分类失败，数据库不可用: %s", exc)
            self._rollback()
            raise StoreUnavailable() from exc

    def _rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as exc:
            # 连接已断开时 rollback 也可能失败，原始异常由调用方继续抛出
            logger.warning("回滚失败: %s", exc)

    # ------------------------------------------------------------------
    # 读
    # ------------------------------------------------------------------
    def fetch_all_categories(self) -> list[CategoryRecord]:
        stmt = (
            select(Category)
            .order_by(Category.displayOrder.asc(), Category.id.asc())
            .execution_options(populate_existing=True)
        )
        with self._reading():
            rows = self.db.execute(stmt).scalars().all()
        return [CategoryRecord.from_model(row) for row in rows]

    def existing_ids(self, category_ids: Iterable[int]) -> set[int]:
        ids = _ids(category_ids)
        if not ids:
            return set()
        stmt = select(Category.id).where(Category.id.in_(ids))
        with self._reading():
            return {row_id for (row_id,) in self.db.execute(stmt).all()}

    def count_products(self, category_ids: Iterable[int]) -> int:
        """引用这些分类的商品数量（删除前提示用）"""
        ids = _ids(category_ids)
        if not ids:
            return 0
        stmt = select(func.count()).select_from(Product).where(Product.categoryId.in_(ids))
        with self._reading():
            return int(self.db.execute(stmt).scalar() or 0)

    # ------------------------------------------------------------------
    # 写
    # ------------------------------------------------------------------
    def insert_one(self, fields: Mapping[str, Any]) -> int:
        values = self._clean(fields)
        with self.transaction():
            row = Category(**values)
            self.db.add(row)
            self.db.flush()
            new_id = row.id
        return new_id

    def update_one(self, category_id: int, fields: Mapping[str, Any]) -> bool:
        """更新单个分类；返回 False 表示分类不存在"""
        return self.update_many([category_id], fields) == 1

    def update_many(self, category_ids: Iterable[int], fields: Mapping[str, Any]) -> int:
        """对一组分类写入同一组字段，返回命中的行数"""
        ids = _ids(category_ids)
        values = self._clean(fields)
        if not ids or not values:
            return 0
        stmt = (
            update(Category)
            .where(Category.id.in_(ids))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self.transaction():
            result = self.db.execute(stmt)
        return result.rowcount or 0

    def update_each(self, assignments: Mapping[int, Mapping[str, Any]]) -> int:
        """按 ID 分别写入不同字段（例如整组 displayOrder），在一个事务内完成"""
        modified = 0
        with self.transaction():
            for category_id, fields in assignments.items():
                values = self._clean(fields)
                if not values:
                    continue
                result = self.db.execute(
                    update(Category)
                    .where(Category.id == int(category_id))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                modified += result.rowcount or 0
        return modified

    def delete_many(self, category_ids: Iterable[int]) -> int:
        ids = _ids(category_ids)
        if not ids:
            return 0
        with self.transaction():
            # 先断开待删集合内部的父子引用，兼容会逐行检查外键的数据库
            self.db.execute(
                update(Category)
                .where(Category.id.in_(ids), Category.parentId.isnot(None))
                .values(parentId=None)
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(
                delete(Category)
                .where(Category.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    def reassign_products(self, category_ids: Iterable[int], target_id: Optional[int]) -> int:
        """把引用这些分类的商品转到 target_id（None 表示置空）"""
        ids = _ids(category_ids)
        if not ids:
            return 0
        stmt = (
            update(Product)
            .where(Product.categoryId.in_(ids))
            .values(categoryId=target_id)
            .execution_options(synchronize_session=False)
        )
        with self.transaction():
            result = self.db.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    def _clean(fields: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise KeyError(f"不可写入的分类字段: {', '.join(sorted(unknown))}")
        return dict(fields)
