from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, ForeignKey, Index
from app.core.database import Base
from datetime import datetime


class Category(Base):
    """商品分类（自引用层级）"""
    __tablename__ = "category"
    __table_args__ = (
        Index("idx_category_parent_order", "parentId", "displayOrder"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    # 手动指定的 slug 改名时不跟随
    customSlug = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=False, default="")
    emoji = Column(String(32), nullable=False, default="📦")
    # 子分类不落库，由 parentId 计算得出
    parentId = Column(Integer, ForeignKey("category.id"), nullable=True, index=True)
    displayOrder = Column(Integer, nullable=False, default=0)
    isVisible = Column(Boolean, nullable=False, default=True)

    createdAt = Column(DateTime, default=datetime.utcnow, nullable=False)
    updatedAt = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.emoji} {self.name}"

    def __repr__(self):
        return f"<Category {self.id} {self.name} parent={self.parentId}>"
