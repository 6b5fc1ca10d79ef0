from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class CategoryRecord:
    """分类行的只读快照，纯计算模块（建树/环检测/排序）只接触它"""
    id: int
    name: str
    slug: str = ""
    customSlug: bool = False
    description: str = ""
    emoji: str = "📦"
    parentId: Optional[int] = None
    displayOrder: int = 0
    isVisible: bool = True
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, row: Any) -> "CategoryRecord":
        return cls(
            id=row.id,
            name=row.name,
            slug=row.slug,
            customSlug=bool(row.customSlug),
            description=row.description or "",
            emoji=row.emoji,
            parentId=row.parentId,
            displayOrder=row.displayOrder or 0,
            isVisible=bool(row.isVisible),
            createdAt=row.createdAt,
            updatedAt=row.updatedAt,
        )

    @property
    def sort_key(self) -> tuple[int, int]:
        # 同级先按 displayOrder，再按 id（即创建顺序）
        return (self.displayOrder, self.id)

    @property
    def full_name(self) -> str:
        return f"{self.emoji} {self.name}"
