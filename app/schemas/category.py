from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime

from app.services.category_bulk import BulkResult, DeleteImpact, DeletePolicy, ProductPolicy
from app.services.category_order import MoveDirection, OrderAssignment
from app.services.category_tree import CategoryNode


class CategoryCreate(BaseModel):
    """创建分类的请求"""
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    emoji: Optional[str] = None
    parentId: Optional[int] = None
    displayOrder: Optional[int] = None
    isVisible: Optional[bool] = True


class CategoryUpdate(BaseModel):
    """更新分类的请求（displayOrder 只能通过 move/order 接口修改）"""
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    emoji: Optional[str] = None
    parentId: Optional[int] = None
    isVisible: Optional[bool] = None


class CategoryResponse(BaseModel):
    """分类响应"""
    id: int
    name: str
    slug: str
    customSlug: bool = False
    description: str
    emoji: str
    parentId: Optional[int]
    displayOrder: int
    isVisible: bool
    fullName: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_record(cls, record) -> "CategoryResponse":
        return cls(
            id=record.id,
            name=record.name,
            slug=record.slug,
            customSlug=record.customSlug,
            description=record.description,
            emoji=record.emoji,
            parentId=record.parentId,
            displayOrder=record.displayOrder,
            isVisible=record.isVisible,
            fullName=record.full_name,
            createdAt=record.createdAt,
            updatedAt=record.updatedAt,
        )


class CategoryTreeResponse(CategoryResponse):
    """树形分类（children 为计算结果）"""
    children: List["CategoryTreeResponse"] = []

    @classmethod
    def from_node(cls, node: CategoryNode) -> "CategoryTreeResponse":
        base = CategoryResponse.from_record(node.record).model_dump()
        return cls(**base, children=[cls.from_node(child) for child in node.children])


CategoryTreeResponse.model_rebuild()


class CategoryFlatResponse(CategoryResponse):
    """展开后的分类（管理端表格用）"""
    depth: int
    hasChildren: bool


class MoveRequest(BaseModel):
    direction: MoveDirection


class ReorderRequest(BaseModel):
    parentId: Optional[int] = None
    order: List[int] = Field(min_length=1)


class ReparentRequest(BaseModel):
    parentId: Optional[int] = None


class OrderAssignmentResponse(BaseModel):
    id: int
    displayOrder: int

    @classmethod
    def from_assignment(cls, assignment: OrderAssignment) -> "OrderAssignmentResponse":
        return cls(id=assignment.id, displayOrder=assignment.displayOrder)


class BulkVisibilityUpdate(BaseModel):
    """批量更新只允许修改 isVisible"""
    isVisible: bool

    model_config = ConfigDict(extra="forbid")


class BulkUpdateRequest(BaseModel):
    categoryIds: List[int] = Field(min_length=1)
    update: BulkVisibilityUpdate


class BulkDeleteRequest(BaseModel):
    categoryIds: List[int] = Field(min_length=1)
    policy: Optional[DeletePolicy] = None
    productPolicy: Optional[ProductPolicy] = None
    reassignTo: Optional[int] = None


class BulkResultResponse(BaseModel):
    success: bool = True
    requested: int
    count: int
    partial: bool
    missing: List[int] = []
    cascaded: int = 0
    promoted: int = 0
    productsUpdated: int = 0

    @classmethod
    def from_result(cls, result: BulkResult) -> "BulkResultResponse":
        return cls(
            requested=result.requested,
            count=result.count,
            partial=result.partial,
            missing=list(result.missing),
            cascaded=result.cascaded,
            promoted=result.promoted,
            productsUpdated=result.products_updated,
        )


class DeleteImpactResponse(BaseModel):
    """删除前预览"""
    categoryId: int
    children: int
    descendants: int
    products: int
    descendantProducts: int

    @classmethod
    def from_impact(cls, impact: DeleteImpact) -> "DeleteImpactResponse":
        return cls(
            categoryId=impact.category_id,
            children=impact.children,
            descendants=impact.descendants,
            products=impact.products,
            descendantProducts=impact.descendant_products,
        )
