from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import AuthorizationContext, get_authorization_context
from app.schemas.category import (
    BulkDeleteRequest,
    BulkResultResponse,
    BulkUpdateRequest,
    CategoryCreate,
    CategoryFlatResponse,
    CategoryResponse,
    CategoryTreeResponse,
    CategoryUpdate,
    DeleteImpactResponse,
    MoveRequest,
    OrderAssignmentResponse,
    ReorderRequest,
    ReparentRequest,
)
from app.services.category_bulk import DeletePolicy, ProductPolicy
from app.services.category_service import CategoryService
from app.services.category_store import CategoryStore

router = APIRouter()


def get_category_service(db: Session = Depends(get_db)) -> CategoryService:
    return CategoryService(CategoryStore(db))


@router.get("", response_model=list[CategoryTreeResponse])
async def list_category_tree(
    visibleOnly: bool = Query(False),
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """分类树（未登录/非管理员只返回前台可见的分类）"""
    forest = service.list_tree(auth, visible_only=visibleOnly)
    return [CategoryTreeResponse.from_node(node) for node in forest]


@router.get("/flat", response_model=list[CategoryFlatResponse])
async def list_categories_flat(
    visibleOnly: bool = Query(False),
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """按树的渲染顺序展开，带层级深度"""
    rows = service.list_flat(auth, visible_only=visibleOnly)
    return [
        CategoryFlatResponse(
            **CategoryResponse.from_record(node.record).model_dump(),
            depth=depth,
            hasChildren=bool(node.children),
        )
        for node, depth in rows
    ]


@router.put("/order", response_model=list[OrderAssignmentResponse])
async def reorder_categories(
    payload: ReorderRequest,
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """拖拽排序：提交整组的新顺序"""
    assignments = service.reorder(auth, payload.parentId, payload.order)
    return [OrderAssignmentResponse.from_assignment(a) for a in assignments]


@router.post("/bulk-update", response_model=BulkResultResponse)
async def bulk_update_categories(
    payload: BulkUpdateRequest,
    strict: bool = Query(False),
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """批量显示/隐藏；strict=true 时部分生效返回 409"""
    result = service.bulk_set_visibility(auth, payload.categoryIds, payload.update.isVisible)
    if strict:
        result.raise_for_partial()
    return BulkResultResponse.from_result(result)


@router.post("/bulk-delete", response_model=BulkResultResponse)
async def bulk_delete_categories(
    payload: BulkDeleteRequest,
    strict: bool = Query(False),
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """批量删除；子分类按 policy 处理，商品按 productPolicy 处理"""
    result = service.bulk_delete(
        auth,
        payload.categoryIds,
        policy=payload.policy,
        product_policy=payload.productPolicy,
        reassign_to=payload.reassignTo,
    )
    if strict:
        result.raise_for_partial()
    return BulkResultResponse.from_result(result)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: int,
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """获取单个分类"""
    return CategoryResponse.from_record(service.get(auth, category_id))


@router.get("/{category_id}/delete-impact", response_model=DeleteImpactResponse)
async def get_delete_impact(
    category_id: int,
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """删除前预览受影响的子分类与商品数量"""
    return DeleteImpactResponse.from_impact(service.delete_impact(auth, category_id))


@router.post("", response_model=CategoryResponse)
async def create_category(
    payload: CategoryCreate,
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """创建分类"""
    record = service.create(auth, payload.model_dump(exclude_unset=True))
    return CategoryResponse.from_record(record)


@router.patch("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    payload: CategoryUpdate,
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """更新分类（传 parentId 时会做环检测）"""
    record = service.update(auth, category_id, payload.model_dump(exclude_unset=True))
    return CategoryResponse.from_record(record)


@router.put("/{category_id}/parent", response_model=CategoryResponse)
async def reparent_category(
    category_id: int,
    payload: ReparentRequest,
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """更换父分类；parentId 为空表示移到根"""
    record = service.reparent(auth, category_id, payload.parentId)
    return CategoryResponse.from_record(record)


@router.post("/{category_id}/move", response_model=list[OrderAssignmentResponse])
async def move_category(
    category_id: int,
    payload: MoveRequest,
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """上移/下移一位"""
    assignments = service.move(auth, category_id, payload.direction)
    return [OrderAssignmentResponse.from_assignment(a) for a in assignments]


@router.delete("/{category_id}", response_model=BulkResultResponse)
async def delete_category(
    category_id: int,
    policy: Optional[DeletePolicy] = Query(None),
    productPolicy: Optional[ProductPolicy] = Query(None),
    reassignTo: Optional[int] = Query(None),
    service: CategoryService = Depends(get_category_service),
    auth: AuthorizationContext = Depends(get_authorization_context),
):
    """删除分类"""
    result = service.delete(
        auth,
        category_id,
        policy=policy,
        product_policy=productPolicy,
        reassign_to=reassignTo,
    )
    return BulkResultResponse.from_result(result)
