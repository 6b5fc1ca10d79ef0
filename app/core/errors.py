"""
分类引擎的领域异常

服务层只抛出这里定义的异常，不依赖任何 Web 框架类型；
HTTP 状态码映射在 main.py 中统一注册。
"""
from typing import Iterable, Optional


class CategoryError(Exception):
    """所有分类领域异常的基类"""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(CategoryError):
    """缺少必填字段、字段非法、重名等"""

    status_code = 400


class CyclicAssignment(CategoryError):
    """重新指定父分类会形成循环（含把自己设为父分类）"""

    status_code = 400

    def __init__(self, category_id: int, new_parent_id: Optional[int]):
        if category_id == new_parent_id:
            detail = "分类不能设置自己为父分类"
        else:
            detail = "不能将分类移动到其子分类下（会形成循环）"
        super().__init__(detail)
        self.category_id = category_id
        self.new_parent_id = new_parent_id


class NotFound(CategoryError):
    """目标分类或父分类不存在"""

    status_code = 404

    def __init__(self, detail: str = "分类不存在", category_id: Optional[int] = None):
        super().__init__(detail)
        self.category_id = category_id


class PermissionDenied(CategoryError):
    status_code = 403

    def __init__(self, detail: str = "没有管理员权限"):
        super().__init__(detail)


class PartialBulkFailure(CategoryError):
    """批量操作实际生效数量少于请求数量（仅在调用方要求时抛出）"""

    status_code = 409

    def __init__(self, requested: int, count: int, missing: Iterable[int] = ()):
        self.requested = requested
        self.count = count
        self.missing = sorted(missing)
        super().__init__(f"批量操作只处理了 {count}/{requested} 个分类")


class StoreUnavailable(CategoryError):
    """数据库不可用；引擎内部不做重试"""

    status_code = 503

    def __init__(self, detail: str = "数据库暂不可用，请稍后重试"):
        super().__init__(detail)
