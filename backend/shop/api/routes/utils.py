"""
工具路由模块

- 健康检查（存活探针）
- 就绪检查：数据库迁移到最新版本之前不对外服务
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from shop.core.db import engine, schema_is_current

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
async def health_check() -> bool:
    """
    健康检查端点

    请求路径: GET /api/v1/utils/health-check/

    Returns:
        bool: 总是返回 True，表示进程存活
    """
    return True


@router.get("/ready")
def ready() -> JSONResponse:
    """
    就绪检查端点

    数据库版本等于 alembic head 时返回 200，否则返回 503。
    迁移由 scripts/prestart.sh 在启动前执行，这里只检查不修复。

    请求路径: GET /api/v1/utils/ready
    """
    if schema_is_current(engine):
        return JSONResponse(status_code=200, content={"code": 0, "message": "success", "data": True})
    return JSONResponse(
        status_code=503,
        content={"code": 503000, "message": "Database schema not ready", "data": False},
    )
