"""
数据库连接模块

管理数据库引擎和会话的创建，以及启动阶段的表结构就绪检查。

重要提示：
- 数据库表结构通过 Alembic 迁移管理（scripts/prestart.sh 中执行 alembic upgrade head），
  不要在请求处理中补建表或补字段
- 确保在使用前导入所有模型（shop.models），否则关系可能无法正确初始化
"""
import logging
from pathlib import Path

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import Engine
from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, create_engine

from shop.core.config import settings

logger = logging.getLogger(__name__)

# 创建数据库引擎（连接池）
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI))

# backend/alembic.ini
ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"

# 表/字段缺失时各数据库返回的错误特征
# PostgreSQL: 42P01 undefined_table, 42703 undefined_column
# SQLite: no such table / no such column
_MISSING_SCHEMA_MARKERS = (
    "no such table",
    "no such column",
    "undefinedtable",
    "undefinedcolumn",
    "42p01",
    "42703",
    "does not exist",
)


def is_missing_schema_error(exc: BaseException) -> bool:
    """
    判断异常是否由表或字段缺失引起

    用于首次部署、迁移尚未执行时的容错：清理任务和聚合重算遇到这种错误时
    视为“没有数据”，而不是让请求失败。

    Args:
        exc: 捕获到的异常

    Returns:
        是否为表/字段缺失错误
    """
    if not isinstance(exc, DBAPIError):
        return False
    orig = getattr(exc, "orig", None)
    text = f"{type(orig).__name__} {getattr(orig, 'sqlstate', '') or ''} {exc}".lower()
    return any(marker in text for marker in _MISSING_SCHEMA_MARKERS)


def alembic_config() -> Config:
    """加载 alembic.ini，script_location 以 ini 所在目录为基准"""
    cfg = Config(str(ALEMBIC_INI))
    cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "shop" / "alembic"))
    return cfg


def head_revision() -> str | None:
    """迁移脚本中的最新版本号"""
    return ScriptDirectory.from_config(alembic_config()).get_current_head()


def current_revision(db_engine: Engine) -> str | None:
    """数据库当前所在的迁移版本号，未执行过迁移时为 None"""
    with db_engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def schema_is_current(db_engine: Engine) -> bool:
    """
    检查数据库表结构是否已迁移到最新版本

    作为就绪检查（readiness gate）使用：迁移完成之前不应对外提供服务。

    Args:
        db_engine: 数据库引擎

    Returns:
        数据库版本是否等于迁移脚本的 head 版本
    """
    head = head_revision()
    current = current_revision(db_engine)
    if current != head:
        logger.warning("Database schema not ready: current=%s head=%s", current, head)
        return False
    return True


def init_db(session: Session) -> None:
    """
    初始化数据（迁移完成后执行一次）

    回填所有商品的库存/锁定/销量聚合字段，保证首页展示的数字与卡密、订单一致。

    Args:
        session: 数据库会话
    """
    from shop.services import aggregates

    count = aggregates.backfill_all(session)
    logger.info("Product aggregates backfilled: products=%d", count)
