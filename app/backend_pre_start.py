"""
应用启动前检查脚本

在执行数据库迁移、启动应用之前：
1. 等待数据库可连接（Docker Compose 中数据库容器可能还在初始化）
2. 报告各支付渠道是否已配置（未配置的渠道接口会返回 503）

运行方式：
    python -m app.backend_pre_start
"""
import logging  # 日志记录

from sqlalchemy import Engine  # SQLAlchemy 引擎类型
from sqlmodel import Session, select  # SQLModel 会话和查询
from tenacity import (  # 重试库，用于实现重试机制
    after_log,  # 重试后的日志记录
    before_log,  # 重试前的日志记录
    retry,  # 重试装饰器
    stop_after_attempt,  # 停止条件：达到最大尝试次数
    wait_fixed,  # 等待策略：固定间隔
)

from app.core.config import settings
from app.core.db import engine  # 数据库引擎
from app.enums import PaymentProvider
from app.payments import build_registry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 最多等待 5 分钟
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(db_engine: Engine) -> None:
    """
    检查数据库是否可用

    失败时抛出异常，由 tenacity 重试，直到成功或达到最大次数。
    """
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error(e)
        raise e


def check_providers() -> dict[PaymentProvider, bool]:
    registry = build_registry(settings)
    try:
        status = {p: registry.is_available(p) for p in PaymentProvider}
    finally:
        registry.close()
    for provider, available in status.items():
        if available:
            logger.info(f"{provider.value} provider configured")
        else:
            logger.warning(f"{provider.value} provider not configured, its endpoints will return 503")
    return status


def main() -> None:
    logger.info("Initializing service")
    init(engine)
    check_providers()
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
