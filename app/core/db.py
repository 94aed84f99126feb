"""
数据库连接模块

管理数据库引擎的创建。

重要提示：
- 数据库表结构通过 Alembic 迁移管理（app/alembic/versions），不要在这里创建表
- 订单状态写入依赖行锁（SELECT ... FOR UPDATE）和版本号检查，
  生产环境必须使用 PostgreSQL；测试使用 SQLite 时行锁会被忽略，只保留版本号检查
"""
from sqlmodel import create_engine  # SQLModel 的数据库工具

from app.core.config import settings

# 创建数据库引擎（连接池）
# pool_pre_ping: 取连接前先探活，避免数据库重启后拿到失效连接
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)
