"""
数据库自动初始化检查模块
在应用启动时自动检查并执行必要的初始化步骤
"""
from sqlalchemy import inspect
from circuit_boq.db.session import get_engine
from circuit_boq.db.init_db import init_db
from circuit_boq.logger import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = ("circuit_materials", "audit_logs")


def check_tables_exist() -> bool:
    """检查数据库表是否存在"""
    engine = get_engine()
    inspector = inspect(engine)
    tables = inspector.get_table_names()
    return all(name in tables for name in REQUIRED_TABLES)


def auto_init():
    """
    自动初始化检查
    如果数据库表缺失，自动建表
    """
    logger.info("Checking database initialisation state")

    if not check_tables_exist():
        logger.info("Tables missing, creating schema")
        try:
            init_db()
        except Exception:
            logger.exception("Schema creation failed")
            raise
        logger.info("Schema created")
    else:
        logger.info("Tables already exist")


if __name__ == "__main__":
    auto_init()
