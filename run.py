# run.py
"""
run.py
标准 Flask 服务启动脚本（给开发者 / 运维 / CLI 用）
仅用于本地 / 内网启动 JSON API
"""
import os
from circuit_boq.app_factory import create_app, BASE_DIR
from circuit_boq.db.auto_init import auto_init
from circuit_boq.logger import get_logger

logger = get_logger("circuit_boq.run")


def configure_database():
    """
    未设置 DATABASE_URL 时，使用程序根目录下的 circuit_boq.db
    """
    if not os.environ.get("DATABASE_URL"):
        db_path = os.path.join(BASE_DIR, "circuit_boq.db")
        os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    logger.info(f"Using database: {os.environ['DATABASE_URL']}")


def main():
    # 0️统一数据库路径
    configure_database()

    # 1️启动前初始化数据库
    auto_init()

    # 2️创建 Flask app
    app = create_app()

    # 3️启动参数
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "0") == "1"

    # 4️启动服务
    app.run(host=host, port=port, debug=debug, use_reloader=False)


if __name__ == "__main__":
    main()
