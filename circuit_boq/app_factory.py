'''“组装 Flask App 的工厂”（不启动，不产生行为副作用）
负责注入配置、注册蓝图和 error handler，不负责启动服务（不调用 app.run()）
会被 run.py / gunicorn / 单元测试调用'''
# circuit_boq/app_factory.py
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError

from circuit_boq.logger import get_logger
from circuit_boq.services.exceptions import (
    MaterialValidationError,
    MaterialNotFoundError,
    PersistenceError,
    CascadeDeleteError,
)

# 加载环境变量
load_dotenv()

# 获取项目根目录（使用绝对路径）
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

logger = get_logger(__name__)


def create_app(config_overrides=None):
    """应用工厂函数"""
    app = Flask(__name__)

    # 数据库配置（使用绝对路径）
    db_path = os.path.join(BASE_DIR, 'circuit_boq.db')
    default_db_url = f"sqlite:///{db_path}"
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', default_db_url)
    app.config['JSON_SORT_KEYS'] = False

    if config_overrides:
        app.config.update(config_overrides)

    # session.get_engine() 读取环境变量
    os.environ.setdefault('DATABASE_URL', app.config['DATABASE_URL'])

    # 注册蓝图
    from circuit_boq.routes.material import material_bp
    from circuit_boq.routes.audit import audit_bp

    app.register_blueprint(material_bp)
    app.register_blueprint(audit_bp)

    # 注册错误处理
    register_error_handlers(app)

    return app


def register_error_handlers(app):
    """注册错误处理器：统一返回 JSON"""
    @app.errorhandler(MaterialValidationError)
    def validation_error(error):
        return jsonify({"error": "validation_error", "field": error.field, "message": str(error)}), 400

    @app.errorhandler(MaterialNotFoundError)
    def not_found(error):
        return jsonify({"error": "not_found", "message": str(error)}), 404

    @app.errorhandler(CascadeDeleteError)
    def cascade_delete_error(error):
        logger.error(f"Cascade delete failed for {error.parent_id}: {error}")
        return jsonify({
            "error": "cascade_delete_failed",
            "message": "Derived materials could not be removed; the material was kept. Please retry.",
            "parent_id": error.parent_id,
            "retryable": True,
        }), 503

    @app.errorhandler(PersistenceError)
    def persistence_error(error):
        logger.error(f"Persistence error: {error}")
        return jsonify({
            "error": "persistence_error",
            "message": "The data store could not save the change. Please retry.",
            "retryable": True,
        }), 503

    @app.errorhandler(SQLAlchemyError)
    def database_error(error):
        logger.exception("Unhandled database error")
        return jsonify({
            "error": "persistence_error",
            "message": "The data store could not save the change. Please retry.",
            "retryable": True,
        }), 503

    @app.errorhandler(404)
    def route_not_found(error):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404
