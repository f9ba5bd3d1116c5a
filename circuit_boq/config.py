# circuit_boq/config.py
'''
Engine-wide configuration.
Values come from the environment (.env is loaded once at import) and are
collected into an EngineSettings model so services never read os.environ directly.
'''
import os
from decimal import Decimal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# 加载环境变量
load_dotenv()


class EngineSettings(BaseModel):
    '''
    参数	说明
    default_cable_size_mm2	无法从描述中提取线径时使用的默认线径
    cable_ends	每条电缆的端接数量（两端）
    log_dir	日志目录
    log_level	日志级别
    '''
    default_cable_size_mm2: Decimal = Field(default=Decimal("2.5"), gt=0)
    cable_ends: int = Field(default=2, ge=1)
    log_dir: str = "logs"
    log_level: str = "INFO"


def load_engine_settings() -> EngineSettings:
    return EngineSettings(
        default_cable_size_mm2=os.getenv("CIRCUIT_BOQ_DEFAULT_CABLE_SIZE", "2.5"),
        cable_ends=int(os.getenv("CIRCUIT_BOQ_CABLE_ENDS", 2)),
        log_dir=os.getenv("CIRCUIT_BOQ_LOG_DIR", "logs"),
        log_level=os.getenv("CIRCUIT_BOQ_LOG_LEVEL", "INFO"),
    )
