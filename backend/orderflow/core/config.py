"""
应用配置：从环境变量读取配置
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从项目根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API配置
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Orderflow 订单与支付编排服务"
    CORS_ORIGINS: List[str] = ["*"]  # CORS允许的源

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/orderflow.db"
    DATABASE_ECHO: bool = False

    # Redis配置
    REDIS_URL: str = "redis://localhost:6379/0"

    # 缓存配置（运行时设置读穿缓存，key 前缀区分）
    CACHE_ENABLED: bool = True
    CACHE_KEY_PREFIX: str = "orderflow:cache:"
    CACHE_TTL_SETTINGS: int = 30       # 运行时设置 30 秒

    # Celery配置（不填则与 REDIS_URL 一致，只维护一份 Redis 地址即可）
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # Telegram 机器人（消息网关）。未配置 token 时使用空实现，所有发送变为 no-op
    CLIENT_BOT_TOKEN: str = ""   # 买家侧机器人，同时负责结账频道
    MANAGER_BOT_TOKEN: str = ""  # 管理员侧机器人，用于通知
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    TELEGRAM_TIMEOUT: float = 15.0

    # 支付频道（环境级默认值，数据库中的运行时设置优先）
    CHECKOUT_CHANNEL_ID: Optional[str] = None
    CHECKOUT_IMAGE_FILE_ID: Optional[str] = None
    INVITE_EXPIRY_MINUTES: int = 60
    PAYMENT_METHOD: str = "channel"  # channel | direct
    DEFAULT_CURRENCY: str = "IRR"

    # 折扣：未识别的 autoRule 是否视为可用（默认拒绝）
    DISCOUNT_UNKNOWN_RULE_APPLICABLE: bool = False

    # 后台轮询任务
    REAPER_INTERVAL_SECONDS: int = 120          # 邀请过期清理
    SEND_INVITES_INTERVAL_SECONDS: int = 60     # 已批准但未发出邀请的订单重试
    CART_CLEANUP_INTERVAL_SECONDS: int = 3600   # 闲置购物车过期
    CART_IDLE_HOURS: int = 24
    SCHEDULED_TASKS_INTERVAL_SECONDS: int = 60  # 延时任务（如自动删除付款消息）
    SCHEDULED_TASK_MAX_ATTEMPTS: int = 3

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "orderflow.log"

    @property
    def payment_methods(self) -> List[str]:
        """支持的付款方式"""
        return ["channel", "direct"]


# 创建全局配置实例
settings = Settings()
