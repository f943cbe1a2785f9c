"""
Celery应用配置：订单流程的周期任务（过期清理、补发邀请、闲置购物车、延时任务）
"""
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode
from celery import Celery
from orderflow.core.config import settings


def _ensure_rediss_ssl_cert_reqs(url: str, default: str = "CERT_NONE") -> str:
    """rediss:// URL 必须带 ssl_cert_reqs 参数，否则 Celery Redis 后端会报错。"""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = [default]
    new_query = urlencode(qs, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


# 未单独配置时与 REDIS_URL 一致，.env 里只填 REDIS_URL 即可
_broker_url = _ensure_rediss_ssl_cert_reqs(settings.CELERY_BROKER_URL or settings.REDIS_URL)
_backend_url = _ensure_rediss_ssl_cert_reqs(settings.CELERY_RESULT_BACKEND or settings.REDIS_URL)

celery_app = Celery(
    "orderflow",
    broker=_broker_url,
    backend=_backend_url,
    include=["orderflow.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_concurrency=2,
    # 周期任务只需单实例 beat
    beat_schedule={
        "orders-expire-invites": {
            "task": "orders.expire_invites",
            "schedule": float(settings.REAPER_INTERVAL_SECONDS),
        },
        "orders-send-invites": {
            "task": "orders.send_invites",
            "schedule": float(settings.SEND_INVITES_INTERVAL_SECONDS),
        },
        "carts-cleanup-idle": {
            "task": "carts.cleanup_idle",
            "schedule": float(settings.CART_CLEANUP_INTERVAL_SECONDS),
        },
        "scheduled-run-due": {
            "task": "scheduled.run_due",
            "schedule": float(settings.SCHEDULED_TASKS_INTERVAL_SECONDS),
        },
    },
)
