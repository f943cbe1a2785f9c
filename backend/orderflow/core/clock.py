"""
时间工具：统一使用不带时区的 UTC 时间写库（sqlite 不保存时区信息）
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """当前 UTC 时间（naive）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
