"""
基础模型模块

定义所有模型共用的基础类和工具函数。

所有时间字段统一存储为 Unix 毫秒时间戳（BIGINT），预占窗口、支付超时等比较
全部基于同一时间基准，避免秒/毫秒、绝对时间/相对时间混用。
"""
import time

from sqlmodel import SQLModel


def now_ms() -> int:
    """
    获取当前 Unix 毫秒时间戳

    Returns:
        当前时间的毫秒数
    """
    return int(time.time() * 1000)


# 导出 SQLModel 供其他模块使用
__all__ = ["SQLModel", "now_ms"]
