# mapworker/errors.py
# 后台任务里的三类可恢复错误；都不会冒泡到宿主进程


class WorkerError(Exception):
    pass


class LocationUnavailable(WorkerError):
    """没有缓存定位，或缓存定位已过期。"""


class CorruptRecord(WorkerError):
    """持久化的时间戳不是合法整数。"""

    def __init__(self, key: str, raw: str):
        super().__init__(f"corrupt record for {key!r}: {raw!r}")
        self.key = key
        self.raw = raw


class ResolutionFailure(WorkerError):
    """坐标无法落到任何已知区域。"""
