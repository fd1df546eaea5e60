"""
State Layer - 状态层

远程状态源、分层缓存和单次执行的状态日志。
"""

from .remote import RemoteStateSource, Web3RemoteState
from .cache import LayeredStateCache, CacheEntry
from .journal import StateJournal

__all__ = [
    "RemoteStateSource",
    "Web3RemoteState",
    "LayeredStateCache",
    "CacheEntry",
    "StateJournal",
]
