"""
Simulation Engine - 分叉状态上的调用模拟模块

提供调用执行、访问列表构建和余额存储槽定位功能。
"""

from .engine import CallEngine, EngineResult
from .rpc_engine import TraceCallEngine
from .executor import CallExecutor
from .access_list import AccessListBuilder
from .slot_locator import StorageSlotLocator, balance_slot_candidate, DEFAULT_SLOT_SEARCH_LIMIT
from .session import SimulationSession

__all__ = [
    # Engine
    "CallEngine",
    "EngineResult",
    "TraceCallEngine",
    # Execution
    "CallExecutor",
    "AccessListBuilder",
    # Slot discovery
    "StorageSlotLocator",
    "balance_slot_candidate",
    "DEFAULT_SLOT_SEARCH_LIMIT",
    # Session
    "SimulationSession",
]
