"""
Call Engine - 外部调用执行引擎接口

forksim 自身不实现合约执行语义，而是委托给可插拔的引擎。
引擎只能通过 StateJournal 读写状态，这样读写集合才能被完整记录。
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models import BlockEnv, CallRequest, ExecutionStatus, Log
from ..state.journal import StateJournal


class EngineResult(BaseModel):
    """引擎返回的原始执行结果"""
    status: ExecutionStatus
    output: bytes = Field(default=b"", description="返回数据或 revert 数据")
    gas_used: int = Field(default=0, description="消耗的 gas")
    gas_refunded: int = Field(default=0, description="退还的 gas")
    logs: List[Log] = Field(default_factory=list, description="事件日志")
    halt_reason: Optional[str] = Field(None, description="异常终止原因")


class CallEngine(ABC):
    """
    调用执行引擎基础类

    实现方需要：
    1. 在 env 描述的区块环境中执行 request
    2. 所有状态读写都经过 state
    3. 如果 request.access_list 不为空，按预热的访问列表计费
    """

    engine_name: str = "base_engine"

    @abstractmethod
    def run(self, request: CallRequest, env: BlockEnv, state: StateJournal) -> EngineResult:
        """
        执行单次调用

        Args:
            request: 调用请求
            env: 区块环境
            state: 本次执行的状态日志

        Returns:
            EngineResult: 执行结果
        """
        raise NotImplementedError
