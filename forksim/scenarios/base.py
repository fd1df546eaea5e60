"""
Contract Wrapper - 场景层合约封装基础类

读操作只做探测执行；写操作经过访问列表构建器（探测 + 带访问列表提交）。
失败的调用通过 ExecutionRevert / ExecutionHalt 抛出，由场景决定如何处理。
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..abi.codec import ContractInterface
from ..models import AccessList, ExecutionOutcome, to_address
from ..simulation.session import SimulationSession


logger = logging.getLogger(__name__)


class ContractCallResult(BaseModel):
    """写操作的结果"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Any = Field(None, description="解码后的返回值")
    outcome: ExecutionOutcome = Field(..., description="最终执行结果")
    access_list: AccessList = Field(default_factory=AccessList, description="探测得到的访问列表")


class SwapResult(BaseModel):
    """兑换场景结果"""
    amount_in: int = Field(..., ge=0, description="实际投入的数量")
    amount_out: int = Field(..., ge=0, description="实际得到的数量")


class ContractWrapper:
    """合约封装基础类"""

    interface: ContractInterface
    label: str = "Contract"

    def __init__(self, session: SimulationSession, address: str, caller: Optional[str] = None):
        """
        Args:
            session: 模拟会话
            address: 合约地址
            caller: 调用者，默认使用会话的调用者
        """
        self.session = session
        self.address = to_address(address)
        self.caller = to_address(caller) if caller else session.caller

    def call(self, function_name: str, *args: Any) -> Any:
        """只读调用，返回解码结果"""
        function = self.interface.function(function_name)
        outcome = self.session.call(self.address, function.encode(*args), sender=self.caller)
        outcome.raise_for_status()
        return function.decode(outcome.return_data)

    def transact(self, function_name: str, *args: Any) -> ContractCallResult:
        """写操作：探测访问列表后带访问列表提交"""
        function = self.interface.function(function_name)
        outcome, access_list = self.session.transact(
            self.address, function.encode(*args), sender=self.caller
        )
        outcome.raise_for_status()

        value = function.decode(outcome.return_data)
        logger.info(f"{self.label} {function.name} - Output: {value}")
        return ContractCallResult(value=value, outcome=outcome, access_list=access_list)

    def __repr__(self) -> str:
        return f"<{self.label} {self.address}>"
