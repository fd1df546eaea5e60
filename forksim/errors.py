"""
forksim Error Taxonomy

模拟过程中的错误分类。缓存和编解码错误原样向上传播，
只有场景层决定 revert 是有意义的模拟结果还是 bug。
"""

from typing import Optional


class SimulationError(Exception):
    """forksim 所有错误的基类"""


class RemoteFetchError(SimulationError):
    """远程状态源（RPC）读取失败，绝不猜测状态"""

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        key: Optional[int] = None,
        block: Optional[int] = None,
    ):
        super().__init__(message)
        self.address = address
        self.key = key
        self.block = block


class ExecutionRevert(SimulationError):
    """调用被 revert，可恢复，由调用方决定是否继续场景"""

    def __init__(self, reason: str, data: bytes = b""):
        super().__init__(f"Reverted: {reason}")
        self.reason = reason
        self.data = data


class ExecutionHalt(SimulationError):
    """调用异常终止（如 out-of-gas），对该调用是致命的"""

    def __init__(self, reason: str):
        super().__init__(f"Halted: {reason}")
        self.reason = reason


class DecodeError(SimulationError):
    """返回数据或日志与声明的 ABI 不匹配"""


class SlotNotFound(SimulationError):
    """在候选范围内没有找到余额存储槽"""

    def __init__(self, token: str, account: str, limit: int):
        super().__init__(
            f"未找到存储槽: token={token} account={account} (已尝试 {limit} 个候选)"
        )
        self.token = token
        self.account = account
        self.limit = limit


class ScenarioError(SimulationError):
    """场景执行后的校验失败（例如余额变动与预期不符）"""
