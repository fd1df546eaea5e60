"""
Simulation Session - 模拟会话

把一个固定区块上的缓存、执行器、访问列表构建器和存储槽定位器组合在一起。
会话内的调用按顺序执行，后面的调用可以依赖前面提交的状态（如先 approve 再 transferFrom）。
会话结束后缓存即被丢弃。
"""

import logging
from typing import Optional, Tuple, Union

from ..config import Settings, get_settings
from ..errors import SimulationError
from ..models import AccessList, CallRequest, ExecutionOutcome, to_address, to_bytes
from ..state.cache import LayeredStateCache
from ..state.remote import RemoteStateSource, Web3RemoteState
from .access_list import AccessListBuilder
from .engine import CallEngine
from .executor import CallExecutor
from .rpc_engine import TraceCallEngine
from .slot_locator import DEFAULT_SLOT_SEARCH_LIMIT, StorageSlotLocator


logger = logging.getLogger(__name__)


class SimulationSession:
    """
    模拟会话

    使用示例：
        with SimulationSession.from_settings() as session:
            session.set_eth_balance(caller, 10**18)
            outcome, access_list = session.transact(token, calldata)
    """

    def __init__(
        self,
        remote: RemoteStateSource,
        engine: CallEngine,
        block_number: int,
        caller: str,
        chain_id: int = 1,
        gas_limit: int = 30_000_000,
        slot_search_limit: int = DEFAULT_SLOT_SEARCH_LIMIT,
        timestamp: Optional[int] = None,
    ):
        """
        初始化会话

        Args:
            remote: 远程状态源
            engine: 调用执行引擎
            block_number: 固定的分叉区块号
            caller: 默认调用者
            chain_id: 链 ID
            gas_limit: 默认 gas 限制
            slot_search_limit: 存储槽搜索的候选数量
            timestamp: 模拟区块时间戳
        """
        self.caller = to_address(caller)
        self.gas_limit = gas_limit
        self.chain_id = chain_id
        self.timestamp = timestamp
        self.engine = engine
        self.cache = LayeredStateCache(remote, block_number)
        self.executor = CallExecutor(engine, chain_id=chain_id, timestamp=timestamp)
        self.builder = AccessListBuilder(self.executor)
        self.locator = StorageSlotLocator(self.executor, self.caller, slot_search_limit)
        self._closed = False

        logger.info(f"模拟会话已启动: block={block_number} engine={engine.engine_name} caller={self.caller}")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SimulationSession":
        """
        根据配置创建基于 RPC 的会话

        fork_block 为空时，在会话开始时解析一次最新区块。
        """
        settings = settings or get_settings()
        remote = Web3RemoteState.from_url(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
        block_number = settings.fork_block
        if block_number is None:
            block_number = remote.latest_block()

        return cls(
            remote=remote,
            engine=TraceCallEngine(remote.w3),
            block_number=block_number,
            caller=settings.caller,
            chain_id=settings.chain_id,
            gas_limit=settings.gas_limit,
            slot_search_limit=settings.slot_search_limit,
        )

    def fresh(self) -> "SimulationSession":
        """同一区块、同一引擎上的新会话，缓存为空"""
        return SimulationSession(
            remote=self.cache.remote,
            engine=self.engine,
            block_number=self.block_number,
            caller=self.caller,
            chain_id=self.chain_id,
            gas_limit=self.gas_limit,
            slot_search_limit=self.locator.limit,
            timestamp=self.timestamp,
        )

    @property
    def block_number(self) -> int:
        return self.cache.block_number

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise SimulationError("模拟会话已关闭")

    # ------------------------------------------------------------------
    # 调用
    # ------------------------------------------------------------------

    def request(
        self,
        target: Optional[str],
        data: bytes = b"",
        sender: Optional[str] = None,
        value: int = 0,
    ) -> CallRequest:
        """用会话默认值构造调用请求"""
        return CallRequest(
            sender=sender or self.caller,
            target=target,
            data=data,
            value=value,
            gas_limit=self.gas_limit,
        )

    def execute(self, request: CallRequest, commit: bool = False) -> ExecutionOutcome:
        """执行单次调用"""
        self._check_open()
        return self.executor.execute(request, self.cache, commit=commit)

    def call(self, target: str, data: bytes, sender: Optional[str] = None, value: int = 0) -> ExecutionOutcome:
        """只读探测调用，不修改缓存"""
        return self.execute(self.request(target, data, sender, value), commit=False)

    def build_access_list(self, request: CallRequest) -> Tuple[ExecutionOutcome, AccessList]:
        """探测 + 带访问列表提交"""
        self._check_open()
        return self.builder.build(request, self.cache)

    def transact(
        self,
        target: str,
        data: bytes,
        sender: Optional[str] = None,
        value: int = 0,
    ) -> Tuple[ExecutionOutcome, AccessList]:
        """以交易方式执行：先探测访问列表，再带访问列表提交"""
        return self.build_access_list(self.request(target, data, sender, value))

    # ------------------------------------------------------------------
    # 状态注入
    # ------------------------------------------------------------------

    def find_balance_slot(self, token: str, account: str) -> int:
        self._check_open()
        return self.locator.find_balance_slot(token, account, self.cache)

    def set_token_balance(self, token: str, account: str, amount: int) -> int:
        """直接写入代币余额，返回写入的存储槽"""
        self._check_open()
        return self.locator.set_token_balance(token, account, amount, self.cache)

    def set_eth_balance(self, account: str, amount: int) -> None:
        self._check_open()
        self.cache.set_balance(account, amount)

    def deploy_code(self, address: str, code: Union[bytes, str]) -> str:
        """
        在缓存中的合成地址注入字节码

        Returns:
            checksum 地址
        """
        self._check_open()
        address = to_address(address)
        self.cache.set_code(address, to_bytes(code))
        logger.debug(f"已注入字节码: {address}")
        return address

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    def close(self) -> None:
        """结束会话，丢弃缓存"""
        if self._closed:
            return
        self._closed = True
        self.cache = LayeredStateCache(self.cache.remote, self.cache.block_number)
        logger.info(f"模拟会话已结束: block={self.block_number}")

    def __enter__(self):
        """上下文管理器入口"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """上下文管理器退出"""
        self.close()
