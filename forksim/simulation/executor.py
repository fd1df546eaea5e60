"""
Call Executor - 单次调用执行器

在分层缓存上执行一次调用，报告执行结果以及读写过的账户/存储。
- commit=False（探测）：只计算结果和读写集合，不写入缓存
- commit=True：执行并把状态变更写入缓存
"""

import logging
from typing import Optional

from ..abi.codec import decode_revert_reason
from ..models import BlockEnv, CallRequest, ExecutionOutcome, ExecutionStatus, StateDiff
from ..state.cache import LayeredStateCache
from ..state.journal import StateJournal
from .engine import CallEngine


logger = logging.getLogger(__name__)


class CallExecutor:
    """
    调用执行器

    revert 或 halt 不会抛出异常，调用方通过 outcome.ok 或
    outcome.raise_for_status() 决定是否继续场景。
    """

    def __init__(self, engine: CallEngine, chain_id: int = 1, timestamp: Optional[int] = None):
        """
        初始化执行器

        Args:
            engine: 外部调用执行引擎
            chain_id: 链 ID
            timestamp: 模拟区块时间戳（None 由引擎决定）
        """
        self.engine = engine
        self.chain_id = chain_id
        self.timestamp = timestamp

    def block_env(self, request: CallRequest, cache: LayeredStateCache) -> BlockEnv:
        """模拟下一个区块：number = 分叉区块 + 1，除非请求覆盖"""
        number = request.block_number
        if number is None:
            number = cache.block_number + 1
        return BlockEnv(
            number=number,
            chain_id=self.chain_id,
            timestamp=self.timestamp,
        )

    def execute(
        self,
        request: CallRequest,
        cache: LayeredStateCache,
        commit: bool = False,
    ) -> ExecutionOutcome:
        """
        执行调用

        Args:
            request: 调用请求
            cache: 分层状态缓存
            commit: 是否把状态变更写入缓存

        Returns:
            ExecutionOutcome: 执行结果
        """
        journal = StateJournal(cache)
        env = self.block_env(request, cache)
        result = self.engine.run(request, env, journal)

        outcome = ExecutionOutcome(
            status=result.status,
            gas_used=result.gas_used,
            gas_refunded=result.gas_refunded,
            touched=journal.access_list(),
        )

        if result.status == ExecutionStatus.SUCCESS:
            outcome.return_data = result.output
            outcome.logs = result.logs
            outcome.state_diff = journal.diff()
        elif result.status == ExecutionStatus.REVERT:
            outcome.return_data = result.output
            outcome.revert_reason = decode_revert_reason(result.output) or "0x" + result.output.hex()
            outcome.state_diff = StateDiff()
            logger.warning(f"调用 revert: {request.target} 原因: {outcome.revert_reason}")
        else:
            outcome.halt_reason = result.halt_reason or "unknown"
            outcome.state_diff = StateDiff()
            logger.warning(f"调用异常终止: {request.target} 原因: {outcome.halt_reason}")

        if commit and outcome.ok:
            cache.apply_diff(outcome.state_diff)
            outcome.committed = True

        logger.debug(
            f"执行完成: to={request.target} status={outcome.status.value} "
            f"gas={outcome.gas_used} commit={commit}"
        )
        return outcome
