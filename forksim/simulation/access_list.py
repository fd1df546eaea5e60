"""
Access-List Builder - 访问列表构建

两次执行：
1. 探测：commit=False，收集读或写过的 (address, storage key)
2. 最终：带上探测得到的访问列表再次执行并提交，只有这次的状态保留

两次的 gas 都会报告。冷/热存储访问的计费在两次执行之间本来就不同，
所以最终 gas 可能高于探测 gas，这里如实保留两个数字，不做调和。
"""

import logging
from typing import Tuple

from ..models import AccessList, CallRequest, ExecutionOutcome
from ..state.cache import LayeredStateCache
from .executor import CallExecutor


logger = logging.getLogger(__name__)


class AccessListBuilder:
    """访问列表构建器"""

    def __init__(self, executor: CallExecutor):
        self.executor = executor

    def probe(self, request: CallRequest, cache: LayeredStateCache) -> Tuple[ExecutionOutcome, AccessList]:
        """只做探测执行，不修改缓存"""
        outcome = self.executor.execute(request, cache, commit=False)
        return outcome, outcome.touched

    def build(self, request: CallRequest, cache: LayeredStateCache) -> Tuple[ExecutionOutcome, AccessList]:
        """
        构建访问列表并提交最终执行

        Args:
            request: 调用请求
            cache: 分层状态缓存

        Returns:
            (最终执行结果, 访问列表)。探测失败时不执行第二次，返回未提交的探测结果。
        """
        probe, access_list = self.probe(request, cache)

        logger.info(f"[{request.target}] Gas used with no access list: {probe.gas_used}")
        logger.info(f"[{request.target}] Gas refunded with no access list: {probe.gas_refunded}")

        if not probe.ok:
            logger.warning(f"[{request.target}] 探测执行失败，跳过提交: {probe.status.value}")
            probe.probe_gas_used = probe.gas_used
            probe.probe_gas_refunded = probe.gas_refunded
            return probe, access_list

        final = self.executor.execute(request.with_access_list(access_list), cache, commit=True)
        final.probe_gas_used = probe.gas_used
        final.probe_gas_refunded = probe.gas_refunded

        logger.info(f"[{request.target}] Gas used with access list: {final.gas_used}")
        logger.info(f"[{request.target}] Gas refunded with access list: {final.gas_refunded}")

        if final.ok and final.return_data != probe.return_data:
            logger.warning(
                f"[{request.target}] 探测与最终执行的返回数据不一致: "
                f"0x{probe.return_data.hex()} != 0x{final.return_data.hex()}"
            )

        return final, access_list
