"""
Storage Slot Locator - 余额存储槽定位

对任意 ERC-20 合约，找出保存 balanceOf(account) 的存储槽：
1. 探测执行 balanceOf(account)，取 token 地址被触及的存储键
2. 对声明位置 i 计算 keccak256(abi.encode(account, i))（以地址为键的 mapping）
3. 返回第一个出现在触及集合中的候选槽

候选数量上限是经验值，不是证明过的上界，可通过配置调整。
"""

import logging

from eth_abi import encode as abi_encode
from eth_utils import keccak

from ..abi.interfaces import ERC20
from ..errors import SlotNotFound
from ..models import CallRequest, to_address
from ..state.cache import LayeredStateCache
from .executor import CallExecutor


logger = logging.getLogger(__name__)


DEFAULT_SLOT_SEARCH_LIMIT = 50


def balance_slot_candidate(account: str, index: int) -> int:
    """Solidity mapping(address => ...) 声明在第 index 个槽时 account 对应的槽"""
    return int.from_bytes(keccak(abi_encode(["address", "uint256"], [account, index])), "big")


class StorageSlotLocator:
    """余额存储槽定位器"""

    def __init__(
        self,
        executor: CallExecutor,
        caller: str,
        limit: int = DEFAULT_SLOT_SEARCH_LIMIT,
    ):
        """
        Args:
            executor: 调用执行器
            caller: 探测调用的发送者
            limit: 尝试的 mapping 声明位置数量
        """
        if limit <= 0:
            raise ValueError(f"limit 必须为正数: {limit}")
        self.executor = executor
        self.caller = to_address(caller)
        self.limit = limit

    def find_balance_slot(self, token: str, account: str, cache: LayeredStateCache) -> int:
        """
        查找 balanceOf(account) 的存储槽

        Raises:
            SlotNotFound: 候选范围内没有匹配
            ExecutionRevert / ExecutionHalt: 探测调用失败
        """
        token = to_address(token)
        account = to_address(account)

        request = CallRequest(
            sender=self.caller,
            target=token,
            data=ERC20.function("balanceOf").encode(account),
        )
        outcome = self.executor.execute(request, cache, commit=False).raise_for_status()
        touched_keys = outcome.touched.keys_for(token)

        for index in range(self.limit):
            slot = balance_slot_candidate(account, index)
            if slot in touched_keys:
                logger.info(f"找到余额存储槽: token={token} 声明位置={index} slot={hex(slot)}")
                return slot

        raise SlotNotFound(token, account, self.limit)

    def set_token_balance(
        self,
        token: str,
        account: str,
        amount: int,
        cache: LayeredStateCache,
    ) -> int:
        """
        直接写入代币余额，不经过真实转账

        Returns:
            写入的存储槽
        """
        slot = self.find_balance_slot(token, account, cache)
        cache.set_storage(token, slot, amount)
        return slot
