"""
Layered State Cache - 分层状态缓存

本地可变的状态层，覆盖在固定区块的远程状态之上：
- 读取未命中时从远程状态源获取并缓存，之后由本地提供
- set_* 直接写入缓存，不经过远程，本地值永远遮蔽远程值
- 单会话、单线程独占，由一个模拟会话顺序修改
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from ..models import UINT256_MAX, Account, AccountDiff, StateDiff, to_address
from .remote import RemoteStateSource


logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """
    单个账户的缓存条目

    storage 中是已加载（或本地写入）的存储槽；absent_slots 是远程确认为空的槽。
    两者都不会再次访问远程。
    """
    account: Optional[Account]
    remote_missing: bool = False
    storage: Dict[int, int] = field(default_factory=dict)
    absent_slots: Set[int] = field(default_factory=set)
    dirty_account: bool = False
    dirty_slots: Set[int] = field(default_factory=set)

    def lookup(self, key: int) -> Optional[int]:
        """返回已知的槽值，未知返回 None"""
        if key in self.storage:
            return self.storage[key]
        if key in self.absent_slots or self.remote_missing:
            return 0
        return None


class LayeredStateCache:
    """
    分层状态缓存

    绑定到一个固定的历史区块，会话结束即丢弃，不做跨会话持久化。
    """

    def __init__(self, remote: RemoteStateSource, block_number: int):
        """
        初始化缓存

        Args:
            remote: 远程状态源
            block_number: 固定的分叉区块号
        """
        self.remote = remote
        self.block_number = block_number
        self._entries: Dict[str, CacheEntry] = {}

    def __contains__(self, address: str) -> bool:
        return to_address(address) in self._entries

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    def _entry(self, address: str) -> CacheEntry:
        entry = self._entries.get(address)
        if entry is None:
            logger.debug(f"缓存未命中，加载账户: {address}")
            account = self.remote.get_account(address, self.block_number)
            entry = CacheEntry(account=account, remote_missing=account is None)
            self._entries[address] = entry
        return entry

    def get_account(self, address: str) -> Optional[Account]:
        """读取账户，账户不存在返回 None"""
        return self._entry(to_address(address)).account

    def get_storage(self, address: str, key: int) -> int:
        """读取存储槽"""
        address = to_address(address)
        entry = self._entry(address)
        value = entry.lookup(key)
        if value is not None:
            return value

        logger.debug(f"缓存未命中，加载存储: {address}[{hex(key)}]")
        value = self.remote.get_storage(address, key, self.block_number)
        if value == 0:
            entry.absent_slots.add(key)
        else:
            entry.storage[key] = value
        return value

    # ------------------------------------------------------------------
    # 本地覆盖
    # ------------------------------------------------------------------

    def _update_account(self, address: str, **changes: Any) -> None:
        entry = self._entry(address)
        current = entry.account or Account(address=address)
        entry.account = current.model_copy(update=changes)
        entry.dirty_account = True

    def set_balance(self, address: str, value: int) -> None:
        """覆盖 ETH 余额"""
        _check_word(value)
        self._update_account(to_address(address), balance=value)

    def set_nonce(self, address: str, nonce: int) -> None:
        """覆盖 nonce"""
        self._update_account(to_address(address), nonce=nonce)

    def set_code(self, address: str, code: bytes) -> None:
        """
        在缓存中注入字节码

        仅存在于本地缓存，从不广播上链。用于场景中需要回调合约的情况。
        """
        self._update_account(to_address(address), code=bytes(code) or None)

    def set_storage(self, address: str, key: int, value: int) -> None:
        """覆盖存储槽"""
        _check_word(key)
        _check_word(value)
        entry = self._entry(to_address(address))
        entry.storage[key] = value
        entry.absent_slots.discard(key)
        entry.dirty_slots.add(key)

    def apply_diff(self, diff: StateDiff) -> None:
        """把一次执行的状态变更写入缓存"""
        for address, account_diff in diff.accounts.items():
            changes = {
                name: getattr(account_diff, name)
                for name in ("balance", "nonce", "code")
                if getattr(account_diff, name) is not None
            }
            if changes:
                self._update_account(to_address(address), **changes)
            for key, value in account_diff.storage.items():
                self.set_storage(address, key, value)

    # ------------------------------------------------------------------
    # 远程观测值
    # ------------------------------------------------------------------

    def prime_account(self, address: str, account: Optional[Account]) -> None:
        """记录外部引擎观测到的远程账户，已缓存时忽略"""
        address = to_address(address)
        if address not in self._entries:
            self._entries[address] = CacheEntry(account=account, remote_missing=account is None)

    def prime_storage(self, address: str, key: int, value: int) -> None:
        """记录外部引擎观测到的远程存储值，已知时忽略"""
        address = to_address(address)
        entry = self._entries.get(address)
        if entry is None or entry.lookup(key) is not None:
            return
        if value == 0:
            entry.absent_slots.add(key)
        else:
            entry.storage[key] = value

    # ------------------------------------------------------------------
    # 导出
    # ------------------------------------------------------------------

    def local_changes(self) -> StateDiff:
        """所有本地写入（set_* 与已提交的执行），用于向外部引擎传递覆盖"""
        accounts = {}
        for address, entry in self._entries.items():
            if not entry.dirty_account and not entry.dirty_slots:
                continue
            diff = AccountDiff(storage={k: entry.storage[k] for k in sorted(entry.dirty_slots)})
            if entry.dirty_account and entry.account is not None:
                diff.balance = entry.account.balance
                diff.nonce = entry.account.nonce
                diff.code = entry.account.code or b""
            accounts[address] = diff
        return StateDiff(accounts=accounts)

    def dump(self) -> Dict[str, Dict[str, Any]]:
        """导出全部缓存内容，用于比较"""
        return {
            address: {
                "account": entry.account.model_dump() if entry.account else None,
                "storage": dict(entry.storage),
                "absent_slots": set(entry.absent_slots),
                "dirty_slots": set(entry.dirty_slots),
                "dirty_account": entry.dirty_account,
            }
            for address, entry in self._entries.items()
        }


def _check_word(value: int) -> None:
    if not 0 <= value <= UINT256_MAX:
        raise ValueError(f"超出 uint256 范围: {value}")
