"""
State Journal - 单次执行的状态日志

覆盖在 LayeredStateCache 之上的一次性写层：
- 读取穿透到缓存（未命中时由缓存访问远程）
- 写入只保存在日志中，不修改缓存
- 记录所有读写过的账户和存储键
- 执行结束后导出 StateDiff，由调用方决定是否 apply_diff
"""

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from ..models import UINT256_MAX, AccessList, Account, AccountDiff, StateDiff, to_address
from .cache import LayeredStateCache


logger = logging.getLogger(__name__)

_MISSING = object()


class StateJournal:
    """
    状态日志

    支持 checkpoint / revert_to，供引擎丢弃失败的内层调用帧的写入。
    被触及的键在回滚后仍然保留。
    """

    def __init__(self, cache: LayeredStateCache):
        self.cache = cache
        self._accounts: Dict[str, Account] = {}
        self._storage: Dict[str, Dict[int, int]] = {}
        self._undo: List[Tuple[str, str, Optional[int], Any]] = []
        self._touched_accounts: Set[str] = set()
        self._touched_storage: Dict[str, Set[int]] = {}

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    def _touch(self, address: str, key: Optional[int] = None) -> None:
        self._touched_accounts.add(address)
        if key is not None:
            self._touched_storage.setdefault(address, set()).add(key)

    def get_account(self, address: str) -> Optional[Account]:
        address = to_address(address)
        self._touch(address)
        if address in self._accounts:
            return self._accounts[address]
        return self.cache.get_account(address)

    def get_balance(self, address: str) -> int:
        account = self.get_account(address)
        return account.balance if account else 0

    def get_nonce(self, address: str) -> int:
        account = self.get_account(address)
        return account.nonce if account else 0

    def get_code(self, address: str) -> bytes:
        account = self.get_account(address)
        return (account.code or b"") if account else b""

    def get_storage(self, address: str, key: int) -> int:
        address = to_address(address)
        self._touch(address, key)
        pending = self._storage.get(address, {})
        if key in pending:
            return pending[key]
        return self.cache.get_storage(address, key)

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    def _write_account(self, address: str, **changes: Any) -> None:
        current = self.get_account(address) or Account(address=address)
        self._undo.append(("account", address, None, self._accounts.get(address, _MISSING)))
        self._accounts[address] = current.model_copy(update=changes)

    def set_balance(self, address: str, value: int) -> None:
        if not 0 <= value <= UINT256_MAX:
            raise ValueError(f"超出 uint256 范围: {value}")
        self._write_account(to_address(address), balance=value)

    def set_nonce(self, address: str, nonce: int) -> None:
        self._write_account(to_address(address), nonce=nonce)

    def set_code(self, address: str, code: bytes) -> None:
        self._write_account(to_address(address), code=bytes(code) or None)

    def set_storage(self, address: str, key: int, value: int) -> None:
        if not 0 <= value <= UINT256_MAX:
            raise ValueError(f"超出 uint256 范围: {value}")
        address = to_address(address)
        self._touch(address, key)
        pending = self._storage.setdefault(address, {})
        self._undo.append(("storage", address, key, pending.get(key, _MISSING)))
        pending[key] = value

    # ------------------------------------------------------------------
    # 外部引擎观测
    # ------------------------------------------------------------------

    def observe_account(self, address: str, account: Optional[Account]) -> None:
        """记录外部引擎读取到的远程账户"""
        address = to_address(address)
        self.cache.prime_account(address, account)
        self._touch(address)

    def observe_storage(self, address: str, key: int, value: int) -> None:
        """记录外部引擎读取到的远程存储值"""
        address = to_address(address)
        # 账户需先经 observe_account 记录，否则只记录触及
        self.cache.prime_storage(address, key, value)
        self._touch(address, key)

    # ------------------------------------------------------------------
    # 检查点
    # ------------------------------------------------------------------

    def checkpoint(self) -> int:
        return len(self._undo)

    def revert_to(self, checkpoint: int) -> None:
        """撤销 checkpoint 之后的写入"""
        while len(self._undo) > checkpoint:
            kind, address, key, previous = self._undo.pop()
            if kind == "account":
                if previous is _MISSING:
                    del self._accounts[address]
                else:
                    self._accounts[address] = previous
            else:
                if previous is _MISSING:
                    del self._storage[address][key]
                else:
                    self._storage[address][key] = previous

    # ------------------------------------------------------------------
    # 导出
    # ------------------------------------------------------------------

    @property
    def touched_accounts(self) -> Set[str]:
        return set(self._touched_accounts)

    def access_list(self) -> AccessList:
        """读或写过的存储键构成的访问列表"""
        return AccessList.from_touched(self._touched_storage)

    def diff(self) -> StateDiff:
        """本次执行的状态变更"""
        accounts: Dict[str, AccountDiff] = {}

        for address, account in self._accounts.items():
            original = self.cache.get_account(address) or Account(address=address)
            diff = AccountDiff()
            if account.balance != original.balance:
                diff.balance = account.balance
            if account.nonce != original.nonce:
                diff.nonce = account.nonce
            if account.code != original.code:
                diff.code = account.code or b""
            if diff.balance is not None or diff.nonce is not None or diff.code is not None:
                accounts[address] = diff

        for address, slots in self._storage.items():
            if not slots:
                continue
            accounts.setdefault(address, AccountDiff()).storage.update(slots)

        return StateDiff(accounts=accounts)
