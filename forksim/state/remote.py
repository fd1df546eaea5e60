"""
Remote State Source - 远程状态源

只读的账户/存储数据源，固定在某个区块高度。
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from web3 import Web3
from web3.exceptions import Web3Exception

from ..errors import RemoteFetchError
from ..models import Account, to_address


logger = logging.getLogger(__name__)


class RemoteStateSource(ABC):
    """远程状态源接口"""

    @abstractmethod
    def get_account(self, address: str, block: int) -> Optional[Account]:
        """
        读取账户

        Returns:
            Account，账户不存在时返回 None
        """
        raise NotImplementedError

    @abstractmethod
    def get_storage(self, address: str, key: int, block: int) -> int:
        """读取存储槽，未设置的槽为 0"""
        raise NotImplementedError


class Web3RemoteState(RemoteStateSource):
    """
    基于 web3 JSON-RPC 的远程状态源

    失败一律包装为 RemoteFetchError 抛出，不会把已存在的账户当作空账户。
    """

    def __init__(self, w3: Web3):
        self.w3 = w3

    @classmethod
    def from_url(cls, rpc_url: str, timeout: int = 30) -> "Web3RemoteState":
        """根据 RPC URL 创建"""
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        return cls(w3)

    def latest_block(self) -> int:
        """获取最新区块号"""
        try:
            return self.w3.eth.block_number
        except (Web3Exception, OSError, ValueError) as e:
            raise RemoteFetchError(f"获取最新区块失败: {e}") from e

    def get_account(self, address: str, block: int) -> Optional[Account]:
        address = to_address(address)
        logger.debug(f"远程读取账户 {address} @ {block}")
        try:
            balance = self.w3.eth.get_balance(address, block_identifier=block)
            nonce = self.w3.eth.get_transaction_count(address, block_identifier=block)
            code = bytes(self.w3.eth.get_code(address, block_identifier=block))
        except (Web3Exception, OSError, ValueError) as e:
            raise RemoteFetchError(
                f"读取账户失败: {address} @ {block}: {e}",
                address=address,
                block=block,
            ) from e

        if balance == 0 and nonce == 0 and not code:
            return None

        return Account(address=address, balance=balance, nonce=nonce, code=code or None)

    def get_storage(self, address: str, key: int, block: int) -> int:
        address = to_address(address)
        logger.debug(f"远程读取存储 {address}[{hex(key)}] @ {block}")
        try:
            value = self.w3.eth.get_storage_at(address, key, block_identifier=block)
        except (Web3Exception, OSError, ValueError) as e:
            raise RemoteFetchError(
                f"读取存储失败: {address}[{hex(key)}] @ {block}: {e}",
                address=address,
                key=key,
                block=block,
            ) from e
        return int.from_bytes(bytes(value), "big")
