"""
ERC-20 封装
"""

from typing import Iterable, List

from ..abi.codec import DecodedEvent
from ..abi.interfaces import ERC20
from ..models import Log
from .base import ContractCallResult, ContractWrapper


class Erc20(ContractWrapper):
    """ERC-20 代币"""

    interface = ERC20
    label = "ERC20"

    def balance_of(self, account: str) -> int:
        return self.call("balanceOf", account)

    def allowance(self, owner: str, spender: str) -> int:
        return self.call("allowance", owner, spender)

    def approve(self, spender: str, amount: int) -> ContractCallResult:
        return self.transact("approve", spender, amount)

    def transfer(self, destination: str, amount: int) -> ContractCallResult:
        return self.transact("transfer", destination, amount)

    def transfer_from(self, src: str, dst: str, amount: int) -> ContractCallResult:
        return self.transact("transferFrom", src, dst, amount)

    def set_balance(self, account: str, amount: int) -> int:
        """
        直接覆盖余额存储槽

        可能导致模拟与链上真实状态不一致（例如 totalSupply 不再等于余额之和）。

        Returns:
            写入的存储槽
        """
        return self.session.set_token_balance(self.address, account, amount)

    @staticmethod
    def decode_transfers(logs: Iterable[Log]) -> List[DecodedEvent]:
        return ERC20.decode_logs(logs, "Transfer")
