"""
ABI Codec - 合约接口编解码
"""

from .codec import (
    ContractFunction,
    ContractEvent,
    ContractInterface,
    DecodedEvent,
    decode_revert_reason,
)
from .interfaces import (
    ERC20,
    UNISWAP_V2_POOL,
    UNISWAP_V2_ROUTER,
    UNISWAP_V3_POOL,
    UNISWAP_V3_SIMULATOR,
    INTERFACES_VERSION,
)

__all__ = [
    "ContractFunction",
    "ContractEvent",
    "ContractInterface",
    "DecodedEvent",
    "decode_revert_reason",
    "ERC20",
    "UNISWAP_V2_POOL",
    "UNISWAP_V2_ROUTER",
    "UNISWAP_V3_POOL",
    "UNISWAP_V3_SIMULATOR",
    "INTERFACES_VERSION",
]
