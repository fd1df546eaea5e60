"""
Simulation Scenarios - 场景层

组合编解码、执行器和存储槽定位器，回答诸如“这次兑换能得到多少”之类的问题。
"""

from .base import ContractCallResult, ContractWrapper, SwapResult
from .erc20 import Erc20
from .uniswap_v2 import (
    UniswapV2Pool,
    UniswapV2Router,
    V2PoolData,
    V2Swap,
    get_amount_out,
    swap_via_v2_pool,
    swap_via_v2_router,
)
from .uniswap_v3 import (
    UNISWAP_V3_SIMULATOR_CODE,
    UniswapV3Simulator,
    V3PoolData,
    V3Swap,
    swap_via_v3_pool,
)

__all__ = [
    "ContractCallResult",
    "ContractWrapper",
    "SwapResult",
    "Erc20",
    # Uniswap V2
    "UniswapV2Pool",
    "UniswapV2Router",
    "V2PoolData",
    "V2Swap",
    "get_amount_out",
    "swap_via_v2_pool",
    "swap_via_v2_router",
    # Uniswap V3
    "UNISWAP_V3_SIMULATOR_CODE",
    "UniswapV3Simulator",
    "V3PoolData",
    "V3Swap",
    "swap_via_v3_pool",
]
