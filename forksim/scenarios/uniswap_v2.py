"""
Uniswap V2 场景

- UniswapV2Pool / UniswapV2Router 合约封装
- swap_via_v2_pool: 先把输入代币转入池子，再直接调用 pool.swap
- swap_via_v2_router: 先经路由器模拟找到实际使用的池子，再直接对该池子兑换
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..abi.interfaces import UNISWAP_V2_POOL, UNISWAP_V2_ROUTER
from ..errors import ScenarioError
from ..models import UINT256_MAX, Log, to_address
from ..simulation.session import SimulationSession
from .base import ContractCallResult, ContractWrapper, SwapResult
from .erc20 import Erc20


logger = logging.getLogger(__name__)


# Uniswap V2 手续费固定为 0.3%（千分之三）
V2_FEE = 3
FEE_DENOMINATOR = 1000

UNISWAP_V2_ROUTER_ADDRESS = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee: int = V2_FEE) -> int:
    """
    恒定乘积公式

    amount_out = floor(amount_in*(1000-fee)*reserve_out / (reserve_in*1000 + amount_in*(1000-fee)))
    """
    if amount_in < 0 or reserve_in < 0 or reserve_out < 0:
        raise ValueError("数量和储备不能为负")
    amount_in_with_fee = amount_in * (FEE_DENOMINATOR - fee)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee
    if denominator == 0:
        raise ValueError("储备为空的池子无法计算输出")
    return numerator // denominator


class V2PoolData(BaseModel):
    token0: str
    token1: str


class V2Swap(BaseModel):
    """Swap 事件"""
    pool: str = Field(..., description="发出事件的池子")
    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int


class UniswapV2Pool(ContractWrapper):
    """Uniswap V2 交易对"""

    interface = UNISWAP_V2_POOL
    label = "UniswapV2Pool"

    def get_reserves(self) -> Tuple[int, int]:
        result = self.call("getReserves")
        return result.reserve0, result.reserve1

    def get_pool_data(self) -> V2PoolData:
        return V2PoolData(token0=self.call("token0"), token1=self.call("token1"))

    def swap(self, amount0_out: int, amount1_out: int, to: str) -> ContractCallResult:
        return self.transact("swap", amount0_out, amount1_out, to, b"")

    @staticmethod
    def decode_swaps(logs: Iterable[Log]) -> List[V2Swap]:
        return [
            V2Swap(
                pool=event.address,
                amount0_in=event["amount0In"],
                amount1_in=event["amount1In"],
                amount0_out=event["amount0Out"],
                amount1_out=event["amount1Out"],
            )
            for event in UNISWAP_V2_POOL.decode_logs(logs, "Swap")
        ]


class UniswapV2Router(ContractWrapper):
    """Uniswap V2 Router02"""

    interface = UNISWAP_V2_ROUTER
    label = "UniswapV2Router"

    def swap_exact_tokens_for_tokens(
        self,
        amount_in: int,
        amount_out_min: int,
        path: Sequence[str],
        to: str,
        deadline: int,
    ) -> ContractCallResult:
        """按固定输入数量沿 path 多跳兑换，value 为每一跳的数量"""
        path = [to_address(token) for token in path]
        return self.transact(
            "swapExactTokensForTokens", amount_in, amount_out_min, path, to, deadline
        )


def _check_deltas(
    label: str,
    amount_in: int,
    amount_out: int,
    balances_before: Tuple[int, int],
    balances_after: Tuple[int, int],
) -> None:
    if balances_before[0] - amount_in != balances_after[0]:
        raise ScenarioError(
            f"{label}: 输入代币余额不符: {balances_before[0]} - {amount_in} != {balances_after[0]}"
        )
    if balances_before[1] + amount_out != balances_after[1]:
        raise ScenarioError(
            f"{label}: 输出代币余额不符: {balances_before[1]} + {amount_out} != {balances_after[1]}"
        )


def swap_via_v2_pool(
    session: SimulationSession,
    pool_address: str,
    token_in_address: str,
    amount: int,
) -> SwapResult:
    """
    直接对 Uniswap V2 池子兑换

    Args:
        session: 模拟会话
        pool_address: 池子地址
        token_in_address: 输入代币
        amount: 输入数量

    Returns:
        SwapResult

    Raises:
        ScenarioError: 代币不属于该池子，或兑换后余额变动与预期不符
    """
    caller = session.caller
    pool = UniswapV2Pool(session, pool_address)
    pool_data = pool.get_pool_data()
    token_in_address = to_address(token_in_address)

    if token_in_address == pool_data.token0:
        zero_for_one, token_out_address = True, pool_data.token1
    elif token_in_address == pool_data.token1:
        zero_for_one, token_out_address = False, pool_data.token0
    else:
        raise ScenarioError(f"代币 {token_in_address} 不属于池子 {pool.address}")

    token_in = Erc20(session, token_in_address)
    token_out = Erc20(session, token_out_address)

    # 可选：直接注入余额，模拟结果可能与链上真实状态不一致
    session.set_eth_balance(caller, amount)
    token_in.set_balance(caller, amount)

    before = (token_in.balance_of(caller), token_out.balance_of(caller))

    reserve0, reserve1 = pool.get_reserves()
    reserve_in, reserve_out = (reserve0, reserve1) if zero_for_one else (reserve1, reserve0)
    amount_out = get_amount_out(amount, reserve_in, reserve_out)
    amount0_out, amount1_out = (0, amount_out) if zero_for_one else (amount_out, 0)

    # V2 池子在 swap 中检查余额，必须先把输入代币转入池子
    token_in.transfer(pool.address, amount)
    pool.swap(amount0_out, amount1_out, caller)

    after = (token_in.balance_of(caller), token_out.balance_of(caller))
    _check_deltas("Swap Via Pool", amount, amount_out, before, after)

    logger.info(f"Swap Via Pool - amount_in={amount} amount_out={amount_out}")
    return SwapResult(amount_in=amount, amount_out=amount_out)


def swap_via_v2_router(
    session: SimulationSession,
    token_in_address: str,
    token_out_address: str,
    amount: int,
    router_address: str = UNISWAP_V2_ROUTER_ADDRESS,
    deadline: Optional[int] = None,
) -> SwapResult:
    """
    经路由器发现池子后直接对池子兑换

    1. 在独立的新会话中经路由器兑换，从 Swap 事件中找出实际使用的池子和数量
    2. 在当前会话中按事件中的数量直接对该池子兑换

    Raises:
        ScenarioError: 路由器执行了多跳兑换，或余额变动与预期不符
    """
    caller = session.caller
    token_in_address = to_address(token_in_address)
    token_out_address = to_address(token_out_address)
    if deadline is None:
        deadline = UINT256_MAX

    # 第一步：路由器模拟，只用于发现池子
    with session.fresh() as discovery:
        router = UniswapV2Router(discovery, router_address)
        discovery_token = Erc20(discovery, token_in_address)

        discovery.set_eth_balance(caller, amount)
        discovery_token.set_balance(caller, amount)
        # 路由器会代表调用者执行 transferFrom，必须先授权
        discovery_token.approve(router.address, amount)

        routed = router.swap_exact_tokens_for_tokens(
            amount, 0, [token_in_address, token_out_address], caller, deadline
        )

    swaps = UniswapV2Pool.decode_swaps(routed.outcome.logs)
    if len(swaps) != 1:
        raise ScenarioError(f"只支持单跳兑换，路由器执行了 {len(swaps)} 次 Swap")
    swap_event = swaps[0]

    # 第二步：直接对池子兑换
    pool = UniswapV2Pool(session, swap_event.pool)
    token_in = Erc20(session, token_in_address)
    token_out = Erc20(session, token_out_address)

    session.set_eth_balance(caller, amount)
    token_in.set_balance(caller, amount)

    before = (token_in.balance_of(caller), token_out.balance_of(caller))

    amount_in = swap_event.amount1_in if swap_event.amount0_in == 0 else swap_event.amount0_in
    amount_out = swap_event.amount1_out if swap_event.amount0_out == 0 else swap_event.amount0_out

    token_in.transfer(pool.address, amount_in)
    pool.swap(swap_event.amount0_out, swap_event.amount1_out, caller)

    after = (token_in.balance_of(caller), token_out.balance_of(caller))
    _check_deltas("Swap Via Router", amount_in, amount_out, before, after)

    logger.info(f"Swap Via Router - pool={pool.address} amount_in={amount_in} amount_out={amount_out}")
    return SwapResult(amount_in=amount_in, amount_out=amount_out)
