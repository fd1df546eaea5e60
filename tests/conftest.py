"""
Test Fixtures

- FakeRemoteState: 内存远程状态源，统计访问次数，可模拟 RPC 故障
- NativeEngine: 用 Python 实现的合约执行引擎，所有状态读写都经过 StateJournal，
  按 EIP-2929 冷/热访问计费
- 预置的分叉世界：两个 ERC-20、一个 V2 交易对、V2 路由器、一个 V3 池子
"""

from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import keccak

from forksim.abi.codec import ContractFunction, ContractInterface
from forksim.abi.interfaces import (
    ERC20,
    UNISWAP_V2_POOL,
    UNISWAP_V2_ROUTER,
    UNISWAP_V3_POOL,
    UNISWAP_V3_SIMULATOR,
)
from forksim.errors import DecodeError, RemoteFetchError
from forksim.models import Account, BlockEnv, CallRequest, ExecutionStatus, to_address
from forksim.scenarios.uniswap_v3 import UNISWAP_V3_SIMULATOR_CODE
from forksim.simulation.engine import CallEngine, EngineResult
from forksim.simulation.executor import CallExecutor
from forksim.simulation.session import SimulationSession
from forksim.state.cache import LayeredStateCache
from forksim.state.journal import StateJournal
from forksim.state.remote import RemoteStateSource


FORK_BLOCK = 19_000_000
CALLER = "0xFF3cF7b8582571095A2B05268A4E1BafBDAD060D"


def mapping_slot(key: str, index: int) -> int:
    """mapping(address => ...) 在第 index 个槽声明时 key 对应的槽"""
    padded = bytes(12) + bytes.fromhex(to_address(key)[2:])
    return int.from_bytes(keccak(padded + index.to_bytes(32, "big")), "big")


def nested_mapping_slot(outer: str, inner: str, index: int) -> int:
    padded = bytes(12) + bytes.fromhex(to_address(inner)[2:])
    return int.from_bytes(keccak(padded + mapping_slot(outer, index).to_bytes(32, "big")), "big")


def address_to_int(address: str) -> int:
    return int(to_address(address), 16)


def int_to_address(value: int) -> str:
    return to_address("0x" + format(value, "040x"))


# =============================================================================
# Remote State Source
# =============================================================================

class FakeRemoteState(RemoteStateSource):
    """内存远程状态源"""

    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.storage: Dict[tuple, int] = {}
        self.account_calls = 0
        self.storage_calls = 0
        self.blocks = set()
        self.fail = False

    def add_account(self, address: str, balance: int = 0, nonce: int = 0, code: Optional[bytes] = None) -> str:
        address = to_address(address)
        self.accounts[address] = Account(address=address, balance=balance, nonce=nonce, code=code)
        return address

    def put_storage(self, address: str, key: int, value: int) -> None:
        self.storage[(to_address(address), key)] = value

    def get_account(self, address, block):
        self.account_calls += 1
        self.blocks.add(block)
        if self.fail:
            raise RemoteFetchError("connection refused", address=address, block=block)
        return self.accounts.get(to_address(address))

    def get_storage(self, address, key, block):
        self.storage_calls += 1
        self.blocks.add(block)
        if self.fail:
            raise RemoteFetchError("connection refused", address=address, key=key, block=block)
        return self.storage.get((to_address(address), key), 0)


# =============================================================================
# Native Engine
# =============================================================================

class _Revert(Exception):
    def __init__(self, data: bytes = b""):
        super().__init__(data)
        self.data = data


class _Halt(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _error_string(reason: str) -> bytes:
    return bytes.fromhex("08c379a0") + abi_encode(["string"], [reason])


class _Execution:
    """单次 run 的执行上下文与计费"""

    def __init__(self, engine: "NativeEngine", request: CallRequest, env: BlockEnv, state: StateJournal):
        self.engine = engine
        self.env = env
        self.state = state
        self.gas_limit = request.gas_limit
        self.gas_used = 0
        self.refund = 0
        self.logs = []
        self.originals: Dict[tuple, int] = {}
        self.warm_accounts = {request.sender, request.target}
        self.warm_slots = set()
        if request.access_list is not None:
            for item in request.access_list.items:
                self.warm_accounts.add(item.address)
                for key in item.storage_keys:
                    self.warm_slots.add((item.address, key))

    def charge(self, amount: int) -> None:
        self.gas_used += amount
        if self.gas_used > self.gas_limit:
            raise _Halt("OutOfGas")

    def _warm(self, address: str, key: int) -> int:
        if (address, key) in self.warm_slots:
            return 100
        self.warm_slots.add((address, key))
        return 2100

    def sload(self, address: str, key: int) -> int:
        self.charge(self._warm(address, key))
        value = self.state.get_storage(address, key)
        self.originals.setdefault((address, key), value)
        return value

    def sstore(self, address: str, key: int, value: int) -> None:
        cost = 0 if (address, key) in self.warm_slots else 2100
        self.warm_slots.add((address, key))
        current = self.state.get_storage(address, key)
        original = self.originals.setdefault((address, key), current)
        if value == current or current != original:
            cost += 100
        elif original == 0:
            cost += 20000
        else:
            cost += 2900
        if original != 0 and current != 0 and value == 0:
            self.refund += 4800
        self.charge(cost)
        self.state.set_storage(address, key, value)

    def call(self, sender: str, target: str, data: bytes, top: bool = False) -> bytes:
        target = to_address(target)
        self.charge(100 if target in self.warm_accounts else 2600)
        self.warm_accounts.add(target)

        program = self.engine.programs.get(self.state.get_code(target))
        if program is None:
            if top:
                return b""
            # 对没有代码的地址做高层调用时 Solidity 会 revert
            raise _Revert(b"")

        checkpoint = self.state.checkpoint()
        log_mark = len(self.logs)
        try:
            return program.dispatch(Context(self, target, sender), data)
        except _Revert:
            self.state.revert_to(checkpoint)
            del self.logs[log_mark:]
            raise


class Context:
    """合约程序看到的调用帧"""

    def __init__(self, execution: _Execution, address: str, sender: str):
        self.execution = execution
        self.address = address
        self.sender = sender

    @property
    def block_number(self) -> int:
        return self.execution.env.number

    @property
    def timestamp(self) -> Optional[int]:
        return self.execution.env.timestamp

    def sload(self, key: int) -> int:
        return self.execution.sload(self.address, key)

    def sstore(self, key: int, value: int) -> None:
        self.execution.sstore(self.address, key, value)

    def call(self, target: str, function: ContractFunction, *args):
        output = self.execution.call(self.address, target, function.encode(*args))
        return function.decode(output)

    def emit(self, event, **args) -> None:
        log = event.encode_log(self.address, **args)
        self.execution.charge(375 + 375 * len(log.topics) + 8 * len(log.data))
        self.execution.logs.append(log)

    def revert(self, reason: str):
        raise _Revert(_error_string(reason))


class Program:
    """按选择器分发到同名方法"""

    interface: ContractInterface

    def dispatch(self, ctx: Context, data: bytes) -> bytes:
        ctx.execution.charge(50)
        function = self.interface.function_by_selector(data)
        if function is None:
            raise _Revert(b"")
        try:
            args = function.decode_input(data)
        except DecodeError:
            raise _Revert(b"")

        values = getattr(self, function.name)(ctx, *args)
        if not function.output_types:
            return b""
        if not isinstance(values, tuple):
            values = (values,)
        return function.encode_output(*values)


class NativeEngine(CallEngine):
    """
    Python 实现的执行引擎

    按账户代码查找程序，代码可以来自远程状态，也可以是注入到缓存中的字节码。
    """

    engine_name = "native"

    def __init__(self):
        self.programs: Dict[bytes, Program] = {}
        self.runs: List[CallRequest] = []

    def register(self, code: bytes, program: Program) -> bytes:
        self.programs[code] = program
        return code

    def run(self, request, env, state):
        self.runs.append(request)
        execution = _Execution(self, request, env, state)
        try:
            intrinsic = 21000 + sum(4 if b == 0 else 16 for b in request.data)
            if request.access_list is not None:
                intrinsic += 2400 * len(request.access_list.items)
                intrinsic += 1900 * len(request.access_list.pairs())
            execution.charge(intrinsic)

            if request.is_create:
                raise _Halt("CreateCollision")

            if request.value:
                balance = state.get_balance(request.sender)
                if balance < request.value:
                    raise _Halt("LackOfFundForMaxFee")
                state.set_balance(request.sender, balance - request.value)
                state.set_balance(request.target, state.get_balance(request.target) + request.value)

            output = execution.call(request.sender, request.target, request.data, top=True)
        except _Revert as e:
            return EngineResult(status=ExecutionStatus.REVERT, output=e.data, gas_used=execution.gas_used)
        except _Halt as e:
            return EngineResult(
                status=ExecutionStatus.HALT, gas_used=request.gas_limit, halt_reason=e.reason
            )

        refund = min(execution.refund, execution.gas_used // 5)
        return EngineResult(
            status=ExecutionStatus.SUCCESS,
            output=output,
            gas_used=execution.gas_used - refund,
            gas_refunded=refund,
            logs=execution.logs,
        )


# =============================================================================
# Programs
# =============================================================================

TOTAL_SUPPLY_SLOT = 2


class Erc20Program(Program):
    """余额 mapping 在 balances_index 槽，授权 mapping 在 allowances_index 槽"""

    interface = ERC20

    def __init__(self, balances_index: int = 3, allowances_index: int = 4, symbol_text: str = "TKN"):
        self.balances_index = balances_index
        self.allowances_index = allowances_index
        self.symbol_text = symbol_text

    def balance_slot(self, account: str) -> int:
        return mapping_slot(account, self.balances_index)

    def allowance_slot(self, owner: str, spender: str) -> int:
        return nested_mapping_slot(owner, spender, self.allowances_index)

    def balanceOf(self, ctx, account):
        return ctx.sload(self.balance_slot(account))

    def allowance(self, ctx, owner, spender):
        return ctx.sload(self.allowance_slot(owner, spender))

    def totalSupply(self, ctx):
        return ctx.sload(TOTAL_SUPPLY_SLOT)

    def name(self, ctx):
        return f"{self.symbol_text} Token"

    def symbol(self, ctx):
        return self.symbol_text

    def decimals(self, ctx):
        return 18

    def _move(self, ctx, src, dst, amount):
        src_slot = self.balance_slot(src)
        balance = ctx.sload(src_slot)
        if balance < amount:
            ctx.revert("ERC20: transfer amount exceeds balance")
        ctx.sstore(src_slot, balance - amount)
        dst_slot = self.balance_slot(dst)
        ctx.sstore(dst_slot, ctx.sload(dst_slot) + amount)
        ctx.emit(ERC20.event("Transfer"), **{"from": src, "to": dst, "value": amount})

    def transfer(self, ctx, destination, value):
        self._move(ctx, ctx.sender, destination, value)
        return True

    def transferFrom(self, ctx, src, dst, wad):
        slot = self.allowance_slot(src, ctx.sender)
        allowed = ctx.sload(slot)
        if allowed < wad:
            ctx.revert("ERC20: insufficient allowance")
        if allowed != 2**256 - 1:
            ctx.sstore(slot, allowed - wad)
        self._move(ctx, src, dst, wad)
        return True

    def approve(self, ctx, spender, wad):
        ctx.sstore(self.allowance_slot(ctx.sender, spender), wad)
        ctx.emit(ERC20.event("Approval"), owner=ctx.sender, spender=spender, value=wad)
        return True


BALANCE_OF = ERC20.function("balanceOf")
TRANSFER = ERC20.function("transfer")
TRANSFER_FROM = ERC20.function("transferFrom")

PAIR_TOKEN0_SLOT = 6
PAIR_TOKEN1_SLOT = 7
PAIR_RESERVE0_SLOT = 8
PAIR_RESERVE1_SLOT = 9
PAIR_TIMESTAMP_SLOT = 10
FACTORY = "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f"


class V2PairProgram(Program):
    """
    恒定乘积交易对

    与真实 UniswapV2Pair 的区别：允许两个输出都为 0 的兑换，只检查 K 值。
    """

    interface = UNISWAP_V2_POOL

    def token0(self, ctx):
        return int_to_address(ctx.sload(PAIR_TOKEN0_SLOT))

    def token1(self, ctx):
        return int_to_address(ctx.sload(PAIR_TOKEN1_SLOT))

    def factory(self, ctx):
        return FACTORY

    def getReserves(self, ctx):
        return ctx.sload(PAIR_RESERVE0_SLOT), ctx.sload(PAIR_RESERVE1_SLOT), ctx.sload(PAIR_TIMESTAMP_SLOT)

    def swap(self, ctx, amount0Out, amount1Out, to, data):
        reserve0, reserve1, _ = self.getReserves(ctx)
        if amount0Out >= reserve0 or amount1Out >= reserve1:
            ctx.revert("UniswapV2: INSUFFICIENT_LIQUIDITY")

        token0, token1 = self.token0(ctx), self.token1(ctx)
        if amount0Out:
            ctx.call(token0, TRANSFER, to, amount0Out)
        if amount1Out:
            ctx.call(token1, TRANSFER, to, amount1Out)

        balance0 = ctx.call(token0, BALANCE_OF, ctx.address)
        balance1 = ctx.call(token1, BALANCE_OF, ctx.address)
        amount0In = max(balance0 - (reserve0 - amount0Out), 0)
        amount1In = max(balance1 - (reserve1 - amount1Out), 0)

        adjusted0 = balance0 * 1000 - amount0In * 3
        adjusted1 = balance1 * 1000 - amount1In * 3
        if adjusted0 * adjusted1 < reserve0 * reserve1 * 1000**2:
            ctx.revert("UniswapV2: K")

        ctx.sstore(PAIR_RESERVE0_SLOT, balance0)
        ctx.sstore(PAIR_RESERVE1_SLOT, balance1)
        ctx.emit(UNISWAP_V2_POOL.event("Sync"), reserve0=balance0, reserve1=balance1)
        ctx.emit(
            UNISWAP_V2_POOL.event("Swap"),
            sender=ctx.sender,
            amount0In=amount0In,
            amount1In=amount1In,
            amount0Out=amount0Out,
            amount1Out=amount1Out,
            to=to,
        )


PAIR_TOKEN0 = UNISWAP_V2_POOL.function("token0")
PAIR_RESERVES = UNISWAP_V2_POOL.function("getReserves")
PAIR_SWAP = UNISWAP_V2_POOL.function("swap")


class V2RouterProgram(Program):
    interface = UNISWAP_V2_ROUTER

    def __init__(self):
        self.pairs: Dict[frozenset, str] = {}

    def add_pair(self, token_a: str, token_b: str, pair: str) -> None:
        self.pairs[frozenset((to_address(token_a), to_address(token_b)))] = to_address(pair)

    def _pair(self, ctx, token_a, token_b):
        pair = self.pairs.get(frozenset((token_a, token_b)))
        if pair is None:
            ctx.revert("UniswapV2Library: PAIR_NOT_FOUND")
        return pair

    def getAmountsOut(self, ctx, amountIn, path):
        amounts = [amountIn]
        for token_in, token_out in zip(path, path[1:]):
            pair = self._pair(ctx, token_in, token_out)
            reserves = ctx.call(pair, PAIR_RESERVES)
            token0 = ctx.call(pair, PAIR_TOKEN0)
            reserve_in, reserve_out = (
                (reserves.reserve0, reserves.reserve1) if token_in == token0
                else (reserves.reserve1, reserves.reserve0)
            )
            amount_in_with_fee = amounts[-1] * 997
            amounts.append(amount_in_with_fee * reserve_out // (reserve_in * 1000 + amount_in_with_fee))
        return amounts

    def swapExactTokensForTokens(self, ctx, amountIn, amountOutMin, path, to, deadline):
        if ctx.timestamp is not None and deadline < ctx.timestamp:
            ctx.revert("UniswapV2Router: EXPIRED")
        amounts = self.getAmountsOut(ctx, amountIn, path)
        if amounts[-1] < amountOutMin:
            ctx.revert("UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT")

        ctx.call(path[0], TRANSFER_FROM, ctx.sender, self._pair(ctx, path[0], path[1]), amounts[0])
        for i, (token_in, token_out) in enumerate(zip(path, path[1:])):
            pair = self._pair(ctx, token_in, token_out)
            amount_out = amounts[i + 1]
            token0 = ctx.call(pair, PAIR_TOKEN0)
            amount0_out, amount1_out = (0, amount_out) if token_in == token0 else (amount_out, 0)
            recipient = self._pair(ctx, token_out, path[i + 2]) if i + 2 < len(path) else to
            ctx.call(pair, PAIR_SWAP, amount0_out, amount1_out, recipient, b"")
        return amounts


V3_POOL_TOKEN0 = ContractFunction("token0", [], [("address", "")])
V3_POOL_TOKEN1 = ContractFunction("token1", [], [("address", "")])
V3_POOL_FACTORY = ContractFunction("factory", [], [("address", "")])
V3_POOL_FEE = ContractFunction("fee", [], [("uint24", "")])
V3_POOL_SWAP = ContractFunction(
    "swap",
    [
        ("address", "recipient"),
        ("bool", "zeroForOne"),
        ("int256", "amountSpecified"),
        ("uint160", "sqrtPriceLimitX96"),
        ("bytes", "data"),
    ],
    [("int256", "amount0"), ("int256", "amount1")],
)
V3_SWAP_CALLBACK = ContractFunction(
    "uniswapV3SwapCallback",
    [("int256", "amount0Delta"), ("int256", "amount1Delta"), ("bytes", "data")],
)

V3_FACTORY = "0x1F98431c8aD98523631AE4a59f267346ea31F984"
V3_POOL_TOKEN0_SLOT = 0
V3_POOL_TOKEN1_SLOT = 1
V3_POOL_FEE_SLOT = 2


class V3PoolProgram(Program):
    """用两个代币余额做恒定乘积的简化 V3 池子，保留回调付款流程"""

    interface = ContractInterface(
        "FakeUniswapV3Pool",
        "1",
        functions=[V3_POOL_TOKEN0, V3_POOL_TOKEN1, V3_POOL_FACTORY, V3_POOL_FEE, V3_POOL_SWAP],
    )

    def token0(self, ctx):
        return int_to_address(ctx.sload(V3_POOL_TOKEN0_SLOT))

    def token1(self, ctx):
        return int_to_address(ctx.sload(V3_POOL_TOKEN1_SLOT))

    def factory(self, ctx):
        return V3_FACTORY

    def fee(self, ctx):
        return ctx.sload(V3_POOL_FEE_SLOT)

    def swap(self, ctx, recipient, zeroForOne, amountSpecified, sqrtPriceLimitX96, data):
        if amountSpecified <= 0:
            ctx.revert("AS")
        token0, token1 = self.token0(ctx), self.token1(ctx)
        token_in, token_out = (token0, token1) if zeroForOne else (token1, token0)

        reserve_in = ctx.call(token_in, BALANCE_OF, ctx.address)
        reserve_out = ctx.call(token_out, BALANCE_OF, ctx.address)
        in_with_fee = amountSpecified * (1_000_000 - self.fee(ctx))
        amount_out = in_with_fee * reserve_out // (reserve_in * 1_000_000 + in_with_fee)

        ctx.call(token_out, TRANSFER, recipient, amount_out)
        amount0, amount1 = (
            (amountSpecified, -amount_out) if zeroForOne else (-amount_out, amountSpecified)
        )
        ctx.call(ctx.sender, V3_SWAP_CALLBACK, amount0, amount1, data)
        if ctx.call(token_in, BALANCE_OF, ctx.address) < reserve_in + amountSpecified:
            ctx.revert("IIA")

        ctx.emit(
            UNISWAP_V3_POOL.event("Swap"),
            sender=ctx.sender,
            recipient=recipient,
            amount0=amount0,
            amount1=amount1,
            sqrtPriceX96=2**96,
            liquidity=0,
            tick=0,
        )
        return amount0, amount1


class V3SimulatorProgram(Program):
    """注入字节码对应的辅助合约行为"""

    interface = ContractInterface(
        "FakeUniswapV3Simulator",
        "1",
        functions=list(UNISWAP_V3_SIMULATOR.functions.values()) + [V3_SWAP_CALLBACK],
    )

    def getPoolData(self, ctx, pool):
        return (
            ctx.call(pool, V3_POOL_TOKEN0),
            ctx.call(pool, V3_POOL_TOKEN1),
            ctx.call(pool, V3_POOL_FACTORY),
            ctx.call(pool, V3_POOL_FEE),
        )

    def swap(self, ctx, poolAddress, recipient, tokenIn, tokenOut, zeroForOne, amountIn):
        in_before = ctx.call(tokenIn, BALANCE_OF, recipient)
        out_before = ctx.call(tokenOut, BALANCE_OF, recipient)
        data = abi_encode(["address"], [tokenIn])
        ctx.call(poolAddress, V3_POOL_SWAP, recipient, zeroForOne, amountIn, 0, data)
        in_after = ctx.call(tokenIn, BALANCE_OF, recipient)
        out_after = ctx.call(tokenOut, BALANCE_OF, recipient)
        return in_before, in_after, out_before, out_after

    def uniswapV3SwapCallback(self, ctx, amount0Delta, amount1Delta, data):
        (token,) = abi_decode(["address"], data)
        amount = amount0Delta if amount0Delta > 0 else amount1Delta
        ctx.call(token, TRANSFER, ctx.sender, amount)


# =============================================================================
# Fork World
# =============================================================================

TOKEN_A = to_address("0x000000000000000000000000000000000000a001")
TOKEN_B = to_address("0x000000000000000000000000000000000000b002")
ODD_TOKEN = to_address("0x000000000000000000000000000000000000c003")
PAIR = to_address("0x000000000000000000000000000000000000d004")
ROUTER = to_address("0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D")
V3_POOL = to_address("0x000000000000000000000000000000000000e005")
HOLDER = to_address("0x0000000000000000000000000000000000001234")
SPENDER = to_address("0x0000000000000000000000000000000000005678")
RECIPIENT = to_address("0x0000000000000000000000000000000000009abc")

PAIR_RESERVE_A = 1_000_000 * 10**18
PAIR_RESERVE_B = 2_000_000 * 10**18
V3_RESERVE_A = 500_000 * 10**18
V3_RESERVE_B = 1_500_000 * 10**18
HOLDER_BALANCE = 1_000 * 10**18


def build_world(remote: FakeRemoteState, engine: NativeEngine) -> SimpleNamespace:
    """在远程状态中部署合约"""
    token_program = Erc20Program(balances_index=3, allowances_index=4)
    odd_program = Erc20Program(balances_index=7, allowances_index=8, symbol_text="ODD")
    router_program = V2RouterProgram()
    router_program.add_pair(TOKEN_A, TOKEN_B, PAIR)

    erc20_code = engine.register(b"\xfe" + b"erc20", token_program)
    odd_code = engine.register(b"\xfe" + b"odd-erc20", odd_program)
    pair_code = engine.register(b"\xfe" + b"v2-pair", V2PairProgram())
    router_code = engine.register(b"\xfe" + b"v2-router", router_program)
    v3_pool_code = engine.register(b"\xfe" + b"v3-pool", V3PoolProgram())
    engine.register(UNISWAP_V3_SIMULATOR_CODE, V3SimulatorProgram())

    remote.add_account(TOKEN_A, code=erc20_code)
    remote.add_account(TOKEN_B, code=erc20_code)
    remote.add_account(ODD_TOKEN, code=odd_code)
    remote.add_account(PAIR, code=pair_code)
    remote.add_account(ROUTER, code=router_code)
    remote.add_account(V3_POOL, code=v3_pool_code)
    remote.add_account(HOLDER, balance=10**18, nonce=3)

    remote.put_storage(TOKEN_A, mapping_slot(HOLDER, 3), HOLDER_BALANCE)
    remote.put_storage(ODD_TOKEN, mapping_slot(HOLDER, 7), HOLDER_BALANCE)

    remote.put_storage(PAIR, PAIR_TOKEN0_SLOT, address_to_int(TOKEN_A))
    remote.put_storage(PAIR, PAIR_TOKEN1_SLOT, address_to_int(TOKEN_B))
    remote.put_storage(PAIR, PAIR_RESERVE0_SLOT, PAIR_RESERVE_A)
    remote.put_storage(PAIR, PAIR_RESERVE1_SLOT, PAIR_RESERVE_B)
    remote.put_storage(PAIR, PAIR_TIMESTAMP_SLOT, 1_700_000_000)
    remote.put_storage(TOKEN_A, mapping_slot(PAIR, 3), PAIR_RESERVE_A)
    remote.put_storage(TOKEN_B, mapping_slot(PAIR, 3), PAIR_RESERVE_B)

    remote.put_storage(V3_POOL, V3_POOL_TOKEN0_SLOT, address_to_int(TOKEN_A))
    remote.put_storage(V3_POOL, V3_POOL_TOKEN1_SLOT, address_to_int(TOKEN_B))
    remote.put_storage(V3_POOL, V3_POOL_FEE_SLOT, 3000)
    remote.put_storage(TOKEN_A, mapping_slot(V3_POOL, 3), V3_RESERVE_A)
    remote.put_storage(TOKEN_B, mapping_slot(V3_POOL, 3), V3_RESERVE_B)

    return SimpleNamespace(
        token_a=TOKEN_A,
        token_b=TOKEN_B,
        odd_token=ODD_TOKEN,
        pair=PAIR,
        router=ROUTER,
        v3_pool=V3_POOL,
        holder=HOLDER,
        spender=SPENDER,
        recipient=RECIPIENT,
        caller=to_address(CALLER),
        fork_block=FORK_BLOCK,
        holder_balance=HOLDER_BALANCE,
        pair_reserves=(PAIR_RESERVE_A, PAIR_RESERVE_B),
        v3_reserves=(V3_RESERVE_A, V3_RESERVE_B),
        balance_slot=lambda token, account: mapping_slot(account, 7 if token == ODD_TOKEN else 3),
        allowance_slot=lambda owner, spender: nested_mapping_slot(owner, spender, 4),
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def remote():
    return FakeRemoteState()


@pytest.fixture
def engine():
    return NativeEngine()


@pytest.fixture
def world(remote, engine):
    return build_world(remote, engine)


@pytest.fixture
def cache(remote, world):
    return LayeredStateCache(remote, FORK_BLOCK)


@pytest.fixture
def executor(engine):
    return CallExecutor(engine)


@pytest.fixture
def session(remote, engine, world):
    with SimulationSession(remote, engine, FORK_BLOCK, caller=CALLER) as s:
        yield s


@pytest.fixture
def make_request(world):
    """构造 CallRequest"""
    def _make(target, data, sender=None, value=0, gas_limit=30_000_000):
        return CallRequest(
            sender=sender or world.caller,
            target=target,
            data=data,
            value=value,
            gas_limit=gas_limit,
        )
    return _make
