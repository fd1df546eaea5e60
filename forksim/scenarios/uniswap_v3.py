"""
Uniswap V3 场景

V3 池子在 swap 过程中回调调用方（uniswapV3SwapCallback）收取输入代币，
无法像 V2 一样先转账再调用池子。这里在缓存中的合成地址注入一个辅助合约
（UniswapV3Simulator），由它代替调用方发起 swap 并在回调中付款。
该字节码只存在于本地缓存中，不会上链。
"""

import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from ..abi.interfaces import UNISWAP_V3_POOL, UNISWAP_V3_SIMULATOR
from ..config import get_settings
from ..errors import ScenarioError
from ..models import Log, to_address
from ..simulation.session import SimulationSession
from .base import ContractCallResult, ContractWrapper, SwapResult
from .erc20 import Erc20


logger = logging.getLogger(__name__)

# UniswapV3Simulator 运行时字节码：
#   getPoolData(address) / swap(address,address,address,address,bool,uint256) / uniswapV3SwapCallback
UNISWAP_V3_SIMULATOR_CODE = bytes.fromhex(
    "608060405234801561000f575f80fd5b506004361061003f575f3560e01c806313d21cdf1461004357806364d27b5a14"
    "610090578063fa461e33146100c3575b5f80fd5b6100566100513660046106ed565b6100d8565b604080516001600160"
    "a01b0395861681529385166020850152919093169082015262ffffff90911660608201526080015b60405180910390f3"
    "5b6100a361009e36600461071c565b61026b565b60408051948552602085019390935291830152606082015260800161"
    "0087565b6100d66100d1366004610791565b61043b565b005b5f805f80846001600160a01b0316630dfe168160405181"
    "63ffffffff1660e01b8152600401602060405180830381865afa158015610118573d5f803e3d5ffd5b50505050604051"
    "3d601f19601f8201168201806040525081019061013c919061080d565b9350846001600160a01b031663d21220a76040"
    "518163ffffffff1660e01b8152600401602060405180830381865afa15801561017a573d5f803e3d5ffd5b5050505060"
    "40513d601f19601f8201168201806040525081019061019e919061080d565b9250846001600160a01b031663c45a0155"
    "6040518163ffffffff1660e01b8152600401602060405180830381865afa1580156101dc573d5f803e3d5ffd5b505050"
    "506040513d601f19601f82011682018060405250810190610200919061080d565b9150846001600160a01b031663ddca"
    "3f436040518163ffffffff1660e01b8152600401602060405180830381865afa15801561023e573d5f803e3d5ffd5b50"
    "5050506040513d601f19601f820116820180604052508101906102629190610828565b90509193509193565b60405163"
    "70a0823160e01b81526001600160a01b0386811660048301525f918291829182918916906370a0823190602401602060"
    "405180830381865afa1580156102b7573d5f803e3d5ffd5b505050506040513d601f19601f8201168201806040525081"
    "01906102db919061084a565b6040516370a0823160e01b81526001600160a01b038b8116600483015291955090881690"
    "6370a0823190602401602060405180830381865afa158015610323573d5f803e3d5ffd5b505050506040513d601f1960"
    "1f82011682018060405250810190610347919061084a565b9150610356898b8a8989610575565b50506040516370a082"
    "3160e01b81526001600160a01b038a811660048301528916906370a0823190602401602060405180830381865afa1580"
    "1561039c573d5f803e3d5ffd5b505050506040513d601f19601f820116820180604052508101906103c0919061084a56"
    "5b6040516370a0823160e01b81526001600160a01b038b81166004830152919450908816906370a08231906024016020"
    "60405180830381865afa158015610408573d5f803e3d5ffd5b505050506040513d601f19601f82011682018060405250"
    "81019061042c919061084a565b90509650965096509692505050565b5f82828080601f01602080910402602001604051"
    "90810160405280939291908181526020018383808284375f920182905250601485015194955089131592506104f59150"
    "505760405163a9059cbb60e01b8152336004820152602481018790526001600160a01b0382169063a9059cbb90604401"
    "6020604051808303815f875af11580156104cb573d5f803e3d5ffd5b505050506040513d601f19601f82011682018060"
    "4052508101906104ef9190610861565b5061056d565b5f85131561056d5760405163a9059cbb60e01b81523360048201"
    "52602481018690526001600160a01b0382169063a9059cbb906044016020604051808303815f875af115801561054757"
    "3d5f803e3d5ffd5b505050506040513d601f19601f8201168201806040525081019061056b9190610861565b505b5050"
    "50505050565b60408051606085901b6bffffffffffffffffffffffff1916602082015281516014818303018152603490"
    "91019091525f9081906001600160a01b03871663128acb08898787816105e3576105de600173fffd8963efd1fc6a5064"
    "88495d951d5263988d26610890565b6105f3565b6105f36401000276a360016108b5565b866040518663ffffffff1660"
    "e01b8152600401610614959493929190610902565b60408051808303815f875af192505050801561064d575060408051"
    "601f3d908101601f1916820190925261064a91810190610947565b60015b6106c0573d80801561067a57604051915060"
    "1f19603f3d011682016040523d82523d5f602084013e61067f565b606091505b50806040516020016106919190610969"
    "565b60408051601f198184030181529082905262461bcd60e51b82526106b79160040161099e565b60405180910390fd"
    "5b90935091506106cc9050565b9550959350505050565b6001600160a01b03811681146106ea575f80fd5b50565b5f60"
    "2082840312156106fd575f80fd5b8135610708816106d6565b9392505050565b80151581146106ea575f80fd5b5f805f"
    "805f8060c08789031215610731575f80fd5b863561073c816106d6565b9550602087013561074c816106d6565b945060"
    "4087013561075c816106d6565b9350606087013561076c816106d6565b9250608087013561077c8161070f565b809250"
    "5060a087013590509295509295509295565b5f805f80606085870312156107a4575f80fd5b8435935060208501359250"
    "604085013567ffffffffffffffff8111156107c8575f80fd5b8501601f810187136107d8575f80fd5b803567ffffffff"
    "ffffffff8111156107ee575f80fd5b8760208284010111156107ff575f80fd5b949793965060200194505050565b5f60"
    "20828403121561081d575f80fd5b8151610708816106d6565b5f60208284031215610838575f80fd5b815162ffffff81"
    "168114610708575f80fd5b5f6020828403121561085a575f80fd5b5051919050565b5f60208284031215610871575f80"
    "fd5b81516107088161070f565b634e487b7160e01b5f52601160045260245ffd5b6001600160a01b0382811682821603"
    "908111156108af576108af61087c565b92915050565b6001600160a01b0381811683821601908111156108af576108af"
    "61087c565b5f81518084528060208401602086015e5f602082860101526020601f19601f830116850101915050929150"
    "50565b6001600160a01b0386811682528515156020830152604082018590528316606082015260a0608082018190525f"
    "9061093c908301846108d4565b979650505050505050565b5f8060408385031215610958575f80fd5b50508051602090"
    "9101519092909150565b7202aa724a9aba0a82fab19902932bb32b93a1d1606d1b81525f82518060208501601385015e"
    "5f920160130191825250919050565b602081525f61070860208301846108d456fea26469706673582212206e2d542525"
    "27c62b7aa42fea6a3ff39ba9a9b2c1a78d9f0f854f667aa460d79464736f6c634300081a0033"
)


class V3PoolData(BaseModel):
    token0: str
    token1: str
    factory: str
    fee: int = Field(..., description="手续费（百万分之一）")


class V3Swap(BaseModel):
    """Swap 事件，数量为池子视角的有符号变动"""
    pool: str
    amount0: int
    amount1: int


class UniswapV3Simulator(ContractWrapper):
    """注入到合成地址的 V3 兑换辅助合约"""

    interface = UNISWAP_V3_SIMULATOR
    label = "UniswapV3Simulator"

    def __init__(
        self,
        session: SimulationSession,
        address: Optional[str] = None,
        caller: Optional[str] = None,
    ):
        """address 为空时使用配置中的 v3_simulator_address"""
        super().__init__(session, address or get_settings().v3_simulator_address, caller)

    def deploy(self) -> str:
        """把字节码注入缓存，返回合约地址"""
        return self.session.deploy_code(self.address, UNISWAP_V3_SIMULATOR_CODE)

    def get_pool_data(self, pool: str) -> V3PoolData:
        result = self.call("getPoolData", to_address(pool))
        return V3PoolData(
            token0=result.token0,
            token1=result.token1,
            factory=result.factory,
            fee=result.fee,
        )

    def swap(
        self,
        pool: str,
        recipient: str,
        token_in: str,
        token_out: str,
        zero_for_one: bool,
        amount_in: int,
    ) -> ContractCallResult:
        """value 为 (tokenInBalanceBefore, tokenInBalanceAfter, tokenOutBalanceBefore, tokenOutBalanceAfter)"""
        return self.transact(
            "swap",
            to_address(pool),
            to_address(recipient),
            to_address(token_in),
            to_address(token_out),
            zero_for_one,
            amount_in,
        )

    @staticmethod
    def decode_swaps(logs: Iterable[Log]) -> List[V3Swap]:
        return [
            V3Swap(pool=event.address, amount0=event["amount0"], amount1=event["amount1"])
            for event in UNISWAP_V3_POOL.decode_logs(logs, "Swap")
        ]


def swap_via_v3_pool(
    session: SimulationSession,
    pool_address: str,
    token_in_address: str,
    amount: int,
    simulator_address: Optional[str] = None,
) -> SwapResult:
    """
    经注入的辅助合约对 Uniswap V3 池子兑换

    Raises:
        ScenarioError: 代币不属于该池子，或兑换后余额与辅助合约报告的不一致
    """
    caller = session.caller
    simulator = UniswapV3Simulator(session, simulator_address)
    simulator.deploy()

    pool_data = simulator.get_pool_data(pool_address)
    token_in_address = to_address(token_in_address)

    if token_in_address == pool_data.token0:
        zero_for_one, token_out_address = True, pool_data.token1
    elif token_in_address == pool_data.token1:
        zero_for_one, token_out_address = False, pool_data.token0
    else:
        raise ScenarioError(f"代币 {token_in_address} 不属于池子 {pool_address}")

    token_in = Erc20(session, token_in_address)
    token_out = Erc20(session, token_out_address)

    session.set_eth_balance(caller, amount)
    token_in.set_balance(caller, amount)

    balance_in_before = token_in.balance_of(caller)
    balance_out_before = token_out.balance_of(caller)

    # 辅助合约在回调中用自己的余额付款，先把输入代币转给它
    token_in.transfer(simulator.address, amount)

    result = simulator.swap(
        pool_address, caller, token_in_address, token_out_address, zero_for_one, amount
    )

    balance_in_after = token_in.balance_of(caller)
    balance_out_after = token_out.balance_of(caller)

    if balance_in_before - amount != balance_in_after:
        raise ScenarioError(
            f"Swap Via Pool V3: 输入代币余额不符: {balance_in_before} - {amount} != {balance_in_after}"
        )
    if result.value.tokenOutBalanceAfter != balance_out_after:
        raise ScenarioError(
            f"Swap Via Pool V3: 输出代币余额与辅助合约报告不符: "
            f"{result.value.tokenOutBalanceAfter} != {balance_out_after}"
        )

    amount_out = max(balance_out_after - balance_out_before, 0)
    logger.info(f"Swap Via Pool V3 - amount_in={amount} amount_out={amount_out}")
    return SwapResult(amount_in=amount, amount_out=amount_out)
