"""
Simulation Data Models

定义模拟执行过程中使用的数据结构。
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

from .errors import ExecutionHalt, ExecutionRevert


ZERO_ADDRESS = "0x" + "0" * 40
UINT256_MAX = 2**256 - 1


def to_address(value: Any) -> str:
    """规范化为 checksum 地址"""
    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"无效的以太坊地址: {value!r}")
    return Web3.to_checksum_address(value)


def to_bytes(value: Any) -> bytes:
    """接受 bytes 或 0x 前缀的十六进制字符串"""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        hex_str = value[2:] if value.startswith("0x") else value
        if len(hex_str) % 2:
            hex_str = "0" + hex_str
        try:
            return bytes.fromhex(hex_str)
        except ValueError:
            raise ValueError(f"无效的十六进制数据: {value!r}")
    raise ValueError(f"无法转换为 bytes: {type(value)!r}")


def to_word(value: int) -> str:
    """256 位整数 -> 0x 前缀的 32 字节十六进制"""
    return "0x" + value.to_bytes(32, "big").hex()


class Account(BaseModel):
    """账户快照"""
    model_config = ConfigDict(frozen=True)

    address: str = Field(..., description="账户地址")
    balance: int = Field(default=0, ge=0, description="ETH 余额（wei）")
    nonce: int = Field(default=0, ge=0, description="nonce")
    code: Optional[bytes] = Field(None, description="合约字节码")

    @field_validator("address", mode="before")
    @classmethod
    def validate_address(cls, v: Any) -> str:
        return to_address(v)

    @field_validator("code", mode="before")
    @classmethod
    def validate_code(cls, v: Any) -> Optional[bytes]:
        if v is None:
            return None
        return to_bytes(v) or None

    @property
    def is_contract(self) -> bool:
        """是否为合约账户"""
        return bool(self.code)


class Log(BaseModel):
    """合约事件日志"""
    address: str = Field(..., description="合约地址")
    topics: List[bytes] = Field(default_factory=list, description="事件主题")
    data: bytes = Field(default=b"", description="事件数据")

    @field_validator("address", mode="before")
    @classmethod
    def validate_address(cls, v: Any) -> str:
        return to_address(v)

    @field_validator("topics", mode="before")
    @classmethod
    def validate_topics(cls, v: Any) -> List[bytes]:
        return [to_bytes(t) for t in v]

    @field_validator("data", mode="before")
    @classmethod
    def validate_data(cls, v: Any) -> bytes:
        return to_bytes(v)


class AccessListItem(BaseModel):
    """单个地址及其存储键"""
    model_config = ConfigDict(frozen=True)

    address: str
    storage_keys: Tuple[int, ...] = ()

    @field_validator("address", mode="before")
    @classmethod
    def validate_address(cls, v: Any) -> str:
        return to_address(v)


class AccessList(BaseModel):
    """
    访问列表

    一次执行中读或写过的 (address, storage key) 集合。
    没有任何存储交互的账户不在列表中。
    条目按地址排序，键按数值排序，保证结果确定。
    """
    items: List[AccessListItem] = Field(default_factory=list)

    @classmethod
    def from_touched(cls, touched: Mapping[str, Iterable[int]]) -> "AccessList":
        """从 {address: keys} 构建规范化的访问列表"""
        items = []
        for address in sorted(touched, key=lambda a: a.lower()):
            keys = tuple(sorted(set(touched[address])))
            if keys:
                items.append(AccessListItem(address=address, storage_keys=keys))
        return cls(items=items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def addresses(self) -> List[str]:
        return [item.address for item in self.items]

    def keys_for(self, address: str) -> Set[int]:
        """指定地址被触及的存储键"""
        address = to_address(address)
        for item in self.items:
            if item.address == address:
                return set(item.storage_keys)
        return set()

    def pairs(self) -> Set[Tuple[str, int]]:
        """展开为 (address, key) 集合"""
        return {(item.address, key) for item in self.items for key in item.storage_keys}

    def is_subset_of(self, other: "AccessList") -> bool:
        return self.pairs() <= other.pairs()

    def to_rpc(self) -> List[Dict[str, Any]]:
        """转换为 JSON-RPC 交易中的 accessList 格式"""
        return [
            {
                "address": item.address,
                "storageKeys": [to_word(key) for key in item.storage_keys],
            }
            for item in self.items
        ]


class AccountDiff(BaseModel):
    """单个账户的状态变更，None 表示未变更"""
    balance: Optional[int] = None
    nonce: Optional[int] = None
    code: Optional[bytes] = None
    storage: Dict[int, int] = Field(default_factory=dict)


class StateDiff(BaseModel):
    """一次执行产生的账户状态变更"""
    accounts: Dict[str, AccountDiff] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.accounts

    def written_pairs(self) -> Set[Tuple[str, int]]:
        """被写入的 (address, key) 集合"""
        return {
            (address, key)
            for address, diff in self.accounts.items()
            for key in diff.storage
        }


class CallRequest(BaseModel):
    """单次调用请求"""
    sender: str = Field(..., description="调用者地址")
    target: Optional[str] = Field(None, description="目标地址，None 表示创建合约")
    data: bytes = Field(default=b"", description="calldata")
    value: int = Field(default=0, ge=0, description="转移的 ETH（wei）")
    gas_limit: int = Field(default=30_000_000, gt=0, description="gas 限制")
    access_list: Optional[AccessList] = Field(None, description="预先声明的访问列表")
    block_number: Optional[int] = Field(None, description="模拟区块号覆盖")

    @field_validator("sender", mode="before")
    @classmethod
    def validate_sender(cls, v: Any) -> str:
        return to_address(v)

    @field_validator("target", mode="before")
    @classmethod
    def validate_target(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return to_address(v)

    @field_validator("data", mode="before")
    @classmethod
    def validate_data(cls, v: Any) -> bytes:
        return to_bytes(v)

    @property
    def is_create(self) -> bool:
        return self.target is None

    def with_access_list(self, access_list: AccessList) -> "CallRequest":
        return self.model_copy(update={"access_list": access_list})


class BlockEnv(BaseModel):
    """模拟执行所在的区块环境"""
    number: int = Field(..., ge=0, description="区块号")
    chain_id: int = Field(default=1, description="链 ID")
    timestamp: Optional[int] = Field(None, description="区块时间戳")
    coinbase: str = Field(default=ZERO_ADDRESS, description="出块地址")
    base_fee: int = Field(default=0, description="base fee")
    gas_limit: int = Field(default=30_000_000, description="区块 gas 限制")


class ExecutionStatus(str, Enum):
    """执行状态"""
    SUCCESS = "SUCCESS"
    REVERT = "REVERT"
    HALT = "HALT"


class ExecutionOutcome(BaseModel):
    """单次调用的执行结果"""
    status: ExecutionStatus
    return_data: bytes = Field(default=b"", description="返回数据（revert 时为原始 revert 数据）")
    gas_used: int = Field(default=0, description="消耗的 gas")
    gas_refunded: int = Field(default=0, description="退还的 gas")
    logs: List[Log] = Field(default_factory=list, description="触发的事件")
    state_diff: StateDiff = Field(default_factory=StateDiff, description="状态变更")
    touched: AccessList = Field(default_factory=AccessList, description="读写过的存储")

    revert_reason: Optional[str] = Field(None, description="revert 原因")
    halt_reason: Optional[str] = Field(None, description="异常终止原因")
    committed: bool = Field(default=False, description="状态变更是否已写入缓存")

    # 由 AccessListBuilder 填充：不带访问列表的探测执行的 gas
    probe_gas_used: Optional[int] = None
    probe_gas_refunded: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def raise_for_status(self) -> "ExecutionOutcome":
        """失败时抛出 ExecutionRevert / ExecutionHalt"""
        if self.status == ExecutionStatus.REVERT:
            raise ExecutionRevert(self.revert_reason or "", self.return_data)
        if self.status == ExecutionStatus.HALT:
            raise ExecutionHalt(self.halt_reason or "unknown")
        return self
