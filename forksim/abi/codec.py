"""
ABI Codec - 合约调用编解码

每个接口对象持有自己函数和事件的 encode/decode，便于集中测试：
- ContractFunction: encode(args) -> calldata, decode(returndata) -> 类型化结果
- ContractEvent: decode_log(log) -> 类型化事件（仅当第一个 topic 等于事件签名哈希）
- ContractInterface: 一组固定、带版本的函数和事件
"""

import logging
from collections import namedtuple
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak
from pydantic import BaseModel, Field
from web3 import Web3

from ..errors import DecodeError
from ..models import Log


logger = logging.getLogger(__name__)


ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")  # Error(string)
PANIC_SELECTOR = bytes.fromhex("4e487b71")  # Panic(uint256)


def _is_dynamic(abi_type: str) -> bool:
    return abi_type in ("bytes", "string") or abi_type.endswith("[]")


def _normalize(abi_type: str, value: Any) -> Any:
    """地址统一为 checksum 格式"""
    if abi_type == "address":
        return Web3.to_checksum_address(value)
    if abi_type == "address[]":
        return [Web3.to_checksum_address(v) for v in value]
    if abi_type.endswith("[]"):
        return list(value)
    return value


def _decode(types: Sequence[str], data: bytes, what: str) -> Tuple[Any, ...]:
    """按类型解码，数据长度必须与规范编码一致"""
    try:
        values = abi_decode(list(types), data)
    except (DecodingError, ValueError, OverflowError) as e:
        raise DecodeError(f"{what}: {e}") from e
    # 尾部多余字节不会被 abi_decode 拒绝，重新编码比较长度
    expected = len(abi_encode(list(types), list(values)))
    if expected != len(data):
        raise DecodeError(f"{what}: 期望 {expected} 字节，实际 {len(data)} 字节")
    return tuple(_normalize(t, v) for t, v in zip(types, values))


def decode_revert_reason(data: bytes) -> Optional[str]:
    """
    解码 revert 原因

    支持标准的 Error(string) 和 Panic(uint256) 编码，其他返回 None。
    """
    data = bytes(data)
    if data[:4] == ERROR_STRING_SELECTOR:
        try:
            (reason,) = abi_decode(["string"], data[4:])
        except (DecodingError, ValueError, UnicodeDecodeError):
            return None
        return reason
    if data[:4] == PANIC_SELECTOR and len(data) == 36:
        code = int.from_bytes(data[4:], "big")
        return f"Panic(0x{code:02x})"
    return None


class ContractFunction:
    """合约函数"""

    def __init__(
        self,
        name: str,
        inputs: Sequence[Tuple[str, str]],
        outputs: Sequence[Tuple[str, str]] = (),
    ):
        self.name = name
        self.input_types = [t for t, _ in inputs]
        self.input_names = [n for _, n in inputs]
        self.output_types = [t for t, _ in outputs]
        self.signature = f"{name}({','.join(self.input_types)})"
        self.selector = keccak(text=self.signature)[:4]

        output_names = [n or f"value{i}" for i, (_, n) in enumerate(outputs)]
        self._result_type = (
            namedtuple(f"{name}Result", output_names) if len(outputs) > 1 else None
        )

    @classmethod
    def from_abi(cls, entry: Dict[str, Any]) -> "ContractFunction":
        return cls(
            name=entry["name"],
            inputs=[(i["type"], i.get("name", "")) for i in entry.get("inputs", [])],
            outputs=[(o["type"], o.get("name", "")) for o in entry.get("outputs", [])],
        )

    def encode(self, *args: Any) -> bytes:
        """编码 calldata"""
        if len(args) != len(self.input_types):
            raise ValueError(
                f"{self.signature} 需要 {len(self.input_types)} 个参数，实际 {len(args)} 个"
            )
        return self.selector + abi_encode(self.input_types, list(args))

    def decode_input(self, calldata: bytes) -> Tuple[Any, ...]:
        """解码 calldata 的参数部分"""
        calldata = bytes(calldata)
        if calldata[:4] != self.selector:
            raise DecodeError(f"{self.signature}: 选择器不匹配 0x{calldata[:4].hex()}")
        return _decode(self.input_types, calldata[4:], f"{self.signature} 参数")

    def encode_output(self, *values: Any) -> bytes:
        """编码返回数据"""
        return abi_encode(self.output_types, list(values))

    def decode(self, returndata: bytes) -> Any:
        """
        解码返回数据

        Returns:
            单个返回值直接返回；多个返回值为 namedtuple；无返回值为 None

        Raises:
            DecodeError: 数据形状或长度与声明的返回类型不匹配
        """
        if not self.output_types:
            return None
        values = _decode(self.output_types, bytes(returndata), f"{self.signature} 返回值")
        if self._result_type is None:
            return values[0]
        return self._result_type(*values)

    def __repr__(self) -> str:
        return f"<ContractFunction {self.signature}>"


class DecodedEvent(BaseModel):
    """已解码的事件"""
    name: str = Field(..., description="事件名")
    address: str = Field(..., description="发出事件的合约地址")
    args: Dict[str, Any] = Field(default_factory=dict, description="事件参数")

    def __getitem__(self, key: str) -> Any:
        return self.args[key]


class ContractEvent:
    """合约事件"""

    def __init__(self, name: str, inputs: Sequence[Tuple[str, str, bool]]):
        self.name = name
        self.inputs = list(inputs)
        self.signature = f"{name}({','.join(t for t, _, _ in inputs)})"
        self.topic = keccak(text=self.signature)
        self._indexed = [(t, n) for t, n, indexed in inputs if indexed]
        self._non_indexed = [(t, n) for t, n, indexed in inputs if not indexed]

    @classmethod
    def from_abi(cls, entry: Dict[str, Any]) -> "ContractEvent":
        return cls(
            name=entry["name"],
            inputs=[(i["type"], i["name"], i.get("indexed", False)) for i in entry["inputs"]],
        )

    def matches(self, log: Log) -> bool:
        """第一个 topic 是否为本事件的签名哈希"""
        return bool(log.topics) and log.topics[0] == self.topic

    def decode_log(self, log: Log) -> Optional[DecodedEvent]:
        """
        解码日志

        Returns:
            签名不匹配时返回 None

        Raises:
            DecodeError: 签名匹配但 topic 数量或数据形状不符
        """
        if not self.matches(log):
            return None

        if len(log.topics) != 1 + len(self._indexed):
            raise DecodeError(
                f"{self.signature}: 期望 {1 + len(self._indexed)} 个 topic，实际 {len(log.topics)} 个"
            )

        args: Dict[str, Any] = {}
        for (abi_type, name), topic in zip(self._indexed, log.topics[1:]):
            if _is_dynamic(abi_type):
                # 动态类型的 indexed 参数只保存哈希
                args[name] = bytes(topic)
            else:
                args[name] = _decode([abi_type], bytes(topic), f"{self.signature}.{name}")[0]

        values = _decode(
            [t for t, _ in self._non_indexed], log.data, f"{self.signature} data"
        )
        for (_, name), value in zip(self._non_indexed, values):
            args[name] = value

        return DecodedEvent(name=self.name, address=log.address, args=args)

    def encode_log(self, address: str, **args: Any) -> Log:
        """构造日志，用于合成事件"""
        topics = [self.topic]
        for abi_type, name in self._indexed:
            topics.append(abi_encode([abi_type], [args[name]]))
        data = abi_encode(
            [t for t, _ in self._non_indexed], [args[n] for _, n in self._non_indexed]
        )
        return Log(address=address, topics=topics, data=data)

    def __repr__(self) -> str:
        return f"<ContractEvent {self.signature}>"


class ContractInterface:
    """
    合约接口

    一组固定的函数和事件，带版本号。
    """

    def __init__(
        self,
        name: str,
        version: str,
        functions: Iterable[ContractFunction],
        events: Iterable[ContractEvent] = (),
    ):
        self.name = name
        self.version = version
        self.functions: Dict[str, ContractFunction] = {f.name: f for f in functions}
        self.events: Dict[str, ContractEvent] = {e.name: e for e in events}

    @classmethod
    def from_abi(cls, name: str, abi: List[Dict[str, Any]], version: str = "1") -> "ContractInterface":
        """从 JSON ABI 构建"""
        return cls(
            name=name,
            version=version,
            functions=[ContractFunction.from_abi(e) for e in abi if e["type"] == "function"],
            events=[ContractEvent.from_abi(e) for e in abi if e["type"] == "event"],
        )

    def function(self, name: str) -> ContractFunction:
        try:
            return self.functions[name]
        except KeyError:
            raise KeyError(f"{self.name} v{self.version} 没有函数 {name}") from None

    def event(self, name: str) -> ContractEvent:
        try:
            return self.events[name]
        except KeyError:
            raise KeyError(f"{self.name} v{self.version} 没有事件 {name}") from None

    def function_by_selector(self, selector: bytes) -> Optional[ContractFunction]:
        for function in self.functions.values():
            if function.selector == bytes(selector[:4]):
                return function
        return None

    def decode_logs(self, logs: Iterable[Log], event_name: Optional[str] = None) -> List[DecodedEvent]:
        """
        批量解码日志

        不匹配的日志直接跳过；签名匹配但格式错误的日志记录警告后跳过，
        不会中断整个批次。
        """
        events = [self.event(event_name)] if event_name else list(self.events.values())
        decoded = []
        for index, log in enumerate(logs):
            for event in events:
                if not event.matches(log):
                    continue
                try:
                    decoded.append(event.decode_log(log))
                except DecodeError as e:
                    logger.warning(f"跳过格式错误的日志 #{index} ({log.address}): {e}")
                break
        return decoded

    def __repr__(self) -> str:
        return f"<ContractInterface {self.name} v{self.version}>"
