"""
TraceCallEngine - 基于 debug_traceCall 的执行引擎

把调用交给支持 debug 命名空间的节点执行，本地缓存中的修改通过
stateOverrides 传入。每次 run 发起三次追踪：
1. callTracer（withLog）：返回数据、gas、错误和事件
2. prestateTracer：执行中触及的账户与存储（读或写）
3. prestateTracer diffMode：执行后的状态，成功时写回日志
"""

import logging
from typing import Any, Dict, List, Optional

from web3 import Web3
from web3.exceptions import Web3Exception

from ..errors import RemoteFetchError
from ..models import Account, BlockEnv, CallRequest, ExecutionStatus, Log, StateDiff, to_bytes
from ..state.journal import StateJournal
from .engine import CallEngine, EngineResult


logger = logging.getLogger(__name__)


REVERT_ERROR = "execution reverted"


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)


def _hex(value: int) -> str:
    return hex(value)


class TraceCallEngine(CallEngine):
    """
    debug_traceCall 执行引擎

    gas 退款不在追踪结果中，gas_refunded 固定为 0。
    """

    engine_name = "debug_traceCall"

    def __init__(self, w3: Web3):
        self.w3 = w3

    def run(self, request: CallRequest, env: BlockEnv, state: StateJournal) -> EngineResult:
        tx = self._build_tx(request)
        block = _hex(state.cache.block_number)
        base_config = {
            "stateOverrides": self._state_overrides(state.cache.local_changes()),
            "blockOverrides": self._block_overrides(env),
        }

        call_frame = self._trace(
            tx, block, {**base_config, "tracer": "callTracer", "tracerConfig": {"withLog": True}}
        )
        prestate = self._trace(tx, block, {**base_config, "tracer": "prestateTracer"})
        self._observe_prestate(prestate, state)

        gas_used = _to_int(call_frame.get("gasUsed"))
        output = to_bytes(call_frame.get("output"))
        error = call_frame.get("error")

        if error:
            if error == REVERT_ERROR:
                return EngineResult(status=ExecutionStatus.REVERT, output=output, gas_used=gas_used)
            return EngineResult(status=ExecutionStatus.HALT, gas_used=gas_used, halt_reason=error)

        post_state = self._trace(
            tx,
            block,
            {**base_config, "tracer": "prestateTracer", "tracerConfig": {"diffMode": True}},
        )
        self._apply_post_state(post_state, state)

        return EngineResult(
            status=ExecutionStatus.SUCCESS,
            output=output,
            gas_used=gas_used,
            logs=self._collect_logs(call_frame),
        )

    # ------------------------------------------------------------------
    # 请求构造
    # ------------------------------------------------------------------

    def _build_tx(self, request: CallRequest) -> Dict[str, Any]:
        tx: Dict[str, Any] = {
            "from": request.sender,
            "data": "0x" + request.data.hex(),
            "value": _hex(request.value),
            "gas": _hex(request.gas_limit),
        }
        if request.target is not None:
            tx["to"] = request.target
        if request.access_list is not None:
            tx["accessList"] = request.access_list.to_rpc()
        return tx

    def _state_overrides(self, changes: StateDiff) -> Dict[str, Dict[str, Any]]:
        overrides = {}
        for address, diff in changes.accounts.items():
            entry: Dict[str, Any] = {}
            if diff.balance is not None:
                entry["balance"] = _hex(diff.balance)
            if diff.nonce is not None:
                entry["nonce"] = _hex(diff.nonce)
            if diff.code is not None:
                entry["code"] = "0x" + diff.code.hex()
            if diff.storage:
                entry["stateDiff"] = {
                    "0x" + key.to_bytes(32, "big").hex(): "0x" + value.to_bytes(32, "big").hex()
                    for key, value in diff.storage.items()
                }
            overrides[address] = entry
        return overrides

    def _block_overrides(self, env: BlockEnv) -> Dict[str, str]:
        overrides = {
            "number": _hex(env.number),
            "feeRecipient": env.coinbase,
            "baseFeePerGas": _hex(env.base_fee),
            "gasLimit": _hex(env.gas_limit),
        }
        if env.timestamp is not None:
            overrides["time"] = _hex(env.timestamp)
        return overrides

    def _trace(self, tx: Dict[str, Any], block: str, config: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.w3.provider.make_request("debug_traceCall", [tx, block, config])
        except (Web3Exception, OSError, ValueError) as e:
            raise RemoteFetchError(f"debug_traceCall 请求失败: {e}") from e

        if "error" in response:
            raise RemoteFetchError(f"debug_traceCall 返回错误: {response['error']}")
        return response.get("result") or {}

    # ------------------------------------------------------------------
    # 结果解析
    # ------------------------------------------------------------------

    def _observe_prestate(self, prestate: Dict[str, Any], state: StateJournal) -> None:
        for address, raw in prestate.items():
            state.observe_account(address, self._parse_account(address, raw))
            for key, value in (raw.get("storage") or {}).items():
                state.observe_storage(address, _to_int(key), _to_int(value))

    def _apply_post_state(self, diff: Dict[str, Any], state: StateJournal) -> None:
        pre = diff.get("pre") or {}
        for address, raw in (diff.get("post") or {}).items():
            if "balance" in raw:
                state.set_balance(address, _to_int(raw["balance"]))
            if "nonce" in raw:
                state.set_nonce(address, _to_int(raw["nonce"]))
            if "code" in raw:
                state.set_code(address, to_bytes(raw["code"]))

            post_storage = raw.get("storage") or {}
            for key, value in post_storage.items():
                state.set_storage(address, _to_int(key), _to_int(value))
            # 被清零的槽只出现在 pre 中
            for key in (pre.get(address, {}).get("storage") or {}):
                if key not in post_storage:
                    state.set_storage(address, _to_int(key), 0)

    def _parse_account(self, address: str, raw: Dict[str, Any]) -> Optional[Account]:
        balance = _to_int(raw.get("balance"))
        nonce = _to_int(raw.get("nonce"))
        code = to_bytes(raw.get("code"))
        if balance == 0 and nonce == 0 and not code:
            return None
        return Account(address=address, balance=balance, nonce=nonce, code=code or None)

    def _collect_logs(self, frame: Dict[str, Any]) -> List[Log]:
        """按触发顺序收集事件，失败的调用帧中的事件被丢弃"""
        if frame.get("error"):
            return []

        frame_logs = frame.get("logs") or []
        calls = frame.get("calls") or []
        logs: List[Log] = []
        position = 0

        for index, call in enumerate(calls):
            while position < len(frame_logs) and _to_int(frame_logs[position].get("position")) <= index:
                logs.append(self._parse_log(frame_logs[position]))
                position += 1
            logs.extend(self._collect_logs(call))

        for raw in frame_logs[position:]:
            logs.append(self._parse_log(raw))
        return logs

    def _parse_log(self, raw: Dict[str, Any]) -> Log:
        return Log(address=raw["address"], topics=raw.get("topics") or [], data=raw.get("data") or b"")
