#!/usr/bin/env python3
"""
forksim Environment Check Script

检查运行 forksim 所需的环境依赖：
1. Python 版本 >= 3.10
2. 必要的 Python 包
3. RPC 可达性
4. 节点是否开放 debug_traceCall（TraceCallEngine 依赖）
"""

import importlib
import importlib.util
import sys
from typing import List, Optional, Tuple

import httpx


class Colors:
    """终端颜色输出"""
    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


def print_header(text: str) -> None:
    print(f"\n{Colors.BLUE}{Colors.BOLD}=== {text} ==={Colors.RESET}")


def print_success(text: str) -> None:
    print(f"{Colors.GREEN}✓ {text}{Colors.RESET}")


def print_error(text: str) -> None:
    print(f"{Colors.RED}✗ {text}{Colors.RESET}")


def print_warning(text: str) -> None:
    print(f"{Colors.YELLOW}⚠ {text}{Colors.RESET}")


def check_python_version() -> Tuple[bool, str]:
    """检查 Python 版本"""
    version = sys.version_info
    if version >= (3, 10):
        return True, f"Python {version.major}.{version.minor}.{version.micro}"
    return False, f"Python {version.major}.{version.minor}.{version.micro} (需要 >= 3.10)"


def check_python_package(package: str, import_name: Optional[str] = None) -> Tuple[bool, str]:
    """检查 Python 包是否已安装"""
    import_name = import_name or package
    if importlib.util.find_spec(import_name) is None:
        return False, f"{package}: 未安装"
    mod = importlib.import_module(import_name)
    version = getattr(mod, "__version__", "unknown")
    return True, f"{package}: {version}"


def _rpc(rpc_url: str, method: str, params: list) -> dict:
    response = httpx.post(
        rpc_url,
        json={"jsonrpc": "2.0", "method": method, "params": params, "id": 1},
        timeout=10,
    )
    response.raise_for_status()
    return response.json()


def check_rpc_connectivity(rpc_url: str) -> Tuple[bool, str]:
    """检查 RPC 连接性"""
    try:
        data = _rpc(rpc_url, "eth_blockNumber", [])
    except httpx.HTTPError as e:
        return False, f"RPC 连接失败: {e}"
    if "result" in data:
        return True, f"RPC 连接成功 (区块: {int(data['result'], 16)})"
    return False, f"RPC 返回错误: {data.get('error')}"


def check_trace_call(rpc_url: str) -> Tuple[bool, str]:
    """检查节点是否支持 debug_traceCall"""
    tx = {"from": "0x" + "00" * 20, "to": "0x" + "00" * 19 + "01", "data": "0x"}
    try:
        data = _rpc(rpc_url, "debug_traceCall", [tx, "latest", {"tracer": "callTracer"}])
    except httpx.HTTPError as e:
        return False, f"debug_traceCall 请求失败: {e}"
    if "error" in data:
        return False, f"debug_traceCall 不可用: {data['error'].get('message')}"
    return True, "debug_traceCall 可用"


def main():
    print_header("forksim 环境检查")
    print()

    all_passed = True
    results: List[Tuple[bool, str]] = []

    # 1. 检查 Python 版本
    print_header("1. Python 版本检查")
    passed, msg = check_python_version()
    results.append((passed, msg))
    if passed:
        print_success(msg)
    else:
        print_error(msg)
        all_passed = False

    # 2. 检查 Python 依赖
    print_header("2. Python 依赖检查")
    packages = [
        ("web3", "web3"),
        ("eth-abi", "eth_abi"),
        ("eth-utils", "eth_utils"),
        ("pydantic", "pydantic"),
        ("pydantic-settings", "pydantic_settings"),
        ("httpx", "httpx"),
    ]
    for package, import_name in packages:
        passed, msg = check_python_package(package, import_name)
        results.append((passed, msg))
        if passed:
            print_success(msg)
        else:
            print_error(msg)
            all_passed = False

    # 3. 检查 RPC 连接与 debug 命名空间
    print_header("3. RPC 检查")
    rpc_urls = sys.argv[1:] or ["https://eth.llamarpc.com"]
    for rpc in rpc_urls:
        for check in (check_rpc_connectivity, check_trace_call):
            passed, msg = check(rpc)
            results.append((passed, msg))
            if passed:
                print_success(f"{rpc[:30]}... - {msg}")
            else:
                print_warning(f"{rpc[:30]}... - {msg}")

    # 总结
    print_header("检查总结")
    passed_count = sum(1 for p, _ in results if p)
    total_count = len(results)

    if all_passed:
        print_success(f"所有核心检查通过! ({passed_count}/{total_count})")
        print()
        print("下一步:")
        print("  1. 在 .env 中配置 RPC_URL（节点需开放 debug_traceCall）")
        print("  2. 运行: pip install -e '.[test]'")
        print("  3. 运行测试: pytest")
        return 0
    else:
        print_error(f"部分检查失败 ({passed_count}/{total_count})")
        print()
        print("请安装缺失的依赖:")
        print("  - Python 包: pip install -e .")
        return 1


if __name__ == "__main__":
    sys.exit(main())
