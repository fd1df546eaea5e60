"""
forksim Configuration Management

从环境变量和配置文件中读取配置，支持 .env 文件。
"""

import logging
import sys
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import to_address


class Settings(BaseSettings):
    """forksim 配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    # Web3 RPC Configuration
    rpc_url: str = Field(default="https://eth.llamarpc.com", alias="RPC_URL")
    rpc_timeout_seconds: int = Field(default=30, alias="RPC_TIMEOUT_SECONDS")

    # Fork Configuration
    fork_block: Optional[int] = Field(default=None, alias="FORK_BLOCK")
    chain_id: int = Field(default=1, alias="CHAIN_ID")

    # Simulation Defaults
    caller: str = Field(
        default="0xFF3cF7b8582571095A2B05268A4E1BafBDAD060D",
        alias="SIMULATION_CALLER"
    )
    gas_limit: int = Field(default=30_000_000, alias="GAS_LIMIT")
    slot_search_limit: int = Field(default=50, alias="SLOT_SEARCH_LIMIT")
    v3_simulator_address: str = Field(
        default="0x1100000000000000000000000000000000000011",
        alias="V3_SIMULATOR_ADDRESS"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("caller", "v3_simulator_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return to_address(v)

    @field_validator("slot_search_limit", "gas_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"必须为正数: {v}")
        return v


def setup_logging(level: str = "INFO"):
    """配置日志"""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


# 全局配置实例
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """获取全局配置实例"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置"""
    global _settings
    _settings = Settings()
    return _settings
