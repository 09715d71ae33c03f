"""
Configuration schema validation using Pydantic
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"


class HopSchema(BaseModel):
    """One swap of a cyclic path"""

    pool: str = Field(min_length=1, description="Pair contract address")
    zero_for_one: bool = Field(
        description="True when the hop sells token0 for token1"
    )


class PathSchema(BaseModel):
    """Cyclic path evaluated on every tick"""

    name: str = Field(min_length=1)
    router: str = Field(min_length=1, description="Router passed to the executor")
    token_in: str = Field(min_length=1)
    token_out: str = Field(min_length=1)
    hops: List[HopSchema] = Field(min_length=2)


class NetworkSchema(BaseModel):
    """Per-network connection and trading configuration"""

    chain_id: int = Field(gt=0)
    rpc_env: Optional[str] = Field(
        default=None, description="Environment variable holding the preferred RPC"
    )
    rpcs: List[str] = Field(default_factory=list)
    multicall: str = MULTICALL3_ADDRESS
    moat_eth: float = Field(ge=0, default=0.01)
    priority_fee_gwei: Optional[float] = Field(ge=0, default=None)
    executor: Optional[str] = None
    pools: List[str] = Field(default_factory=list)
    paths: List[PathSchema] = Field(default_factory=list)

    @field_validator("rpcs")
    @classmethod
    def validate_rpcs(cls, v):
        for url in v:
            if not isinstance(url, str):
                raise ValueError(f"RPC endpoint must be a string: {url!r}")
        return v


class ExecutionSchema(BaseModel):
    """Strike guard configuration"""

    enabled: bool = False
    private_key_env: str = "PRIVATE_KEY"
    gas_budget: int = Field(gt=0, default=350_000)
    gas_limit_ceiling: int = Field(gt=0, default=500_000)
    gas_price_multiplier: float = Field(ge=1.0, le=10.0, default=1.2)
    min_profit_eth: float = Field(ge=0, default=0.0)
    simulation_timeout_sec: float = Field(gt=0, le=60, default=5.0)
    submit_timeout_sec: float = Field(gt=0, le=120, default=10.0)

    @model_validator(mode="after")
    def validate_gas_limits(self):
        if self.gas_budget > self.gas_limit_ceiling:
            raise ValueError("gas_budget must not exceed gas_limit_ceiling")
        return self


class ObservabilitySchema(BaseModel):
    """Metrics and liveness server configuration"""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = Field(ge=0, le=65535, default=8000)
    stale_after_sec: float = Field(gt=0, default=120.0)


class ScannerSchema(BaseModel):
    """Top-level scanner configuration"""

    networks: Dict[str, NetworkSchema] = Field(min_length=1)
    concurrent: bool = False
    once: bool = False
    pass_interval_sec: float = Field(ge=0, le=600, default=5.0)
    network_delay_sec: float = Field(ge=0, le=60, default=1.0)
    batch_timeout_sec: float = Field(gt=0, le=60, default=4.0)
    connect_timeout_sec: float = Field(gt=0, le=60, default=5.0)
    settle_delay_sec: float = Field(ge=0, le=60, default=2.0)
    rate_limit_backoff_sec: float = Field(ge=0, le=120, default=2.0)
    rate_limit_strikes: int = Field(ge=1, le=100, default=3)
    probe_amount_eth: float = Field(gt=0, default=0.1)
    execution: ExecutionSchema = Field(default_factory=ExecutionSchema)
    observability: ObservabilitySchema = Field(default_factory=ObservabilitySchema)

    @field_validator("networks")
    @classmethod
    def validate_network_names(cls, v):
        for name in v:
            if not name or not name.strip():
                raise ValueError("network names cannot be empty")
        return v


def validate_scanner_config(config_dict: Dict) -> ScannerSchema:
    """
    Validate a scanner configuration dictionary

    Args:
        config_dict: Dictionary representation of the YAML config

    Returns:
        Validated ScannerSchema object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return ScannerSchema(**config_dict)
