from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TEMPREPORT_",
        extra="ignore",
    )

    gateway_domain: str = "gateway.example.com"
    rpc_url_template: str = (
        "https://{central_id}.{gateway_domain}/api/rpc/temperature_report"
    )
    rpc_timeout_seconds: float = 120.0
    rpc_max_concurrency: int = 1

    chunk_size_days: int = 30
    cache_ttl_seconds: int = 1800

    max_gap_slots: int = 8
    allow_cross_midnight: bool = False
    include_missing_in_output: bool = False
    interpolation_neighbor_weight: float = 0.7

    local_timezone: str = "America/Sao_Paulo"

    legacy_centrals: list[str] = Field(default_factory=list)
    legacy_offset_hours: int = 3
    central_aliases: dict[str, str] = Field(default_factory=dict)

    clamp_min: float = 17.0
    clamp_max: float = 25.0

    device_config_path: str = "config/devices.json"

    log_level: str = "INFO"

    def rpc_url(self, central_id: str) -> str:
        return self.rpc_url_template.format(
            central_id=central_id, gateway_domain=self.gateway_domain
        )

    def resolve_central(self, central_id: str) -> str:
        return self.central_aliases.get(central_id, central_id)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
