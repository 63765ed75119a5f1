from pydantic import BaseModel, Field


class DeviceConfig(BaseModel):
    devices: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    centrals: dict[str, str] = Field(default_factory=dict)
    expected_labels: list[str] = Field(default_factory=list)
