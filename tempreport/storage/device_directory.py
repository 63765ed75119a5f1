import json
import logging
from pathlib import Path
from typing import Optional

from tempreport.models.device import DeviceConfig

logger = logging.getLogger(__name__)


class DeviceDirectory:
    """Read-only device lookups: labels, owning centrals, key resolution.

    Backends name devices loosely (sometimes by name, sometimes by label, in
    any case), so every lookup goes through ``resolve`` first.
    """

    def __init__(
        self,
        config: DeviceConfig,
        central_aliases: Optional[dict[str, str]] = None,
    ):
        aliases = central_aliases or {}
        self._devices = list(dict.fromkeys(config.devices))
        self._labels = dict(config.labels)
        self._centrals = {
            device: aliases.get(central, central)
            for device, central in config.centrals.items()
        }
        self.expected_labels = list(config.expected_labels)

        self._by_key: dict[str, str] = {}
        for device in [*self._devices, *self._centrals]:
            self._by_key.setdefault(device.casefold(), device)
        for device, label in self._labels.items():
            self._by_key.setdefault(label.casefold(), device)

    @classmethod
    def from_file(
        cls, path: str, central_aliases: Optional[dict[str, str]] = None
    ) -> "DeviceDirectory":
        config_path = Path(path)
        if not config_path.exists():
            logger.warning(f"Device config {config_path} not found, directory is empty")
            return cls(DeviceConfig(), central_aliases)
        data = json.loads(config_path.read_text(encoding="utf-8"))
        return cls(DeviceConfig.model_validate(data), central_aliases)

    @property
    def devices(self) -> list[str]:
        return list(self._devices)

    def resolve(self, device_key: str) -> str:
        return self._by_key.get(device_key.casefold(), device_key)

    def label_for(self, device_key: str) -> str:
        device = self.resolve(device_key)
        return self._labels.get(device, device)

    def central_for(self, device_key: str) -> Optional[str]:
        return self._centrals.get(self.resolve(device_key))

    def central_ids(self) -> list[str]:
        return sorted(set(self._centrals.values()))

    def devices_for_central(self, central_id: str, selected: list[str]) -> list[str]:
        return [device for device in selected if self.central_for(device) == central_id]
