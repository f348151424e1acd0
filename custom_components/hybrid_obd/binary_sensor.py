"""Binary sensor platform for the Hybrid OBD integration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import HybridObdCoordinator

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN
from .sensor import build_device_info


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up the adapter connectivity sensor from a config entry."""
    coordinator = hass.data[DOMAIN][entry.entry_id]
    async_add_entities(
        [
            AdapterConnectivitySensor(
                coordinator,
                entry.unique_id or entry.entry_id,
                build_device_info(entry),
            )
        ]
    )


class AdapterConnectivitySensor(CoordinatorEntity, BinarySensorEntity):
    """On while the ELM327 adapter is connected and initialised."""

    _attr_has_entity_name = True
    _attr_device_class = BinarySensorDeviceClass.CONNECTIVITY
    _attr_entity_category = EntityCategory.DIAGNOSTIC

    def __init__(
        self,
        coordinator: HybridObdCoordinator,
        device_key: str,
        device_info: DeviceInfo,
    ) -> None:
        super().__init__(coordinator)
        self._attr_unique_id = f"{device_key}_connectivity"
        self._attr_name = "Adapter"
        self._attr_device_info = device_info

    @property
    def is_on(self) -> bool:
        return self.coordinator.is_adapter_ready()

    @property
    def extra_state_attributes(self) -> dict[str, str | None]:
        return {
            "state": str(self.coordinator.connection_state),
            "last_error": self.coordinator.last_error,
        }
