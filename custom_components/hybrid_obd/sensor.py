"""Sensor platform for the Hybrid OBD integration."""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.components.sensor import SensorEntity, SensorStateClass
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.typing import StateType
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import (
    CONF_DEVICE_NAME,
    DERIVED_SENSORS,
    DOMAIN,
    DTC_SENSOR_KEY,
    NON_MEASUREMENT_SIGNALS,
    UNIT_TO_HA,
    DerivedSensorDescription,
    SensorMeta,
)
from .pid_tables.base import SOURCE_ALIAS, SOURCE_COMMUNITY, SignalDefinition

_LOGGER = logging.getLogger(__name__)

_SOURCE_ICONS = {
    SOURCE_ALIAS: "mdi:car-electric",
    SOURCE_COMMUNITY: "mdi:car-cog",
}


def resolve_sensor_meta(signal: SignalDefinition) -> SensorMeta:
    """Determine HA sensor attributes for a signal definition."""
    name = signal.name or signal.short_name or signal.id

    if signal.id in NON_MEASUREMENT_SIGNALS:
        return SensorMeta(name=name, state_class=None, icon="mdi:toggle-switch")

    ha_mapping = UNIT_TO_HA.get(signal.unit.strip())
    if ha_mapping:
        device_class, unit, state_class = ha_mapping
    else:
        device_class, unit, state_class = (
            None,
            signal.unit.strip() or None,
            SensorStateClass.MEASUREMENT,
        )

    return SensorMeta(
        name=name,
        device_class=device_class,
        state_class=state_class,
        unit=unit,
        icon=None if device_class is not None else _SOURCE_ICONS.get(signal.source),
    )


def build_device_info(entry: ConfigEntry) -> DeviceInfo:
    return DeviceInfo(
        identifiers={(DOMAIN, entry.unique_id or entry.entry_id)},
        name=entry.data.get(CONF_DEVICE_NAME),
        manufacturer="ELM Electronics",
        model="ELM327",
    )


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up Hybrid OBD sensor entities from a config entry."""
    coordinator = hass.data[DOMAIN][entry.entry_id]
    device_key = entry.unique_id or entry.entry_id
    device_info = build_device_info(entry)

    entities: list[SensorEntity] = []
    for signal_id in coordinator.session.signal_ids:
        signal = coordinator.registry.get(signal_id)
        if signal is None:
            _LOGGER.warning("Selected signal %s is not defined; skipping", signal_id)
            continue
        entities.append(
            ObdSignalSensor(
                coordinator=coordinator,
                signal=signal,
                sensor_meta=resolve_sensor_meta(signal),
                device_key=device_key,
                device_info=device_info,
            )
        )
    selected = set(coordinator.session.signal_ids)
    for description in DERIVED_SENSORS:
        if selected.issuperset(description.inputs):
            entities.append(DerivedSensor(coordinator, description, device_key, device_info))
    entities.append(TroubleCodeSensor(coordinator, device_key, device_info))

    async_add_entities(entities)


class ObdSignalSensor(CoordinatorEntity, SensorEntity):
    """A decoded vehicle signal."""

    _attr_has_entity_name = True
    _attr_should_poll = False

    def __init__(
        self,
        coordinator: Any,
        signal: SignalDefinition,
        sensor_meta: SensorMeta,
        device_key: str,
        device_info: DeviceInfo,
    ) -> None:
        super().__init__(coordinator)
        self._signal = signal

        self._attr_unique_id = f"{device_key}_{signal.id}"
        self._attr_name = sensor_meta.name
        self._attr_device_info = device_info

        if sensor_meta.device_class is not None:
            self._attr_device_class = sensor_meta.device_class
        if sensor_meta.state_class is not None:
            self._attr_state_class = sensor_meta.state_class
        if sensor_meta.unit is not None:
            self._attr_native_unit_of_measurement = sensor_meta.unit
        if sensor_meta.entity_category is not None:
            self._attr_entity_category = sensor_meta.entity_category
        if sensor_meta.icon is not None:
            self._attr_icon = sensor_meta.icon

        self._static_attributes = {
            "signal_id": signal.id,
            "request": signal.request,
            "header": signal.tx_header,
            "min": signal.min_value,
            "max": signal.max_value,
        }

    @property
    def available(self) -> bool:
        """Unavailable while the vehicle does not answer this signal."""
        return super().available and self.coordinator.is_signal_polled(self._signal.id)

    @property
    def native_value(self) -> StateType:
        if self.coordinator.data is None:
            return None
        return self.coordinator.data.get(self._signal.id)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        return {
            **self._static_attributes,
            "polled": self.coordinator.is_signal_polled(self._signal.id),
        }


class DerivedSensor(CoordinatorEntity, SensorEntity):
    """A value computed from other signals, such as fuel economy."""

    _attr_has_entity_name = True
    _attr_should_poll = False

    def __init__(
        self,
        coordinator: Any,
        description: DerivedSensorDescription,
        device_key: str,
        device_info: DeviceInfo,
    ) -> None:
        super().__init__(coordinator)
        self._description = description
        meta = description.meta

        self._attr_unique_id = f"{device_key}_{description.key}"
        self._attr_name = meta.name
        self._attr_device_info = device_info
        self._attr_device_class = meta.device_class
        self._attr_state_class = meta.state_class
        self._attr_native_unit_of_measurement = meta.unit
        self._attr_icon = meta.icon

    @property
    def available(self) -> bool:
        return super().available and all(
            self.coordinator.is_signal_polled(signal_id)
            for signal_id in self._description.inputs
        )

    @property
    def native_value(self) -> StateType:
        if self.coordinator.data is None:
            return None
        return self.coordinator.data.get(self._description.key)


class TroubleCodeSensor(CoordinatorEntity, SensorEntity):
    """Number of trouble codes from the last read, with the codes as attributes."""

    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_entity_category = EntityCategory.DIAGNOSTIC
    _attr_icon = "mdi:engine-outline"

    def __init__(self, coordinator: Any, device_key: str, device_info: DeviceInfo) -> None:
        super().__init__(coordinator)
        self._attr_unique_id = f"{device_key}_{DTC_SENSOR_KEY}"
        self._attr_name = "Trouble codes"
        self._attr_device_info = device_info

    @property
    def native_value(self) -> StateType:
        if self.coordinator.dtcs_updated is None:
            return None
        return len(self.coordinator.dtcs)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        dtcs = self.coordinator.dtcs
        return {
            "stored": [dtc.code for dtc in dtcs if not dtc.is_pending],
            "pending": [dtc.code for dtc in dtcs if dtc.is_pending],
            "last_read": (
                self.coordinator.dtcs_updated.isoformat()
                if self.coordinator.dtcs_updated
                else None
            ),
        }
