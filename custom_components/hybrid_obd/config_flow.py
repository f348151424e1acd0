"""Config flow for the Hybrid OBD integration."""

from __future__ import annotations

import logging
from typing import Any

import voluptuous as vol

from homeassistant import config_entries
from homeassistant.core import callback
from homeassistant.data_entry_flow import FlowResult
from homeassistant.helpers.selector import (
    SelectOptionDict,
    SelectSelector,
    SelectSelectorConfig,
    SelectSelectorMode,
)

from .const import (
    CONF_DEVICE_NAME,
    CONF_HOST,
    CONF_POLL_INTERVAL,
    CONF_PORT,
    CONF_SELECTED_SIGNALS,
    DEFAULT_DEVICE_NAME,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_PORT,
    DOMAIN,
    clamp_poll_interval,
)
from .pid_tables.base import SOURCE_ALIAS, SOURCE_COMMUNITY, SOURCE_STANDARD
from .pid_tables.registry import PidRegistry, build_default_registry
from .session import DEFAULT_SIGNALS
from .signal_keys import normalize_selected_signals

_LOGGER = logging.getLogger(__name__)

STEP_USER_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_DEVICE_NAME, default=DEFAULT_DEVICE_NAME): str,
        vol.Required(CONF_HOST): str,
        vol.Required(CONF_PORT, default=DEFAULT_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Required(CONF_POLL_INTERVAL, default=DEFAULT_POLL_INTERVAL_MS): vol.Coerce(int),
    }
)

_SOURCE_LABELS = {
    SOURCE_ALIAS: "Toyota",
    SOURCE_STANDARD: "OBD-II",
    SOURCE_COMMUNITY: "PriusChat",
}
_SOURCE_ORDER = (SOURCE_ALIAS, SOURCE_STANDARD, SOURCE_COMMUNITY)


def default_signal_selection(registry: PidRegistry) -> list[str]:
    """Default signals plus every Toyota alias signal."""
    defaults = [signal_id for signal_id in DEFAULT_SIGNALS if signal_id in registry]
    for signal_id in registry:
        signal = registry.get(signal_id)
        if signal is not None and signal.source == SOURCE_ALIAS:
            defaults.append(signal_id)
    return defaults


def build_signal_options(registry: PidRegistry) -> list[SelectOptionDict]:
    """Selector options for every registry signal, aliases first."""
    options: list[SelectOptionDict] = []
    for source in _SOURCE_ORDER:
        for signal_id in registry:
            signal = registry.get(signal_id)
            if signal is None or signal.source != source:
                continue
            label = f"{_SOURCE_LABELS[source]}: {signal.name or signal_id}"
            if signal.unit:
                label = f"{label} ({signal.unit})"
            if source == SOURCE_COMMUNITY:
                label = f"{label} [{signal.tx_header} {signal.request}]"
            options.append(SelectOptionDict(value=signal_id, label=label))
    return options


def _signals_schema(
    registry: PidRegistry, defaults: list[str], extra: dict[Any, Any] | None = None
) -> vol.Schema:
    schema_dict: dict[Any, Any] = dict(extra or {})
    schema_dict[vol.Required(CONF_SELECTED_SIGNALS, default=defaults)] = SelectSelector(
        SelectSelectorConfig(
            options=build_signal_options(registry),
            multiple=True,
            mode=SelectSelectorMode.DROPDOWN,
        )
    )
    return vol.Schema(schema_dict)


class HybridObdConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Handle config flow for Hybrid OBD."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(
        config_entry: config_entries.ConfigEntry,
    ) -> "HybridObdOptionsFlow":
        return HybridObdOptionsFlow(config_entry)

    def __init__(self) -> None:
        self._device_name = DEFAULT_DEVICE_NAME
        self._host = ""
        self._port = DEFAULT_PORT
        self._poll_interval_ms = DEFAULT_POLL_INTERVAL_MS
        self._registry: PidRegistry | None = None

    async def _async_get_registry(self) -> PidRegistry:
        if self._registry is None:
            self._registry = await self.hass.async_add_executor_job(build_default_registry)
        return self._registry

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        errors: dict[str, str] = {}
        if user_input is not None:
            host = str(user_input[CONF_HOST]).strip()
            if not host:
                errors[CONF_HOST] = "invalid_host"
            else:
                self._device_name = user_input[CONF_DEVICE_NAME]
                self._host = host
                self._port = int(user_input[CONF_PORT])
                self._poll_interval_ms = clamp_poll_interval(user_input[CONF_POLL_INTERVAL])

                await self.async_set_unique_id(f"{self._host}:{self._port}")
                self._abort_if_unique_id_configured()
                return await self.async_step_select_signals()

        return self.async_show_form(
            step_id="user",
            data_schema=STEP_USER_SCHEMA,
            errors=errors,
        )

    async def async_step_select_signals(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        registry = await self._async_get_registry()

        if user_input is not None:
            selected = normalize_selected_signals(
                {CONF_SELECTED_SIGNALS: user_input.get(CONF_SELECTED_SIGNALS, [])},
                registry,
            )
            return self.async_create_entry(
                title=self._device_name,
                data={
                    CONF_DEVICE_NAME: self._device_name,
                    CONF_HOST: self._host,
                    CONF_PORT: self._port,
                    CONF_POLL_INTERVAL: self._poll_interval_ms,
                    CONF_SELECTED_SIGNALS: selected,
                },
            )

        return self.async_show_form(
            step_id="select_signals",
            data_schema=_signals_schema(registry, default_signal_selection(registry)),
            description_placeholders={"signal_count": str(len(registry))},
        )


class HybridObdOptionsFlow(config_entries.OptionsFlow):
    """Change polling interval and signals of an existing entry."""

    def __init__(self, config_entry: config_entries.ConfigEntry) -> None:
        self._config_entry = config_entry
        self._registry: PidRegistry | None = None

    async def _async_get_registry(self) -> PidRegistry:
        if self._registry is None:
            self._registry = await self.hass.async_add_executor_job(build_default_registry)
        return self._registry

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        registry = await self._async_get_registry()

        if user_input is not None:
            new_data = {
                **self._config_entry.data,
                CONF_POLL_INTERVAL: clamp_poll_interval(user_input.get(CONF_POLL_INTERVAL)),
                CONF_SELECTED_SIGNALS: normalize_selected_signals(
                    {CONF_SELECTED_SIGNALS: user_input.get(CONF_SELECTED_SIGNALS, [])},
                    registry,
                ),
            }
            self.hass.config_entries.async_update_entry(self._config_entry, data=new_data)
            await self.hass.config_entries.async_reload(self._config_entry.entry_id)
            return self.async_create_entry(title="", data={})

        current = normalize_selected_signals(self._config_entry.data, registry)
        interval = clamp_poll_interval(
            self._config_entry.data.get(CONF_POLL_INTERVAL, DEFAULT_POLL_INTERVAL_MS)
        )
        schema = _signals_schema(
            registry,
            current or default_signal_selection(registry),
            {vol.Required(CONF_POLL_INTERVAL, default=interval): vol.Coerce(int)},
        )
        return self.async_show_form(step_id="init", data_schema=schema)
