import logging
import math
import os
import attrs
import yaml
from typing import Any, Mapping, Optional

from ..roi_interface import FinancialConstants, InputDefaults, CostTier, COST_SCHEDULES

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = 'settings.yaml'

# key: (default, min, max); percent-valued settings are stored as percents
NUMERIC_SETTINGS = {
    'default_electricity_rate': (0.35, 0.0, 10.0),
    'default_export_rate': (40.0, 0.0, 100.0),
    'default_feed_in_tariff': (0.21, 0.0, 10.0),
    'default_loan_apr': (7.0, 0.0, 100.0),
    'loan_term': (7, 1, 30),
    'annual_price_increase': (5.0, 0.0, 50.0),
    'seai_grant_rate': (30.0, 0.0, 100.0),
    'seai_grant_cap': (162000.0, 0.0, 1000000.0),
    'aca_rate': (12.5, 0.0, 100.0),
    'system_cost_ratio': (1200.0, 0.0, 10000.0),
    'battery_cost_per_kwh': (500.0, 0.0, 10000.0),
    'diverter_cost': (550.0, 0.0, 100000.0),
    'panel_wattage': (400.0, 1.0, 1000.0),
    'daily_yield_per_panel_kwh': (1.85, 0.0, 20.0),
    'panel_degradation': (0.5, 0.0, 10.0),
    'co2_tonnes_per_kwh': (0.0004, 0.0, 0.01),
    'system_years': (25, 1, 50),
}
INTEGER_SETTINGS = {'loan_term', 'system_years'}

CHOICE_SETTINGS = {
    'currency': ('€', ('€', '$', '£')),
    'country': ('Ireland', ('Ireland', 'UK', 'United States', 'Canada')),
}


@attrs.define(frozen=True)
class Settings:
    """Validated operator settings, split into engine constants and user-input defaults."""
    constants: FinancialConstants
    input_defaults: InputDefaults
    country: str = 'Ireland'
    cost_schedule: str = 'flat'


def load_settings_yaml(settings_file: Optional[str] = None) -> dict:
    """Read the raw settings mapping; relative paths resolve against this package directory."""
    settings_file = settings_file or DEFAULT_SETTINGS_FILE
    if os.path.isabs(settings_file):
        yaml_path = settings_file
    else:
        yaml_path = os.path.join(os.path.dirname(__file__), settings_file)

    with open(yaml_path, 'r') as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Settings file {yaml_path} must contain a mapping, got {type(raw).__name__}")
    return dict(raw)


def _coerce_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def sanitize_settings(raw: Mapping[str, Any]) -> dict:
    """
    Range-check every known setting, replacing missing values silently and invalid ones with a warning.
    Unknown keys are ignored.
    """
    clean = {}
    for key, (default, lo, hi) in NUMERIC_SETTINGS.items():
        if key not in raw or raw[key] is None:
            value = default
        else:
            value = _coerce_number(raw[key])
            if value is None or not (lo <= value <= hi):
                logger.warning(f"Setting {key}={raw[key]!r} is outside [{lo}, {hi}]; using default {default}")
                value = default
        clean[key] = int(value) if key in INTEGER_SETTINGS else float(value)

    for key, (default, allowed) in CHOICE_SETTINGS.items():
        value = raw.get(key, default)
        if value not in allowed:
            logger.warning(f"Setting {key}={value!r} is not one of {allowed}; using default {default!r}")
            value = default
        clean[key] = value

    cost_schedule = raw.get('cost_schedule', 'flat')
    if cost_schedule not in COST_SCHEDULES:
        raise ValueError(f"Unknown cost_schedule {cost_schedule!r}; expected one of {sorted(COST_SCHEDULES)}")
    clean['cost_schedule'] = cost_schedule
    return clean


def build_settings(clean: Mapping[str, Any]) -> Settings:
    if clean['cost_schedule'] == 'flat':
        cost_tiers = (CostTier(up_to_kwp=None, cost_per_kwp=clean['system_cost_ratio']),)
    else:
        cost_tiers = COST_SCHEDULES[clean['cost_schedule']]

    constants = FinancialConstants(
        allowance_rate=clean['aca_rate'] / 100.0,
        grant_rate=clean['seai_grant_rate'] / 100.0,
        grant_cap=clean['seai_grant_cap'],
        loan_term_years=clean['loan_term'],
        escalation_rate=clean['annual_price_increase'] / 100.0,
        degradation_rate=clean['panel_degradation'] / 100.0,
        system_years=clean['system_years'],
        co2_tonnes_per_kwh=clean['co2_tonnes_per_kwh'],
        daily_yield_per_panel_kwh=clean['daily_yield_per_panel_kwh'],
        panel_wattage=clean['panel_wattage'],
        cost_tiers=cost_tiers,
        battery_cost_per_kwh=clean['battery_cost_per_kwh'],
        diverter_cost=clean['diverter_cost'],
    )

    input_defaults = InputDefaults(
        retail_rate=clean['default_electricity_rate'],
        export_fraction=clean['default_export_rate'] / 100.0,
        feed_in_tariff=clean['default_feed_in_tariff'],
        loan_apr_fraction=clean['default_loan_apr'] / 100.0,
        currency=clean['currency'],
    )

    return Settings(constants=constants,
                    input_defaults=input_defaults,
                    country=clean['country'],
                    cost_schedule=clean['cost_schedule'])


def load_settings(settings_file: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> Settings:
    """
    Load operator settings once per calculation session.

    Args:
        settings_file: YAML file path; defaults to the packaged settings.yaml
        overrides: Values taking precedence over the file, in the same units as the file

    Returns:
        Settings with validated FinancialConstants and InputDefaults
    """
    raw = load_settings_yaml(settings_file)
    if overrides:
        raw.update(overrides)
    settings = build_settings(sanitize_settings(raw))
    logger.info(f"Loaded settings from {settings_file or DEFAULT_SETTINGS_FILE} "
                f"(cost schedule: {settings.cost_schedule}, country: {settings.country})")
    return settings
