import logging
import os
import pathlib
import pandas as pd
from typing import Any, Iterable, Mapping

from ..roi_interface import PanelConfig, ConfigTable
from ..roi_utils import parse_number

logger = logging.getLogger(__name__)

PANEL_COUNT_KEYS = ('panelsCount', 'panels', 'Number of Panels', 'Panels', 'panel_count')
YEARLY_ENERGY_KEYS = ('yearlyEnergyDcKwh', 'yearlyEnergy', 'Annual Energy Production',
                      'Annual Energy Production (kWh)', 'yearly_energy_kwh')

CONFIG_TABLE_COLUMNS = ['panel_count', 'yearly_energy_kwh']


def _first_positive(record: Mapping[str, Any], keys: Iterable[str]) -> float:
    for key in keys:
        value = parse_number(record.get(key))
        if value > 0:
            return value
    return 0.0


def config_table_from_records(records: Iterable[Mapping[str, Any]]) -> ConfigTable:
    """
    Build a clean ConfigTable from loosely-typed configuration records.

    Records may use any of the provider or on-page key spellings, and values may be strings with
    thousands separators or units. Records without a positive panel count are dropped; a
    non-numeric or negative energy figure becomes 0. The result is sorted by panel count, keeping the
    first-seen record first among duplicates.
    """
    table = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        panel_count = int(_first_positive(record, PANEL_COUNT_KEYS))
        yearly_energy_kwh = _first_positive(record, YEARLY_ENERGY_KEYS)
        if panel_count <= 0:
            logger.debug(f"Dropping config record without a panel count: {dict(record)}")
            continue
        table.append(PanelConfig(panel_count=panel_count, yearly_energy_kwh=yearly_energy_kwh))
    return sorted(table, key=lambda config: config.panel_count)


def config_table_from_building_insights(payload: Mapping[str, Any]) -> ConfigTable:
    """Extract the panel configurations from a rooftop-provider building-insights response."""
    solar_potential = payload.get('solarPotential') or {}
    configs = solar_potential.get('solarPanelConfigs') or []
    if not configs:
        logger.info("Building insights payload has no solarPanelConfigs")
    return config_table_from_records(configs)


def config_table_from_frame(df: pd.DataFrame) -> ConfigTable:
    numeric = df[CONFIG_TABLE_COLUMNS].apply(pd.to_numeric, errors='coerce').fillna(0.0).clip(lower=0.0)
    return config_table_from_records(numeric.to_dict(orient='records'))


def config_table_to_frame(table: ConfigTable) -> pd.DataFrame:
    return pd.DataFrame([[c.panel_count, c.yearly_energy_kwh] for c in table], columns=CONFIG_TABLE_COLUMNS)


def read_config_table_csv(fname: os.PathLike) -> ConfigTable:
    """Load a cached config table written by write_config_table_csv."""
    df = pd.read_csv(pathlib.Path(fname))
    missing = set(CONFIG_TABLE_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Config table file is missing columns: {sorted(missing)}")
    return config_table_from_frame(df)


def write_config_table_csv(table: ConfigTable, fname: os.PathLike) -> None:
    config_table_to_frame(table).to_csv(pathlib.Path(fname), index=False)


def estimate_yearly_energy(panel_count: int, config_table: ConfigTable) -> float:
    """
    Annual yield (kWh) for the requested panel count.

    Uses the exact tabulated configuration when one exists (first match wins), otherwise the
    configuration with the largest panel count below the request. Requests below every tabulated
    count, or an empty table, give 0.
    """
    for config in config_table:
        if config.panel_count == panel_count:
            return config.yearly_energy_kwh

    closest_lower = None
    for config in config_table:
        if config.panel_count <= panel_count:
            if closest_lower is None or config.panel_count > closest_lower.panel_count:
                closest_lower = config
    if closest_lower is None:
        return 0.0
    return closest_lower.yearly_energy_kwh
