import attrs
import numpy as np
import pandas as pd
from typing import Any, Mapping, Optional

from .roi_utils import parse_number, parse_optional_number, clamp


@attrs.define(frozen=True)
class PanelConfig:
    """One simulated rooftop layout from the provider's per-building simulation."""
    panel_count: int = 0
    yearly_energy_kwh: float = 0.0  # kWh/yr, DC


ConfigTable = list[PanelConfig]


@attrs.define(frozen=True)
class CostTier:
    """
    One marginal pricing band of the installed-cost schedule.
    up_to_kwp is the upper edge of the band; None marks the open-ended top band.
    """
    up_to_kwp: Optional[float]
    cost_per_kwp: float


FLAT_COST_TIERS = (CostTier(up_to_kwp=None, cost_per_kwp=1200.0),)

# Sliding scale used by the printed report: first 100 kWp at 1500, next 150 kWp at 1300, remainder at 1100
REPORT_COST_TIERS = (CostTier(up_to_kwp=100.0, cost_per_kwp=1500.0),
                     CostTier(up_to_kwp=250.0, cost_per_kwp=1300.0),
                     CostTier(up_to_kwp=None, cost_per_kwp=1100.0))

COST_SCHEDULES = {'flat': FLAT_COST_TIERS,
                  'report': REPORT_COST_TIERS}


def _tiers_converter(tiers) -> tuple:
    return tuple(tiers)


@attrs.define(frozen=True)
class FinancialConstants:
    """
    Operator-tunable assumptions shared by every calculation in a session.

    Cost:
    - Installed cost per kWp, as marginal tiers (flat by default)
    - Battery cost per kWh of storage
    - Diverter one-off cost

    Incentives:
    - Grant rate, capped at grant_cap
    - Capital allowance rate (ACA), applied only to savings aggregates

    Financing:
    - Loan term (years); the APR comes with the user inputs
    - Cap on the simple interest surcharge added to the displayed net cost

    Energy:
    - Daily yield per panel at the reference panel wattage
    - Annual panel degradation, annual retail price escalation
    - System horizon (years), grid CO2 intensity (t/kWh)
    """
    # Incentives
    allowance_rate: float = 0.125
    grant_rate: float = 0.30
    grant_cap: float = 162000.0

    # Financing
    loan_term_years: int = 7
    interest_surcharge_cap: float = 0.5

    # Price and production trajectory
    escalation_rate: float = 0.05
    degradation_rate: float = 0.005
    system_years: int = 25

    # Energy
    co2_tonnes_per_kwh: float = 0.0004
    daily_yield_per_panel_kwh: float = 1.85  # kWh/day at panel_wattage
    panel_wattage: float = 400.0  # W
    days_per_year: float = 365.4

    # Cost model
    cost_tiers: tuple = attrs.field(default=FLAT_COST_TIERS, converter=_tiers_converter)
    battery_cost_per_kwh: float = 500.0
    diverter_cost: float = 550.0

    def __attrs_post_init__(self):
        assert self.system_years > 0, "System horizon must be at least one year"
        assert len(self.cost_tiers) > 0, "At least one cost tier is required"
        assert self.cost_tiers[-1].up_to_kwp is None, "The last cost tier must be open-ended"

    @property
    def loan_years_counted(self) -> int:
        """Loan repayments only fall inside the evaluation window."""
        return min(self.system_years, self.loan_term_years)

    def annual_production_kwh(self, panel_count: int) -> float:
        return panel_count * self.daily_yield_per_panel_kwh * self.days_per_year


@attrs.define(frozen=True)
class InputDefaults:
    """Fallbacks used when a user-facing field is blank or malformed."""
    retail_rate: float = 0.35  # currency/kWh
    export_fraction: float = 0.40
    feed_in_tariff: float = 0.21  # currency/kWh
    loan_apr_fraction: float = 0.07
    panel_count: int = 0
    max_panel_count: int = 10000
    currency: str = '€'


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on', 'checked')
    return bool(value)


@attrs.define(frozen=True)
class RoiInputs:
    """
    A single calculation request, already validated.
    Build from raw user fields with RoiInputs.from_raw so that every value is finite and in range.
    """
    panel_count: int = 0
    include_grant: bool = False
    include_aca: bool = False
    include_loan: bool = False
    export_fraction: float = 0.40
    retail_rate: float = 0.35
    feed_in_tariff: float = 0.21
    loan_apr_fraction: float = 0.0
    monthly_bill: float = 0.0

    # Add-ons priced by the cost model
    battery_kwh: float = 0.0
    include_diverter: bool = True

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], defaults: InputDefaults | None = None) -> 'RoiInputs':
        """
        Read user-entered fields, clamping out-of-range numbers and replacing blanks or junk with defaults.

        Expected keys (all optional):
            panel_count, include_grant, include_aca, include_loan,
            export_percent (0-100), retail_rate, feed_in_tariff,
            loan_apr (fraction, only used with include_loan), monthly_bill,
            battery_kwh, include_diverter
        """
        defaults = defaults or InputDefaults()
        include_loan = _as_flag(raw.get('include_loan', False))

        if _is_blank(raw.get('panel_count')):
            panel_count = defaults.panel_count
        else:
            panel_count = int(clamp(parse_number(raw.get('panel_count')), 0, defaults.max_panel_count))

        if _is_blank(raw.get('export_percent')):
            export_fraction = defaults.export_fraction
        else:
            export_fraction = clamp(parse_number(raw.get('export_percent')) / 100.0, 0.0, 1.0)

        retail_rate = parse_number(raw.get('retail_rate'))
        if retail_rate <= 0:
            retail_rate = defaults.retail_rate

        if _is_blank(raw.get('feed_in_tariff')):
            feed_in_tariff = defaults.feed_in_tariff
        else:
            feed_in_tariff = max(0.0, parse_number(raw.get('feed_in_tariff')))

        # An explicit 0 is a valid interest-free loan; only blank or junk takes the default
        loan_apr = parse_optional_number(raw.get('loan_apr'))
        loan_apr = defaults.loan_apr_fraction if loan_apr is None else max(0.0, loan_apr)

        return cls(
            panel_count=panel_count,
            include_grant=_as_flag(raw.get('include_grant', False)),
            include_aca=_as_flag(raw.get('include_aca', False)),
            include_loan=include_loan,
            export_fraction=export_fraction,
            retail_rate=retail_rate,
            feed_in_tariff=feed_in_tariff,
            loan_apr_fraction=loan_apr if include_loan else 0.0,
            monthly_bill=max(0.0, parse_number(raw.get('monthly_bill'))),
            battery_kwh=max(0.0, parse_number(raw.get('battery_kwh'))),
            include_diverter=_as_flag(raw.get('include_diverter', True)),
        )


ANNUAL_CASH_FLOW_COLUMNS = ['production_kwh', 'retail_rate', 'benefit', 'loan_repayment',
                            'net_cash_flow', 'cumulative_cash_flow']


@attrs.define
class ResultFigures:
    """Headline figures and the annual cash-flow series for one calculation."""
    # Cost
    install_cost: float = 0.0
    grant: float = 0.0
    allowance: float = 0.0
    principal: float = 0.0
    net_install_cost: float = 0.0

    # Financing
    monthly_loan_payment: float = 0.0
    yearly_loan_cost: float = 0.0
    loan_cost_25: float = 0.0

    # Energy
    installed_kwp: float = 0.0
    yearly_energy_kwh: float = 0.0  # headline figure from the config table
    co2_tonnes: float = 0.0

    # Savings and returns
    monthly_net_cash_flow: float = 0.0
    savings_year0: float = 0.0
    total_benefit_25: float = 0.0
    total_savings: float = 0.0
    payback_years: float = 0.0
    roi_percent: float = 0.0
    break_even_year: Optional[int] = None

    annual_cash_flows: pd.DataFrame | None = None

    @staticmethod
    def get_zero_cash_flow_df(system_years: int) -> pd.DataFrame:
        df = pd.DataFrame(0.0, index=range(system_years), columns=ANNUAL_CASH_FLOW_COLUMNS)
        df.index.name = 'year'
        return df

    @property
    def annual_savings(self) -> pd.Series:
        return self.annual_cash_flows['net_cash_flow']

    @property
    def cumulative_cash_flow(self) -> pd.Series:
        return self.annual_cash_flows['cumulative_cash_flow']

    def headline(self) -> pd.Series:
        """Scalar figures as a Series, for tabulating several calculations side by side."""
        values = attrs.asdict(self, filter=lambda attribute, value: attribute.name != 'annual_cash_flows')
        if values['break_even_year'] is None:
            values['break_even_year'] = np.nan
        return pd.Series(values)
