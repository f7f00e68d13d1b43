import logging
import attrs
import numpy as np
import pandas as pd

from .roi_interface import RoiInputs, FinancialConstants, ResultFigures, ConfigTable
from .roi_utils import (MONTHS_PER_YEAR, annuity_payment, tiered_installed_cost, safe_divide, finite_or_zero)
from .energy.energy_utils import estimate_yearly_energy

logger = logging.getLogger(__name__)


def installation_cost(inputs: RoiInputs, constants: FinancialConstants) -> float:
    """Panels priced per installed kWp, plus the battery and diverter add-ons."""
    installed_kwp = inputs.panel_count * constants.panel_wattage / 1000.0
    panel_cost = tiered_installed_cost(installed_kwp, constants.cost_tiers)
    battery_cost = max(0.0, inputs.battery_kwh) * constants.battery_cost_per_kwh
    diverter_cost = constants.diverter_cost if inputs.include_diverter else 0.0
    return panel_cost + battery_cost + diverter_cost


def monthly_loan_payment(principal: float, apr: float, term_years: int) -> float:
    n = term_years * MONTHS_PER_YEAR
    return principal * annuity_payment(r=apr / MONTHS_PER_YEAR, n=n)


def build_annual_cash_flows(inputs: RoiInputs,
                            constants: FinancialConstants,
                            yearly_loan_cost: float,
                            upfront_outlay: float,
                            allowance: float) -> pd.DataFrame:
    """
    Year-by-year production, benefit and net cash flow over the system horizon.

    Production degrades and the retail price escalates geometrically; the feed-in tariff is held flat.
    Loan repayments only appear during the loan term. The cumulative column starts from the upfront
    outlay (plus any allowance) so it can be read directly as the break-even curve.
    """
    years = np.arange(constants.system_years)
    cash_flows = ResultFigures.get_zero_cash_flow_df(constants.system_years)

    production = constants.annual_production_kwh(inputs.panel_count) * (1.0 - constants.degradation_rate) ** years
    retail = inputs.retail_rate * (1.0 + constants.escalation_rate) ** years
    benefit = (production * (1.0 - inputs.export_fraction) * retail
               + production * inputs.export_fraction * inputs.feed_in_tariff)
    loan_repayment = np.where(years < constants.loan_years_counted, yearly_loan_cost, 0.0) if inputs.include_loan \
        else np.zeros(len(years))

    net_cash_flow = benefit - loan_repayment
    cumulative = np.cumsum(net_cash_flow) - upfront_outlay + allowance

    cash_flows['production_kwh'] = production
    cash_flows['retail_rate'] = retail
    cash_flows['benefit'] = benefit
    cash_flows['loan_repayment'] = loan_repayment
    cash_flows['net_cash_flow'] = net_cash_flow
    cash_flows['cumulative_cash_flow'] = cumulative
    return cash_flows


def _break_even_year(cumulative: pd.Series) -> int | None:
    reached = cumulative[cumulative >= 0]
    if reached.empty:
        return None
    return int(reached.index[0])


def compute_figures(inputs: RoiInputs, yearly_energy_kwh: float, constants: FinancialConstants) -> ResultFigures:
    """
    Compute the headline figures and annual cash flows for one request.

    Pure and deterministic: no I/O, no state kept between calls. Every ratio is guarded so that a
    degenerate denominator gives 0 rather than NaN/inf.

    Args:
        inputs: Validated user request
        yearly_energy_kwh: Tabulated annual yield for the requested panel count (headline figure)
        constants: Operator assumptions for the session

    Returns:
        ResultFigures with the annual_cash_flows frame covering constants.system_years
    """
    panel_count = max(0, int(inputs.panel_count))
    if panel_count != inputs.panel_count:
        inputs = attrs.evolve(inputs, panel_count=panel_count)
    installed_kwp = panel_count * constants.panel_wattage / 1000.0

    # Cost, grant and allowance
    base_cost = installation_cost(inputs, constants)
    grant = min(base_cost * constants.grant_rate, constants.grant_cap) if inputs.include_grant else 0.0
    grant = max(0.0, grant)
    allowance = min(base_cost - grant, base_cost * constants.allowance_rate) if inputs.include_aca else 0.0
    allowance = max(0.0, allowance)

    # Financing
    principal = max(0.0, base_cost - grant)
    apr = max(0.0, inputs.loan_apr_fraction)
    if inputs.include_loan:
        monthly_payment = monthly_loan_payment(principal, apr, constants.loan_term_years)
        interest_surcharge = min(apr * constants.loan_term_years, constants.interest_surcharge_cap)
    else:
        monthly_payment = 0.0
        interest_surcharge = 0.0
    yearly_loan_cost = monthly_payment * MONTHS_PER_YEAR
    net_install_cost = principal + principal * interest_surcharge
    loan_cost_25 = yearly_loan_cost * constants.loan_years_counted if inputs.include_loan else principal

    figures = ResultFigures(
        install_cost=base_cost,
        grant=grant,
        allowance=allowance,
        principal=principal,
        net_install_cost=net_install_cost,
        monthly_loan_payment=monthly_payment,
        yearly_loan_cost=yearly_loan_cost,
        loan_cost_25=loan_cost_25,
        installed_kwp=installed_kwp,
        yearly_energy_kwh=max(0.0, finite_or_zero(yearly_energy_kwh)) if panel_count > 0 else 0.0,
    )

    if panel_count == 0:
        # No generating system: only the fixed add-on costs remain
        figures.annual_cash_flows = ResultFigures.get_zero_cash_flow_df(constants.system_years)
        return figures

    # Year-0 savings, with self-consumption capped by the usage implied by the current bill
    aca_bump = allowance if inputs.include_aca else 0.0
    current_usage_kwh = safe_divide(inputs.monthly_bill * MONTHS_PER_YEAR, inputs.retail_rate)
    annual_solar_kwh = constants.annual_production_kwh(panel_count)
    self_consumed_kwh = min(annual_solar_kwh * (1.0 - inputs.export_fraction), current_usage_kwh)
    exported_kwh = annual_solar_kwh - self_consumed_kwh
    savings_year0 = (self_consumed_kwh * inputs.retail_rate
                     + exported_kwh * inputs.feed_in_tariff
                     - (yearly_loan_cost if inputs.include_loan else 0.0)
                     + aca_bump)

    # Horizon series
    upfront_outlay = 0.0 if inputs.include_loan else principal
    cash_flows = build_annual_cash_flows(inputs, constants,
                                         yearly_loan_cost=yearly_loan_cost,
                                         upfront_outlay=upfront_outlay,
                                         allowance=aca_bump)
    total_benefit_25 = float(cash_flows['benefit'].sum())
    total_savings = total_benefit_25 - loan_cost_25 + aca_bump

    roi_cost = loan_cost_25 if inputs.include_loan else principal
    roi_percent = safe_divide(total_benefit_25 - roi_cost, roi_cost) * 100.0 if roi_cost > 0 else 0.0

    investment = loan_cost_25 if inputs.include_loan else net_install_cost
    payback_years = safe_divide(investment, savings_year0) if savings_year0 > 0 else 0.0

    co2_tonnes = constants.co2_tonnes_per_kwh * float(cash_flows['production_kwh'].sum())

    figures.savings_year0 = finite_or_zero(savings_year0)
    figures.monthly_net_cash_flow = finite_or_zero(savings_year0 / MONTHS_PER_YEAR - inputs.monthly_bill)
    figures.total_benefit_25 = finite_or_zero(total_benefit_25)
    figures.total_savings = finite_or_zero(total_savings)
    figures.roi_percent = finite_or_zero(roi_percent)
    figures.payback_years = max(0.0, finite_or_zero(payback_years))
    figures.co2_tonnes = finite_or_zero(co2_tonnes)
    figures.break_even_year = _break_even_year(cash_flows['cumulative_cash_flow'])
    figures.annual_cash_flows = cash_flows
    return figures


class FinanceEngine:
    """
    Runs the estimator and the finance calculation against one session's constants.
    Holds no per-request state, so one engine can serve any number of concurrent requests.
    """

    def __init__(self, constants: FinancialConstants | None = None):
        self.constants = constants or FinancialConstants()

    def calculate(self, inputs: RoiInputs, config_table: ConfigTable) -> ResultFigures:
        if inputs.panel_count < 0:
            inputs = attrs.evolve(inputs, panel_count=0)
        yearly_energy_kwh = estimate_yearly_energy(inputs.panel_count, config_table)
        if yearly_energy_kwh == 0 and inputs.panel_count > 0:
            logger.debug(f"No tabulated energy at or below {inputs.panel_count} panels")
        figures = compute_figures(inputs, yearly_energy_kwh, self.constants)
        logger.debug(f"{inputs.panel_count} panels: cost {figures.install_cost:.0f}, "
                     f"payback {figures.payback_years:.2f} yr, ROI {figures.roi_percent:.1f}%")
        return figures
