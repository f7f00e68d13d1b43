import math
from typing import Any

from ..roi_interface import RoiInputs, ResultFigures


def format_currency(x: float, currency: str = '€', decimals: int = 0) -> str:
    """Currency with thousands separators; non-finite values show as zero."""
    if x is None or not math.isfinite(x):
        x = 0.0
    return f"{currency}{x:,.{decimals}f}"


def format_number(x: float, digits: int = 2) -> str:
    """Number with thousands separators and at most `digits` decimals, trailing zeros dropped."""
    if x is None or not math.isfinite(x):
        x = 0.0
    text = f"{x:,.{digits}f}"
    if digits > 0:
        text = text.rstrip('0').rstrip('.')
    return text


def format_signed_currency(x: float, currency: str = '€') -> tuple[str, str]:
    """Signed amount and the colour used to show it; negative cash flow is shown in red."""
    if x < 0:
        return '-' + format_currency(abs(x), currency), 'red'
    return '+' + format_currency(x, currency), 'black'


def format_key_figures(inputs: RoiInputs, figures: ResultFigures, currency: str = '€',
                       escalation_rate: float | None = None) -> dict[str, str]:
    """Display strings for the results panel, keyed by the page's field ids."""
    net_income, net_income_color = format_signed_currency(figures.monthly_net_cash_flow, currency)
    display = {
        'installationCost': format_currency(figures.install_cost, currency),
        'installCost': format_currency(figures.install_cost, currency),
        'grant': format_currency(figures.grant, currency),
        'panelCount': format_number(inputs.panel_count, 0),
        'yearlyEnergy': format_number(figures.yearly_energy_kwh, 0) + ' kWh',
        'monthlyBill': format_currency(inputs.monthly_bill, currency),
        'netIncome': net_income,
        'netIncomeColor': net_income_color,
        'exportRate': f"{inputs.export_fraction * 100:.0f}%",
        'electricityRate': format_currency(inputs.retail_rate, currency, decimals=2),
        'netCost': format_currency(figures.net_install_cost, currency),
        'totalSavings': format_currency(figures.total_savings, currency),
        'roi': format_number(figures.roi_percent, 1) + '%',
        'co2Reduction': format_number(figures.co2_tonnes, 1) + ' t',
        'annualSavings': format_currency(figures.savings_year0, currency),
        'paybackPeriod': (format_number(figures.payback_years, 2) + ' years') if figures.payback_years > 0 else 'N/A',
    }
    if escalation_rate is not None:
        display['annualIncrease'] = f"{escalation_rate * 100:.1f}"
    return display


def break_even_chart_data(figures: ResultFigures, label: str | None = None) -> dict[str, Any]:
    """Labels and cumulative values for the break-even chart."""
    cumulative = figures.cumulative_cash_flow
    return {
        'label': label,
        'labels': [f"Year {year}" for year in cumulative.index],
        'values': [float(v) for v in cumulative.values],
        'break_even_year': figures.break_even_year,
    }


def build_report_payload(inputs: RoiInputs, figures: ResultFigures, currency: str = '€') -> dict[str, Any]:
    """
    Flat, JSON-ready record of one calculation for the report generator.
    Numbers are rounded to whole currency units (rates and years to two decimals).
    """
    return {
        'currency': currency,
        'panel_count': inputs.panel_count,
        'include_grant': inputs.include_grant,
        'include_aca': inputs.include_aca,
        'include_loan': inputs.include_loan,
        'export_percent': round(inputs.export_fraction * 100, 2),
        'retail_rate': round(inputs.retail_rate, 4),
        'feed_in_tariff': round(inputs.feed_in_tariff, 4),
        'loan_apr_percent': round(inputs.loan_apr_fraction * 100, 2),
        'monthly_bill': round(inputs.monthly_bill),
        'installed_kwp': round(figures.installed_kwp, 2),
        'yearly_energy_kwh': round(figures.yearly_energy_kwh),
        'install_cost': round(figures.install_cost),
        'grant': round(figures.grant),
        'allowance': round(figures.allowance),
        'net_install_cost': round(figures.net_install_cost),
        'monthly_loan_payment': round(figures.monthly_loan_payment),
        'monthly_net_cash_flow': round(figures.monthly_net_cash_flow),
        'savings_year0': round(figures.savings_year0),
        'total_savings': round(figures.total_savings),
        'payback_years': round(figures.payback_years, 2),
        'roi_percent': round(figures.roi_percent, 2),
        'co2_tonnes': round(figures.co2_tonnes, 2),
        'break_even_year': figures.break_even_year,
        'annual_savings': [round(float(v)) for v in figures.annual_savings.values],
        'cumulative_cash_flow': [round(float(v)) for v in figures.cumulative_cash_flow.values],
    }
