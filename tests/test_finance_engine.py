import math
import pytest
import numpy as np
import pandas as pd

from solarroi.roi_interface import FinancialConstants, REPORT_COST_TIERS, ResultFigures, RoiInputs
from solarroi.roi_utils import annuity_payment, annuity_present_value_factor
from solarroi.finance_engine import (compute_figures, installation_cost, monthly_loan_payment,
                                     build_annual_cash_flows, FinanceEngine)
from solarroi.energy.energy_utils import config_table_from_records
from tests.test_utils import sample_config_table, scenario_inputs, default_constants


class TestInstallationCost:

    def test_flat_rate_with_diverter(self):
        # 4 x 400 W = 1.6 kWp at 1200/kWp, plus the 550 diverter
        assert installation_cost(scenario_inputs(), FinancialConstants()) == pytest.approx(2470.0)

    def test_battery_and_no_diverter(self):
        inputs = scenario_inputs(battery_kwh=5.0, include_diverter=False)
        assert installation_cost(inputs, FinancialConstants()) == pytest.approx(1920.0 + 2500.0)

    def test_report_tiers_are_marginal(self):
        constants = default_constants(cost_tiers=REPORT_COST_TIERS)
        # 750 panels = 300 kWp: 100 @ 1500 + 150 @ 1300 + 50 @ 1100
        inputs = scenario_inputs(panel_count=750, include_diverter=False)
        assert installation_cost(inputs, constants) == pytest.approx(400000.0)

        inputs = scenario_inputs(panel_count=4, include_diverter=False)
        assert installation_cost(inputs, constants) == pytest.approx(1.6 * 1500)


class TestLoanAmortization:

    def test_annuity_identity(self):
        principal = 5000.0
        r = 0.07 / 12
        payment = monthly_loan_payment(principal, apr=0.07, term_years=7)
        assert payment * ((1 - (1 + r) ** -84) / r) == pytest.approx(principal, rel=1e-12)
        assert payment * annuity_present_value_factor(r, 84) == pytest.approx(principal, rel=1e-12)

    def test_zero_apr_is_straight_line(self):
        assert monthly_loan_payment(8400.0, apr=0.0, term_years=7) == pytest.approx(100.0)
        assert annuity_payment(0.0, 84) == pytest.approx(1 / 84)

    def test_zero_term_has_no_payment(self):
        assert annuity_payment(0.01, 0) == 0.0


class TestComputeFigures:
    constants = FinancialConstants()

    def test_reference_scenario(self):
        inputs = scenario_inputs()
        figures = compute_figures(inputs, 1480.0, self.constants)

        assert figures.install_cost == pytest.approx(2470.0)
        assert figures.grant == pytest.approx(2470.0 * 0.3)
        assert figures.grant <= figures.install_cost * 0.3 + 1e-9
        assert figures.principal == pytest.approx(1729.0)
        assert figures.net_install_cost == pytest.approx(1729.0)
        assert figures.net_install_cost >= 0
        assert figures.yearly_energy_kwh == 1480.0

        production = 4 * 1.85 * 365.4
        self_consumed = production * 0.6
        exported = production - self_consumed
        expected_savings = self_consumed * 0.35 + exported * 0.21
        assert figures.savings_year0 == pytest.approx(expected_savings)
        assert figures.monthly_net_cash_flow == pytest.approx(expected_savings / 12 - 100.0)
        assert figures.payback_years == pytest.approx(1729.0 / expected_savings)
        assert figures.payback_years >= 0
        assert figures.break_even_year == 2

    def test_self_consumption_capped_by_bill(self):
        # A 10/month bill at 0.35/kWh only covers ~343 kWh of own use; the rest is exported
        inputs = scenario_inputs(monthly_bill=10.0)
        figures = compute_figures(inputs, 1480.0, self.constants)
        usage = 10.0 * 12 / 0.35
        production = 4 * 1.85 * 365.4
        expected = usage * 0.35 + (production - usage) * 0.21
        assert figures.savings_year0 == pytest.approx(expected)

    def test_benefit_series(self):
        inputs = scenario_inputs()
        figures = compute_figures(inputs, 1480.0, self.constants)
        cash_flows = figures.annual_cash_flows

        assert len(cash_flows) == 25
        assert list(cash_flows.index) == list(range(25))
        years = np.arange(25)
        production = 4 * 1.85 * 365.4 * 0.995 ** years
        retail = 0.35 * 1.05 ** years
        benefit = production * 0.6 * retail + production * 0.4 * 0.21
        assert np.allclose(cash_flows['benefit'], benefit)
        assert figures.total_benefit_25 == pytest.approx(benefit.sum())
        assert figures.co2_tonnes == pytest.approx(0.0004 * production.sum())
        assert figures.total_savings == pytest.approx(benefit.sum() - 1729.0)
        assert figures.roi_percent == pytest.approx((benefit.sum() - 1729.0) / 1729.0 * 100)

    def test_loan_figures(self):
        inputs = scenario_inputs(include_loan=True, loan_apr_fraction=0.07)
        figures = compute_figures(inputs, 1480.0, self.constants)

        expected_monthly = 1729.0 * annuity_payment(0.07 / 12, 84)
        assert figures.monthly_loan_payment == pytest.approx(expected_monthly)
        assert figures.yearly_loan_cost == pytest.approx(expected_monthly * 12)
        assert figures.loan_cost_25 == pytest.approx(expected_monthly * 12 * 7)
        # Interest surcharge proxy: 7% x 7 years = 49%
        assert figures.net_install_cost == pytest.approx(1729.0 * 1.49)
        assert figures.payback_years == pytest.approx(figures.loan_cost_25 / figures.savings_year0)

        repayments = figures.annual_cash_flows['loan_repayment']
        assert (repayments.iloc[:7] > 0).all()
        assert (repayments.iloc[7:] == 0).all()

    def test_interest_surcharge_is_capped(self):
        inputs = scenario_inputs(include_loan=True, loan_apr_fraction=0.2)
        figures = compute_figures(inputs, 1480.0, self.constants)
        assert figures.net_install_cost == pytest.approx(1729.0 * 1.5)

    def test_zero_apr_loan(self):
        inputs = scenario_inputs(include_loan=True, loan_apr_fraction=0.0)
        figures = compute_figures(inputs, 1480.0, self.constants)
        assert figures.monthly_loan_payment == pytest.approx(1729.0 / 84)
        assert figures.net_install_cost == pytest.approx(1729.0)
        assert math.isfinite(figures.roi_percent)

    def test_allowance(self):
        inputs = scenario_inputs(include_aca=True)
        figures = compute_figures(inputs, 1480.0, self.constants)
        assert figures.allowance == pytest.approx(min(2470.0 - 741.0, 2470.0 * 0.125))
        # The allowance never reduces the displayed net cost
        assert figures.net_install_cost == pytest.approx(1729.0)
        baseline = compute_figures(scenario_inputs(), 1480.0, self.constants)
        assert figures.savings_year0 == pytest.approx(baseline.savings_year0 + figures.allowance)
        assert figures.total_savings == pytest.approx(baseline.total_savings + figures.allowance)

    @pytest.mark.parametrize('overrides', [{},
                                           {'include_aca': True},
                                           {'include_loan': True, 'loan_apr_fraction': 0.07},
                                           {'include_loan': True, 'loan_apr_fraction': 0.05, 'include_aca': True,
                                            'include_grant': False}])
    def test_cumulative_cash_flow_ends_at_total_savings(self, overrides):
        figures = compute_figures(scenario_inputs(**overrides), 1480.0, self.constants)
        assert figures.cumulative_cash_flow.iloc[-1] == pytest.approx(figures.total_savings)
        assert np.allclose(figures.cumulative_cash_flow.diff().iloc[1:], figures.annual_savings.iloc[1:])

    def test_grant_cap(self):
        inputs = scenario_inputs(panel_count=5000)
        figures = compute_figures(inputs, 0.0, self.constants)
        assert figures.grant == pytest.approx(162000.0)
        assert figures.grant <= figures.install_cost * 0.3

    def test_grant_excluded(self):
        figures = compute_figures(scenario_inputs(include_grant=False), 1480.0, self.constants)
        assert figures.grant == 0.0
        assert figures.principal == pytest.approx(2470.0)

    def test_zero_panels(self):
        inputs = scenario_inputs(panel_count=0, include_grant=False)
        figures = compute_figures(inputs, 0.0, self.constants)
        assert figures.install_cost == pytest.approx(550.0)
        assert figures.yearly_energy_kwh == 0.0
        for name in ['savings_year0', 'monthly_net_cash_flow', 'total_benefit_25', 'total_savings',
                     'payback_years', 'roi_percent', 'co2_tonnes']:
            assert getattr(figures, name) == 0.0, name
        assert (figures.annual_cash_flows == 0).all().all()
        assert figures.break_even_year is None

    def test_zero_panels_without_add_ons(self):
        inputs = scenario_inputs(panel_count=0, include_diverter=False)
        figures = compute_figures(inputs, 0.0, self.constants)
        assert figures.install_cost == 0.0
        assert figures.grant == 0.0
        assert figures.net_install_cost == 0.0

    def test_payback_zero_when_savings_not_positive(self):
        # Nothing self-consumed, nothing paid for exports, and a loan to service
        inputs = scenario_inputs(monthly_bill=0.0, feed_in_tariff=0.0, include_loan=True, loan_apr_fraction=0.07)
        figures = compute_figures(inputs, 1480.0, self.constants)
        assert figures.savings_year0 < 0
        assert figures.payback_years == 0.0

    def test_deterministic(self):
        inputs = scenario_inputs(include_loan=True, loan_apr_fraction=0.07, include_aca=True)
        first = compute_figures(inputs, 1480.0, self.constants)
        second = compute_figures(inputs, 1480.0, self.constants)
        pd.testing.assert_series_equal(first.headline(), second.headline())
        pd.testing.assert_frame_equal(first.annual_cash_flows, second.annual_cash_flows)

    def test_monotonic_in_panel_count(self):
        table = {config.panel_count: config.yearly_energy_kwh for config in sample_config_table()}
        totals = [compute_figures(scenario_inputs(panel_count=n), kwh, self.constants).total_benefit_25
                  for n, kwh in sorted(table.items())]
        assert all(b >= a for a, b in zip(totals, totals[1:]))

    def test_figures_are_finite(self):
        inputs = scenario_inputs(retail_rate=1e-12, monthly_bill=1e6)
        figures = compute_figures(inputs, float('nan'), self.constants)
        assert all(math.isfinite(v) for v in figures.headline().drop('break_even_year'))
        assert figures.yearly_energy_kwh == 0.0


class TestBuildAnnualCashFlows:

    def test_shape_and_columns(self):
        constants = default_constants(system_years=10)
        cash_flows = build_annual_cash_flows(scenario_inputs(), constants,
                                             yearly_loan_cost=0.0, upfront_outlay=1000.0, allowance=0.0)
        assert cash_flows.shape == (10, 6)
        assert cash_flows.index.name == 'year'
        assert cash_flows['cumulative_cash_flow'].iloc[0] == pytest.approx(cash_flows['benefit'].iloc[0] - 1000.0)

    def test_zero_frame(self):
        df = ResultFigures.get_zero_cash_flow_df(25)
        assert df.shape == (25, 6)
        assert (df == 0).all().all()


class TestFinanceEngine:

    def test_calculate_uses_table_energy(self):
        engine = FinanceEngine()
        figures = engine.calculate(scenario_inputs(panel_count=6), sample_config_table())
        assert figures.yearly_energy_kwh == 1480.0
        assert figures.installed_kwp == pytest.approx(2.4)

    def test_calculate_below_table(self):
        figures = FinanceEngine().calculate(scenario_inputs(panel_count=2), sample_config_table())
        assert figures.yearly_energy_kwh == 0.0

    def test_negative_panel_count_is_clamped(self):
        figures = FinanceEngine().calculate(scenario_inputs(panel_count=-3, include_grant=False),
                                            sample_config_table())
        assert figures.install_cost == pytest.approx(550.0)
        assert figures.total_savings == 0.0

    def test_zero_panels_ignore_unlabelled_records(self):
        table = config_table_from_records([{'panelsCount': 'n/a', 'yearlyEnergyDcKwh': 900},
                                           {'panelsCount': 4, 'yearlyEnergyDcKwh': 1480}])
        figures = FinanceEngine().calculate(scenario_inputs(panel_count=0), table)
        assert figures.yearly_energy_kwh == 0.0
        assert figures.total_savings == 0.0

    def test_zero_panels_never_report_energy(self):
        figures = compute_figures(scenario_inputs(panel_count=0), 900.0, FinancialConstants())
        assert figures.yearly_energy_kwh == 0.0

    def test_fractional_panel_count_is_truncated_everywhere(self):
        constants = FinancialConstants()
        fractional = compute_figures(scenario_inputs(panel_count=4.7), 1480.0, constants)
        whole = compute_figures(scenario_inputs(panel_count=4), 1480.0, constants)
        assert fractional.install_cost == pytest.approx(whole.install_cost)
        assert fractional.savings_year0 == pytest.approx(whole.savings_year0)
        assert np.allclose(fractional.annual_cash_flows['production_kwh'], whole.annual_cash_flows['production_kwh'])
        assert np.isclose(fractional.cumulative_cash_flow.iloc[-1], fractional.total_savings)

    def test_explicit_zero_apr_from_user_fields(self):
        inputs = RoiInputs.from_raw({'panel_count': '4', 'include_grant': 'on', 'include_loan': 'on',
                                     'loan_apr': '0', 'monthly_bill': '100'})
        figures = FinanceEngine().calculate(inputs, sample_config_table())
        assert inputs.loan_apr_fraction == 0.0
        assert figures.monthly_loan_payment == pytest.approx(figures.principal / 84)

    def test_engine_does_not_mutate_constants(self):
        constants = FinancialConstants()
        engine = FinanceEngine(constants)
        engine.calculate(scenario_inputs(), sample_config_table())
        assert engine.constants == FinancialConstants()
