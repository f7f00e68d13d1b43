import attrs

from solarroi.roi_interface import PanelConfig, RoiInputs, FinancialConstants


def sample_config_table() -> list[PanelConfig]:
    """Create a sparse panel-count table like the rooftop provider returns."""
    return [PanelConfig(panel_count=4, yearly_energy_kwh=1480.0),
            PanelConfig(panel_count=8, yearly_energy_kwh=2960.0),
            PanelConfig(panel_count=12, yearly_energy_kwh=4380.0),
            PanelConfig(panel_count=20, yearly_energy_kwh=7150.0)]


def sample_building_insights() -> dict:
    return {
        'name': 'buildings/ChIJ-sample',
        'solarPotential': {
            'maxArrayPanelsCount': 20,
            'panelCapacityWatts': 400,
            'solarPanelConfigs': [
                {'panelsCount': 4, 'yearlyEnergyDcKwh': 1480.0, 'roofSegmentSummaries': []},
                {'panelsCount': 8, 'yearlyEnergyDcKwh': 2960.0, 'roofSegmentSummaries': []},
                {'panelsCount': 12, 'yearlyEnergyDcKwh': 4380.0, 'roofSegmentSummaries': []},
                {'panelsCount': 20, 'yearlyEnergyDcKwh': 7150.0, 'roofSegmentSummaries': []},
            ],
        },
    }


def scenario_inputs(**overrides) -> RoiInputs:
    """The reference household: 4 panels, 100/month bill, grant, no loan."""
    inputs = RoiInputs(panel_count=4,
                       include_grant=True,
                       include_aca=False,
                       include_loan=False,
                       export_fraction=0.4,
                       retail_rate=0.35,
                       feed_in_tariff=0.21,
                       loan_apr_fraction=0.0,
                       monthly_bill=100.0)
    return attrs.evolve(inputs, **overrides)


def default_constants(**overrides) -> FinancialConstants:
    return attrs.evolve(FinancialConstants(), **overrides)
