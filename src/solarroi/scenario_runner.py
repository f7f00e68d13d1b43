import logging
import time
import attrs
import pandas as pd
from multiprocessing import Pool
from typing import Iterable, List, Optional

from .roi_interface import RoiInputs, FinancialConstants, ResultFigures, ConfigTable
from .finance_engine import FinanceEngine

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ['yearly_energy_kwh', 'install_cost', 'grant', 'net_install_cost', 'savings_year0',
                   'monthly_net_cash_flow', 'total_savings', 'payback_years', 'roi_percent',
                   'co2_tonnes', 'break_even_year']


def _run_single_calculation(args: tuple) -> ResultFigures:
    """
    Helper function to run a single calculation.
    This is used for parallel processing.
    """
    inputs, config_table, constants = args
    return FinanceEngine(constants).calculate(inputs, config_table)


class PanelSweepRunner:
    """Evaluates the same request at every tabulated panel count so system sizes can be compared."""

    def __init__(self,
                 base_inputs: RoiInputs,
                 config_table: ConfigTable,
                 constants: FinancialConstants | None = None,
                 panel_counts: Optional[Iterable[int]] = None,
                 parallelize: bool = False,
                 n_jobs: int = None):
        """
        Args:
            base_inputs: Request whose panel_count is replaced for each scenario
            config_table: Site energy table; also supplies the panel counts when none are given
            constants: Session constants (defaults if None)
            panel_counts: Explicit panel counts to evaluate
            parallelize: Whether to run scenarios in a process pool
            n_jobs: Number of processes for parallel execution (None = auto)
        """
        self.base_inputs = base_inputs
        self.config_table = config_table
        self.constants = constants or FinancialConstants()
        self.parallelize = parallelize
        self.n_jobs = n_jobs
        if panel_counts is None:
            panel_counts = [config.panel_count for config in config_table]
        self.panel_counts = sorted(set(max(0, int(n)) for n in panel_counts))

        self.results: List[ResultFigures] = []
        self.summary: pd.DataFrame | None = None

    def _build_inputs_list(self) -> List[RoiInputs]:
        return [attrs.evolve(self.base_inputs, panel_count=n) for n in self.panel_counts]

    def _run_calculations(self, inputs_list: List[RoiInputs]) -> List[ResultFigures]:
        args_list = [(inputs, self.config_table, self.constants) for inputs in inputs_list]
        if self.parallelize and len(args_list) > 1:
            with Pool(processes=self.n_jobs) as pool:
                return pool.map(_run_single_calculation, args_list)
        return [_run_single_calculation(args) for args in args_list]

    def run(self) -> pd.DataFrame:
        """Run every scenario and return one summary row per panel count."""
        start_time = time.time()
        self.results = self._run_calculations(self._build_inputs_list())
        if len(self.results) == 0:
            logger.warning("No panel counts to sweep; the config table is empty")
            self.summary = pd.DataFrame(columns=SUMMARY_COLUMNS, index=pd.Index([], name='panel_count'))
            return self.summary

        rows = [figures.headline()[SUMMARY_COLUMNS] for figures in self.results]
        self.summary = pd.DataFrame(rows, index=pd.Index(self.panel_counts, name='panel_count'))
        logger.info(f"Swept {len(self.results)} panel counts in {time.time() - start_time:.2f} seconds")
        return self.summary

    def best_by(self, column: str = 'total_savings') -> pd.Series:
        """Summary row of the panel count that maximizes the given column."""
        if self.summary is None:
            self.run()
        assert column in self.summary.columns, f"Unknown summary column {column}"
        assert not self.summary.empty, "No scenarios to choose from"
        values = self.summary[column].astype(float).dropna()
        assert not values.empty, f"No scenario has a value for {column}"
        best_panel_count = values.idxmax()
        return self.summary.loc[best_panel_count]

    def get_results(self) -> List[ResultFigures]:
        return self.results
