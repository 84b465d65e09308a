"""
Rate schedules for the birth-death-migration process.

- **RateSchedule**: piecewise-constant birth, death, sampling, removal,
  migration and cross-birth rates plus rho sampling events
- **Skyline / RhoSampling**: per-parameter change times merged into one
  interval grid by :meth:`RateSchedule.from_skylines`
- **epi_to_canonical**: reproductive number, become-uninfectious rate and
  sampling proportion converted to canonical rates
"""

from bdmmpy.models.schedule import RateSchedule, RhoSampling, Skyline, epi_to_canonical

__all__ = ["RateSchedule", "RhoSampling", "Skyline", "epi_to_canonical"]
