# Utils package for the marketplace backend

from .transaction_utils import retry_on_conflict, run_in_unit_of_work, unit_of_work


__all__ = ["retry_on_conflict", "run_in_unit_of_work", "unit_of_work"]
