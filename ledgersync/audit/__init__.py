"""Decision logging package."""

from ledgersync.audit.logger import DecisionLogger, configure_logging, create_run_id

__all__ = ["DecisionLogger", "configure_logging", "create_run_id"]
