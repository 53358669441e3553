from invex.config.invex_config import InvexConfig
from invex.config.logging_setup import configure_logging

__all__ = ['InvexConfig', 'configure_logging']
