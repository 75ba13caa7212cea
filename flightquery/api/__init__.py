# FlightQuery API Module
"""
flightquery.api - Python API (FlightQuery Client Facade)
"""

from flightquery.api.base import (
    NO_ANSWER_TEXT,
    PREDEFINED_PROMPTS,
    FlightQueryConfig,
)
from flightquery.api.config import (
    CONFIG_ENV_VAR,
    CONFIG_SEARCH_PATHS,
    ConfigManager,
    find_config_path,
    load_config,
)
from flightquery.api.client import (
    FlightQueryClient,
    TransportFactory,
    create_client,
    default_transport_factory,
)

__all__ = [
    # Constants
    "NO_ANSWER_TEXT",
    "PREDEFINED_PROMPTS",
    "CONFIG_ENV_VAR",
    "CONFIG_SEARCH_PATHS",
    # Data Classes
    "FlightQueryConfig",
    # Managers
    "ConfigManager",
    "find_config_path",
    "load_config",
    # Client
    "FlightQueryClient",
    "TransportFactory",
    "create_client",
    "default_transport_factory",
]
