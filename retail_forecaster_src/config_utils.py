# retail_forecaster_src/config_utils.py

import logging

from config import get_config, ConfigurationError

logger = logging.getLogger(__name__)

# Global configuration manager, populated by initialize_config()
config_manager = None


def initialize_config():
    """
    Initializes the global configuration manager.
    Loads the packaged settings plus any override file and logs validation problems.
    If the configuration cannot be loaded, the error is logged and hard defaults are used.
    """
    global config_manager
    if config_manager is None:
        try:
            config_manager = get_config()
            validation_errors = config_manager.validate_configuration()
            if validation_errors:
                logger.warning("Configuration validation warnings: %s", validation_errors)
        except ConfigurationError as e:
            logger.error("Failed to initialize configuration: %s. Using defaults.", e)
            config_manager = None
    return config_manager


def get_config_value(key_path: str, default=None, args=None, cli_param=None):
    """
    Retrieves a configuration value, providing support for command-line overrides.
    The function prioritizes values in the following order:
    1. CLI argument (if provided and not None)
    2. Configuration file
    3. Default value
    """
    if args is not None and cli_param and hasattr(args, cli_param):
        cli_value = getattr(args, cli_param)
        if cli_value is not None:
            return cli_value

    if config_manager is not None:
        config_value = config_manager.get(key_path, None)
        if config_value is not None:
            return config_value

    return default
