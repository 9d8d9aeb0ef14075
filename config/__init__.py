import os
import json
import base64
import binascii
from pathlib import Path
from dotenv import load_dotenv
from .logging_config import setup_app_logging
import logging

# Load environment variables from .env file
load_dotenv()

# Get the config directory path (where this file is located)
CONFIG_DIR = Path(__file__).parent

PROJECT_ROOT = CONFIG_DIR.parent

# Load configuration from config.json
config_path = CONFIG_DIR / 'config.json'
with open(config_path, 'r', encoding='utf-8') as f:
    CONFIG = json.load(f)

CONFIG['project_root'] = str(PROJECT_ROOT)

# Environment variables
ENV = {
    # Base64 encoded Ed25519 key handed out when the connector is published. Callbacks from the
    # platform are signed with the matching private key.
    'GIPHY_CONNECTOR_PUBLIC_KEY': os.getenv('GIPHY_CONNECTOR_PUBLIC_KEY'),
}


def validate_config():
    """Validate that all required environment variables and configuration settings are present.

    Only the callback verification key is strictly required; Giphy API keys are configured per
    installation and platform tokens arrive with the lifecycle callbacks.
    """
    missing_env_vars = [key for key, value in ENV.items() if not value]
    if missing_env_vars:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing_env_vars)}\n"
            f"Please check your .env file."
        )

    try:
        raw_key = base64.b64decode(ENV['GIPHY_CONNECTOR_PUBLIC_KEY'], validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid public key: {e}")
    if len(raw_key) != 32:
        raise ValueError(f"Invalid public key: expected 32 bytes, got {len(raw_key)}")

    required_sections = ['server', 'callbacks', 'giphy', 'platform', 'provider', 'database']
    for section in required_sections:
        if section not in CONFIG:
            raise ValueError(f"Missing configuration section: {section}")

    if CONFIG['giphy'].get('client', 'giphy') not in ('giphy', 'mock'):
        raise ValueError(f"Unknown giphy client: {CONFIG['giphy'].get('client')}")


# Validate configuration on module import
validate_config()


# --- Helper function to get config value from CONFIG or environment variable ---
def get_config_value(json_keys: list, env_var_name: str, default_value: any = None):
    """
    Retrieves a configuration value.
    Priority:
    1. Environment variable (if env_var_name is provided and variable is set).
    2. Value from CONFIG dictionary (using json_keys).
    3. default_value.
    """
    if env_var_name:
        env_value = os.getenv(env_var_name)
        if env_value is not None:
            # Match the type of default_value for bool, int and float settings
            if isinstance(default_value, bool):
                if env_value.lower() == 'true': return True
                if env_value.lower() == 'false': return False
            elif isinstance(default_value, int):
                try:
                    return int(env_value)
                except ValueError:
                    pass
            elif isinstance(default_value, float):
                try:
                    return float(env_value)
                except ValueError:
                    pass
            return env_value

    current_level = CONFIG
    try:
        for key in json_keys:
            current_level = current_level[key]
        if current_level is None:
            return default_value
        if isinstance(current_level, (str, int, bool, float, list, dict)):
            return current_level
    except (KeyError, TypeError):
        pass

    return default_value


# --- Runtime settings (environment overrides JSON) ---
CONFIG['server'] = {
    'host': get_config_value(['server', 'host'], 'SERVER_HOST', '0.0.0.0'),
    'port': get_config_value(['server', 'port'], 'SERVER_PORT', 8080),
}
CONFIG['callbacks'] = {
    'prefix': get_config_value(['callbacks', 'prefix'], 'CALLBACK_PREFIX', '/callbacks'),
    # Fixed external host for proxies that do not forward X-Forwarded-* headers
    'host': get_config_value(['callbacks', 'host'], 'CALLBACK_HOST', None),
}
CONFIG['giphy'] = {
    'client': get_config_value(['giphy', 'client'], 'GIPHY_CLIENT', 'giphy'),
    'base_url': get_config_value(['giphy', 'base_url'], 'GIPHY_BASE_URL', 'https://api.giphy.com/v1/gifs'),
    'timeout_seconds': get_config_value(['giphy', 'timeout_seconds'], 'GIPHY_TIMEOUT_SECONDS', 10.0),
    'poll_interval_seconds': get_config_value(['giphy', 'poll_interval_seconds'], 'GIPHY_POLL_INTERVAL_SECONDS', 60),
    'search_limit': get_config_value(['giphy', 'search_limit'], 'GIPHY_SEARCH_LIMIT', 1),
    'rating': get_config_value(['giphy', 'rating'], 'GIPHY_RATING', 'g'),
}
CONFIG['platform'] = {
    'base_url': get_config_value(['platform', 'base_url'], 'PLATFORM_BASE_URL', 'https://api.connctd.io/api/v1'),
    'timeout_seconds': get_config_value(['platform', 'timeout_seconds'], 'PLATFORM_TIMEOUT_SECONDS', 10.0),
}
CONFIG['provider'] = {
    'action_queue_capacity': get_config_value(['provider', 'action_queue_capacity'], 'ACTION_QUEUE_CAPACITY', 5),
    'event_channel_capacity': get_config_value(['provider', 'event_channel_capacity'], 'EVENT_CHANNEL_CAPACITY', 5),
}
CONFIG['database'] = {
    'path': get_config_value(['database', 'path'], 'DATABASE_PATH', 'data/giphy_connector.db'),
    'migrate_on_startup': get_config_value(['database', 'migrate_on_startup'], 'DATABASE_MIGRATE_ON_STARTUP', True),
}

# --- Logging Configuration ---
# Defaults for logging config are also in logging_config.py's setup_app_logging function's signature
# or can be specified in config.json. Environment variables take precedence.
CONFIG['logging'] = {
    'level': get_config_value(['logging', 'level'], 'LOG_LEVEL', 'INFO'),
    'file_path': get_config_value(['logging', 'file_path'], 'LOG_FILE_PATH', 'logs/giphy_connector.log'),
    'max_bytes': get_config_value(['logging', 'max_bytes'], 'LOG_MAX_BYTES', 5*1024*1024), # 5MB
    'backup_count': get_config_value(['logging', 'backup_count'], 'LOG_BACKUP_COUNT', 3),
    'format': get_config_value(
        ['logging', 'format'],
        'LOG_FORMAT',
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s'
    ),
    'date_format': get_config_value(
        ['logging', 'date_format'],
        'LOG_DATE_FORMAT',
        '%Y-%m-%d %H:%M:%S'
    )
}

# --- Setup Application Logging ---
setup_app_logging(config=CONFIG.get('logging'))

config_init_logger = logging.getLogger(__name__)
config_init_logger.info("[config_init] Logging initialized from config/__init__.py using setup_app_logging.")
