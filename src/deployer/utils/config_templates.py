"""Role-specific configuration files written to devices after a firmware copy.

The firmware reads the ``DEVICE_ROLE`` marker at boot; the deployer treats
the templates as opaque text.
"""

from deployer.models.device import DeviceRole

PRIMARY_CONFIG = """# Primary Configuration
import board
import busio

# Device Role
DEVICE_ROLE = "PRIMARY"

# I2C Configuration
i2c = busio.I2C(board.SCL, board.SDA)

# Primary-specific settings
IS_COORDINATOR = True
BROADCAST_ENABLED = True
LISTEN_FOR_SECONDARY = True

# Network Configuration
NETWORK_TIMEOUT = 5000  # milliseconds
MAX_RETRIES = 3

print(f"Configured as {DEVICE_ROLE}")
"""

SECONDARY_CONFIG = """# Secondary Configuration
import board
import busio

# Device Role
DEVICE_ROLE = "SECONDARY"

# I2C Configuration
i2c = busio.I2C(board.SCL, board.SDA)

# Secondary-specific settings
IS_COORDINATOR = False
BROADCAST_ENABLED = False
LISTEN_FOR_PRIMARY = True

# Network Configuration
NETWORK_TIMEOUT = 5000  # milliseconds
MAX_RETRIES = 3

print(f"Configured as {DEVICE_ROLE}")
"""

_TEMPLATES = {
    DeviceRole.PRIMARY: PRIMARY_CONFIG,
    DeviceRole.SECONDARY: SECONDARY_CONFIG,
}


def get_config_for_role(role: DeviceRole) -> str:
    """Return the configuration file content for a role."""
    return _TEMPLATES[DeviceRole(role)]
