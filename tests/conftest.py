import os
import warnings

# Ignore warnings from third-party shims
warnings.filterwarnings("ignore", category=DeprecationWarning, module="slowapi.*")

# Set test environment variables before the app config is built
os.environ.update(
    {
        "DEMO_MODE": "true",
        "LOGFIRE_ENABLE": "false",
    }
)

# Import room fixtures so they are available to all tests
from tests.fixtures.room_fixtures import *  # noqa: E402, F403
from tests.fixtures.api_fixtures import *  # noqa: E402, F403
