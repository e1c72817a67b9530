import os
import warnings

# Ignore warnings from app.shared
warnings.filterwarnings("ignore", category=DeprecationWarning, module="app.shared.*")

# Set test environment variables
os.environ.update({"DEBUG": "true"})

# Import media fixtures so they are available to all tests
from tests.fixtures.media_fixtures import *  # noqa: E402, F403
