"""Root pytest configuration for all tests."""

import logging

# urllib3 logs every connection attempt at DEBUG; keep test output readable
logging.getLogger("urllib3").setLevel(logging.WARNING)
