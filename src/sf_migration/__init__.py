"""SF Tree Migrate - Migrate Salesforce record trees between orgs."""

import logging
import warnings

__version__ = "0.1.0"
__author__ = "SF Migration Team"
__license__ = "Apache-2.0"

# Suppress verbose third-party library logging
logging.getLogger("urllib3").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

warnings.filterwarnings("ignore", category=DeprecationWarning, module="httpx")
