"""
config.py - runtime settings read from the environment

On Streamlit Cloud, app.py copies secrets into os.environ before this module
is used, so the same variables work locally and in the cloud.
"""

import os
import sys
import tempfile
import logging
from dataclasses import dataclass

from tripsplit.currency import PLACEHOLDER_RATES
from tripsplit.policy import MODES, WARN


logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

# location of the JSON snapshot (relative to the package)
_default_data_file = os.path.join(os.path.dirname(__file__), "..", "data", "trip_data.json")


def _running_under_pytest() -> bool:
    return any("pytest" in p for p in sys.argv) or bool(os.getenv("PYTEST_CURRENT_TEST"))


def default_data_file() -> str:
    # Keep tests away from the real snapshot.
    if _running_under_pytest():
        return os.path.join(tempfile.gettempdir(), "tmp_trip_test.json")
    return _default_data_file


@dataclass(frozen=True)
class Settings:
    data_file: str
    display_currency: str = "USD"
    degrade_policy: str = WARN


def load_settings() -> Settings:
    """Build Settings from TRIPSPLIT_* variables; invalid values fall back to defaults."""
    data_file = (os.getenv("TRIPSPLIT_DATA_FILE") or "").strip() or default_data_file()

    currency = (os.getenv("TRIPSPLIT_DISPLAY_CURRENCY") or "USD").strip().upper()
    if currency not in PLACEHOLDER_RATES:
        logger.warning("TRIPSPLIT_DISPLAY_CURRENCY=%r is not supported, using USD", currency)
        currency = "USD"

    policy = (os.getenv("TRIPSPLIT_DEGRADE_POLICY") or WARN).strip().lower()
    if policy not in MODES:
        logger.warning("TRIPSPLIT_DEGRADE_POLICY=%r is not one of %s, using %s", policy, MODES, WARN)
        policy = WARN

    return Settings(data_file=data_file, display_currency=currency, degrade_policy=policy)
