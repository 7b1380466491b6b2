"""
app.py - minimal entrypoint for Streamlit app

Keep this file tiny so streamlit can import it without side-effects.
Run the app with:
    streamlit run app.py

This module simply delegates to tripsplit.ui.dashboard.main().

"""
import os
try:
    # If running on Streamlit Cloud, transfer secrets to env vars so tripsplit.config can read them
    import streamlit as _st
    _secrets = getattr(_st, "secrets", {}) or {}
    for _k in ("TRIPSPLIT_DATA_FILE", "TRIPSPLIT_DISPLAY_CURRENCY", "TRIPSPLIT_DEGRADE_POLICY"):
        if _k in _secrets and _secrets[_k] and _k not in os.environ:
            os.environ[_k] = str(_secrets[_k])
except Exception:
    # no secrets.toml (local runs) or streamlit missing; environment variables still apply
    pass

from tripsplit.ui import dashboard


def main():
    dashboard.main()


if __name__ == "__main__":
    main()
