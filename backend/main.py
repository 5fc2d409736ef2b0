"""
AegisGrid Safe Routing Backend — FastAPI
Modular entry point. All logic is split across:
  config.py, models.py, errors.py, data_fetchers.py,
  scoring.py, report_store.py, sos.py, routes.py
"""

import logging

from config import HOST, PORT, LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from routes import app  # noqa: E402,F401

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
