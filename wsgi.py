import os

import config
from app import app, init_app_store


# Ensure runtime folders and the record store exist when running via Gunicorn/Werkzeug.
if config.STORE_BACKEND == "sqlite":
    os.makedirs(os.path.dirname(config.DB_PATH) or ".", exist_ok=True)
init_app_store()
