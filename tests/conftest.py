import os

# Settings are read at import time, so the environment is fixed before any
# settlement module is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TSARA_SECRET_KEY"] = "test-secret"
os.environ["TSARA_USE_SANDBOX"] = "true"
os.environ["ENABLE_NOTIFICATION_CONSUMER"] = "false"
os.environ["LOG_FORMAT"] = "console"
os.environ.pop("SMTP_HOST", None)
