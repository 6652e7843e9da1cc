import os

# main.py builds an app at import time; keep it off the on-disk default database.
os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite://")
