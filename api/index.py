# api/index.py
"""
Vercel Serverless Function adapter.

Vercel's Python runtime looks for a variable named `app` (ASGI) and the
project is installed from pyproject.toml, so `gallery` imports directly.
"""
import os

# Serverless defaults: no Prometheus scrape target, one job thread,
# SQLite under /tmp (the only writable dir). .env is loaded by gallery.app.
os.environ.setdefault("PROMETHEUS_ENABLED", "false")
os.environ.setdefault("SCHEDULER_MAX_WORKERS", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/ai_gallery.db")

from gallery.app import app  # noqa: F401,E402
