"""
WSGI entry point and Flask-Migrate / Alembic entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi process-deadlines      # hourly cron
"""

from caredraft import create_app

app = create_app()
