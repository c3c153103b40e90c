"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi run-job process_toolbox_schedules
"""

from siteops import create_app

app = create_app()
