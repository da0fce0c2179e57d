"""
WSGI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi run
    flask --app wsgi seed-verification-templates
"""

from goaltrack import create_app

app = create_app()
