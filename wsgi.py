"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-superadmin --password <secret>
"""

from maintrack import create_app

app = create_app()
