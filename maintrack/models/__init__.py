"""
Maintenance Work Order Tracker
SQLAlchemy extension instance shared by every model module.

Usage:
    from maintrack.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
