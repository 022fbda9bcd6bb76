"""
Flow Metrics Report — SQLAlchemy models.

The shared ``db`` instance lives here so every model module and service
imports it from one place:

    from flowreport.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
