"""
Certificate Workflow Service
SQLAlchemy extension instance shared by every model module.

Usage:
    from certflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
