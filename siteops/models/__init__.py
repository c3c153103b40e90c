"""
SiteOps Backend
Database models package.

All model modules import the shared ``db`` instance from here:

    from siteops.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
