"""
extensions.py — Flask extension singletons.

`db` and `ma` are created here without an app and bound in create_app() via
init_app(), so models, services and tests can import them freely:

    from groupledger.app.extensions import db, ma

Schema rule: validation schemas in app/schemas/ inherit marshmallow.Schema,
never ma.Schema. ma.Schema needs an application context, and the unit tests
load schemas without one.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
ma = Marshmallow()
