# Overview: Flask extension instances for database, migrations and the event channel.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.event_service import EventBroadcaster

db = SQLAlchemy()
migrate = Migrate()
broadcaster = EventBroadcaster()
