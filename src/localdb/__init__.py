"""localdb - typed async data access over an embedded SQLite database."""

__version__ = "0.1.0"
