"""Database access."""

from inboxsync.db.postgres import Database

# Global database instance used by the webhook app
db = Database()

__all__ = ["Database", "db"]
