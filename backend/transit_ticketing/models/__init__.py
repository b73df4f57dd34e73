from transit_ticketing.models.user import User

__all__ = ["User"]
