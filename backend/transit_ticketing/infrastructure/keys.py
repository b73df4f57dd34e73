"""
Redis key layout.

User identity keys (`user:*`, `email:*`, the tracking list) are the only
ones the population monitor may purge. Ticket keys and membership sets live
in their own namespaces so no purge pattern can ever match them.
"""

CACHED_USERS_LIST = "cached_users_list"

USER_KEY_PATTERN = "user:*"
CONTACT_KEY_PATTERN = "email:*"


def user_key(tax_code: str) -> str:
    return f"user:{tax_code}"


def contact_key(contact: str) -> str:
    return f"email:{contact}"


def ticket_key(ticket_id: str) -> str:
    return f"ticket:{ticket_id}"


def active_tickets_key(tax_code: str) -> str:
    return f"active_tickets:{tax_code}"
