"""
Machine-readable error codes returned alongside error details.
"""

VALIDATION_ERROR = "VALIDATION_ERROR"
SELF_FOLLOW = "SELF_FOLLOW"
UNSUPPORTED_FILTER = "UNSUPPORTED_FILTER"
INVALID_FILTER = "INVALID_FILTER"

NOT_FOUND = "NOT_FOUND"
USER_NOT_FOUND = "USER_NOT_FOUND"
POST_NOT_FOUND = "POST_NOT_FOUND"
FEED_NOT_FOUND = "FEED_NOT_FOUND"

CONFLICT = "CONFLICT"
USERNAME_TAKEN = "USERNAME_TAKEN"
FEED_NAME_TAKEN = "FEED_NAME_TAKEN"
FEED_LIMIT_REACHED = "FEED_LIMIT_REACHED"

INVALID_CURSOR = "INVALID_CURSOR"

STORE_TIMEOUT = "STORE_TIMEOUT"
STORE_UNAVAILABLE = "STORE_UNAVAILABLE"

INTERNAL_ERROR = "INTERNAL_ERROR"

PERMISSION_DENIED = "PERMISSION_DENIED"
