"""Application-wide constants.

This module centralizes magic numbers and configuration constants
that are used across multiple modules. For environment-specific
configuration, see config.py.
"""

# =============================================================================
# Pagination Defaults
# =============================================================================

# Default page size for the conversation list
DEFAULT_PAGE_SIZE: int = 20

# Default page size for conversation messages
CONVERSATION_MESSAGES_PAGE_SIZE: int = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE: int = 100

# Default page size for user search
USER_SEARCH_LIMIT: int = 10

# Minimum query length for user search
USER_SEARCH_MIN_LENGTH: int = 2

# =============================================================================
# Content Limits
# =============================================================================

# Message body length
MESSAGE_MAX_LENGTH: int = 5000

# Reply preview length (characters of the quoted message)
REPLY_PREVIEW_MAX_LENGTH: int = 100

# Conversation name length
CONVERSATION_NAME_MAX_LENGTH: int = 255

# Members added in one request
MAX_MEMBERS_PER_REQUEST: int = 50

# Message ids accepted by a single mark-read call
MAX_MARK_READ_IDS: int = 500

# =============================================================================
# Display
# =============================================================================

# Name shown for users the directory no longer knows about
UNKNOWN_USER_NAME: str = "Unknown user"

# Reply preview shown when the quoted message has been deleted
DELETED_MESSAGE_PLACEHOLDER: str = "This message was deleted"
