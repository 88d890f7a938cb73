from enum import Enum

# -------------------------------------------------------------- #
# Server Manager Type
# -------------------------------------------------------------- #


class ServerManagerType(Enum):
    """Selects which set of server handlers and services get constructed."""

    PRODUCTION = "production"
    TESTING = "testing"
