"""
SlashKeeper Exceptions

Custom exception classes for the slashing engine.
"""


class SlashKeeperException(Exception):
    """Base exception for SlashKeeper."""
    pass


class ValidatorNotFoundError(SlashKeeperException):
    """Public key does not resolve to a known validator."""
    def __init__(self, pub_key: str):
        self.pub_key = pub_key
        super().__init__(f"validator not found: {pub_key}")


class ConfigurationError(SlashKeeperException):
    """Configuration error."""
    pass
