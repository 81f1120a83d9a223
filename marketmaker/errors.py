# marketmaker/errors.py


class MarketMakerError(Exception):
    """Base class for every error raised by the bot."""


class ConfigurationError(MarketMakerError):
    """A required collaborator or setting is missing. Fatal at startup."""


class ValidationError(MarketMakerError, ValueError):
    """Invalid input to a bot operation. Aborts that operation only."""


class TransientExchangeError(MarketMakerError):
    """
    The exchange or the network rejected a call.
    Logged by the caller; the bot keeps reconciling.
    """


class OrderNotOpenError(TransientExchangeError):
    """Cancel target is no longer open (already filled or cancelled)."""
