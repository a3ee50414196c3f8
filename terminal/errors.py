"""Exceptions raised by the game rules.

Every operation catches these at its top level and turns them into a failed
``ActionResult`` carrying the message, so the text should read well to a player.
"""

import functools
import logging

from .models import ActionResult

logger = logging.getLogger(__name__)


class GameError(Exception):
    """Base class for every rule violation surfaced to a caller."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingFieldError(GameError):
    pass


class NotFoundError(GameError):
    pass


class PreconditionError(GameError):
    pass


class InsufficientCurrencyError(PreconditionError):
    def __init__(self, message: str = "You do not have enough currency."):
        super().__init__(message)


class WrongStatusError(PreconditionError):
    pass


class CooldownActiveError(PreconditionError):
    pass


class MissingTargetError(PreconditionError):
    def __init__(self, message: str = "This effect needs a target."):
        super().__init__(message)


class TargetNotFoundError(NotFoundError):
    def __init__(self, message: str = "The chosen target could not be found."):
        super().__init__(message)


class TargetAlreadyDefeatedError(PreconditionError):
    def __init__(self, message: str = "The target has already been defeated."):
        super().__init__(message)


class AuthorizationError(GameError):
    def __init__(self, message: str = "This action is restricted to administrators."):
        super().__init__(message)


class TransactionConflict(Exception):
    """A document read by a transaction changed before it committed."""


class TransactionFailedError(GameError):
    def __init__(self, message: str = "The game is busy right now, please try again."):
        super().__init__(message)


def game_action(failure_message: str):
    """Decorate an async operation so it always returns an ActionResult.

    GameError becomes a failed result with its own message. Anything else is
    logged with its traceback and reported with ``failure_message``.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except GameError as e:
                logger.info(f"{func.__name__} rejected: {e.message}")
                return ActionResult(False, e.message)
            except Exception as e:
                logger.error(f"{func.__name__} failed: {e}", exc_info=True)
                return ActionResult(False, failure_message)
        return wrapper
    return decorator
