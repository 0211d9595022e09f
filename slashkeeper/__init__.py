"""
SlashKeeper

Validator slashing engine for delegated proof-of-stake chains.

Core imports are lazily loaded so that importing the package does not
touch the application's logging. For direct access, import from submodules:

    from slashkeeper.stake import SlashingEngine, AbsentValidators
    from slashkeeper.exceptions import ValidatorNotFoundError
"""

def __getattr__(name):
    """Lazy module loading."""
    if name in ('SlashingEngine', 'AbsentValidators', 'BlockPunisher', 'MemoryStakeStore'):
        from . import stake
        return getattr(stake, name)
    elif name == 'ValidatorNotFoundError':
        from .exceptions import ValidatorNotFoundError
        return ValidatorNotFoundError
    raise AttributeError(f"module 'slashkeeper' has no attribute {name!r}")

__all__ = [
    'SlashingEngine',
    'AbsentValidators',
    'BlockPunisher',
    'MemoryStakeStore',
    'ValidatorNotFoundError',
]
