"""
Registry of named predicate functions for ``BIND`` filters.

A ``BIND`` filter hands a set of resolved field values to the server-side
dispatch procedure together with the *name* of a predicate function and its
JSON arguments. Only registered functions can be referenced, so a compiled
statement never carries code.

Example:
    @docstore.register_function("older_than")
    def older_than(values, years):
        return values[0] > years

    where = ["BIND", "age", older_than, 30]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from .errors import InvalidPredicate

logger = logging.getLogger(__name__.split(".")[0])

# maps name to PredicateFunction
_function_registry: dict[str, PredicateFunction] = {}


@dataclass(frozen=True)
class PredicateFunction:
    """
    A registered predicate function.

    Parameters
    ----------
    name : str
        Name passed to the dispatch procedure.
    function : callable, optional
        Local implementation. It is never sent to the server; it documents the
        contract and allows evaluating the predicate in tests.
    return_type : str
        SQL type the dispatch result is cast to when the filter does not give one.
    """

    name: str
    function: Callable | None = None
    return_type: str = "boolean"

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if self.function is None:
            raise InvalidPredicate(f"Predicate function {self.name!r} has no local implementation")
        return self.function(*args, **kwargs)


def register_function(name: str | None = None, *, return_type: str = "boolean") -> Callable:
    """
    Decorator registering a predicate function under ``name`` (default: the function name).

    The decorated name is bound to the resulting :class:`PredicateFunction`.
    Registering a different function under a taken name raises ``InvalidPredicate``.
    """

    def decorator(function: Callable) -> PredicateFunction:
        registered_name = name or function.__name__
        if not isinstance(registered_name, str) or not registered_name.isidentifier():
            raise InvalidPredicate(f"Predicate function name must be an identifier, got {registered_name!r}")
        existing = _function_registry.get(registered_name)
        if existing is not None and existing.function is not function:
            raise InvalidPredicate(f"Predicate function {registered_name!r} is already registered")
        entry = PredicateFunction(registered_name, function, return_type)
        _function_registry[registered_name] = entry
        logger.debug(f"Registered predicate function {registered_name}")
        return entry

    return decorator


def unregister_function(name: str) -> None:
    """Remove a predicate function from the registry."""
    if name not in _function_registry:
        raise InvalidPredicate(f"Predicate function {name!r} is not registered")
    del _function_registry[name]


def get_function(reference: Any) -> PredicateFunction:
    """
    Find the registered function for a reference found in a ``BIND`` filter.

    Parameters
    ----------
    reference : PredicateFunction or callable or str
        A registered entry, the plain function that was registered, or a name.

    Raises
    ------
    InvalidPredicate
        If the reference is not registered.
    """
    if isinstance(reference, PredicateFunction):
        if _function_registry.get(reference.name) != reference:
            raise InvalidPredicate(f"Predicate function {reference.name!r} is not registered")
        return reference
    if isinstance(reference, str):
        if reference not in _function_registry:
            raise InvalidPredicate(f"Predicate function {reference!r} is not registered")
        return _function_registry[reference]
    if callable(reference):
        for entry in _function_registry.values():
            if entry.function is reference:
                return entry
        raise InvalidPredicate(
            f"Function {getattr(reference, '__name__', reference)!r} is not a registered predicate function"
        )
    raise InvalidPredicate(f"Invalid predicate function reference {reference!r}")


def is_function_reference(item: Any) -> bool:
    """True for items that mark the function position of a ``BIND`` filter."""
    return isinstance(item, PredicateFunction) or (callable(item) and not isinstance(item, type))


def list_functions() -> list[str]:
    """Names of all registered predicate functions."""
    return sorted(_function_registry)
