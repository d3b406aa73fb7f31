"""
Exception classes for the docstore library.

This module defines the exception hierarchy for docstore errors. Compile-time
errors are raised synchronously while statements are being built; catalog
errors require a round trip to the database.
"""

from __future__ import annotations


# --- Top Level ---
class DocStoreError(Exception):
    """Base class for errors specific to docstore internal operation."""

    def suggest(self, *args: object) -> "DocStoreError":
        """
        Regenerate the exception with additional arguments.

        Parameters
        ----------
        *args : object
            Additional arguments to append to the exception.

        Returns
        -------
        DocStoreError
            A new exception of the same type with the additional arguments.
        """
        return self.__class__(*(self.args + args))


# --- Second Level: compilation ---
class InvalidKey(DocStoreError):
    """Unresolvable or malformed field reference."""


class InvalidPredicate(DocStoreError):
    """Malformed filter specification, e.g. a lone operator with no operands."""


class NoIdentifyingKey(DocStoreError):
    """Update or delete target lacks both id and name."""


class UnknownType(DocStoreError):
    """Referenced document type does not resolve to exactly one type."""


class IndexVerificationFailed(DocStoreError):
    """Index definition in the catalog does not match a canonical form."""


# --- Second Level: execution ---
class LostConnectionError(DocStoreError):
    """Loss of server connection."""


class QueryError(DocStoreError):
    """Errors arising from queries to the database."""


# --- Third Level: QueryErrors ---
class QuerySyntaxError(QueryError):
    """Errors arising from incorrect query syntax."""


class AccessError(QueryError):
    """User access error: insufficient privileges."""


class MissingTableError(QueryError):
    """Query on a table that has not been created."""


class DuplicateError(QueryError):
    """Integrity error caused by a duplicate entry into a unique key."""


class IntegrityError(QueryError):
    """Integrity error triggered by constraints."""


class UnknownAttributeError(QueryError):
    """Query references a column that does not exist."""
