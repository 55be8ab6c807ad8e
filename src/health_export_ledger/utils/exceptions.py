"""Custom exceptions for the health export ledger."""


class HealthLedgerError(Exception):
    """Base exception for all health export ledger errors."""

    pass


class ConfigurationError(HealthLedgerError):
    """Raised when there is a configuration error."""

    pass


class ParseError(HealthLedgerError):
    """Raised when a source file or row cannot be parsed."""

    pass


class SchemaError(HealthLedgerError):
    """Raised when a source has no date column or an unknown metric is requested."""

    pass


class ReconciliationError(HealthLedgerError):
    """Raised when a reconciliation pass fails."""

    pass


class StoreError(HealthLedgerError):
    """Raised when a query or load against the durable store fails."""

    pass


class ValidationError(HealthLedgerError):
    """Raised when caller-supplied arguments are invalid."""

    pass


class MergeCollisionWarning(UserWarning):
    """Emitted when two sources write the same field for the same date."""

    pass
