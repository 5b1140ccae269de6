"""Exception types raised by driftguard."""


class DriftguardError(Exception):
    """Base class for driftguard errors."""


class ValidationError(DriftguardError, ValueError):
    """An identifier map document is malformed."""

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class ConflictError(ValidationError):
    """Two mappings would restore the same original identifier."""


class TypeMismatchError(DriftguardError):
    """A mapping's recorded resource type disagrees with the tree node."""

    def __init__(self, new_id: str, expected_type: str, actual_type: str):
        self.new_id = new_id
        self.expected_type = expected_type
        self.actual_type = actual_type
        super().__init__(
            f"Mapping for {new_id!r} expects {expected_type} but the resource is {actual_type}"
        )


class IdentifierMapIOError(DriftguardError, OSError):
    """The identifier map file could not be written."""
