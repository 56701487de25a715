"""Exception hierarchy for the expertise engine."""


class ExpertiseError(Exception):
    """Base class for all engine errors."""


class ValidationError(ExpertiseError, ValueError):
    """A record field is missing or malformed. The record is not written."""

    def __init__(self, message: str, field: str | None = None, record_id: str | None = None):
        self.field = field
        self.record_id = record_id
        super().__init__(message)


class DuplicateIdError(ExpertiseError):
    def __init__(self, record_id: str, domain: str | None = None):
        self.record_id = record_id
        self.domain = domain
        where = f' in domain "{domain}"' if domain else ""
        super().__init__(f'Record "{record_id}" already exists{where}.')


class RecordNotFoundError(ExpertiseError):
    def __init__(self, identifier: str, domain: str | None = None):
        self.identifier = identifier
        self.domain = domain
        where = f' in domain "{domain}"' if domain else ""
        super().__init__(f'Record "{identifier}" not found{where}.')


class AmbiguousIdError(ExpertiseError):
    """A prefix matched more than one record."""

    def __init__(self, identifier: str, matches: list[str], domain: str | None = None):
        self.identifier = identifier
        self.matches = matches
        self.domain = domain
        super().__init__(
            f'Ambiguous identifier "{identifier}" matches {len(matches)} records: '
            f"{', '.join(matches)}. Use more characters to disambiguate."
        )


class LockTimeoutError(ExpertiseError):
    def __init__(self, lock_path: str, timeout: float):
        self.lock_path = lock_path
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for lock on {lock_path}. "
            "If no other process is writing, delete the lock file manually."
        )


class StorageIOError(ExpertiseError):
    """Underlying read/write/rename failure. No partial state is persisted."""

    def __init__(self, message: str, path: str | None = None, domain: str | None = None):
        self.path = path
        self.domain = domain
        super().__init__(message)


class CorruptRecordError(ExpertiseError):
    """One line of a domain file could not be parsed into a record."""

    def __init__(self, domain: str, line_number: int, raw: str, reason: str):
        self.domain = domain
        self.line_number = line_number
        self.raw = raw
        self.reason = reason
        super().__init__(f'{domain}:{line_number}: {reason}')


class NotInitializedError(ExpertiseError):
    def __init__(self, start: str):
        self.start = start
        super().__init__(f"No .mulch/ directory found from {start}. Initialize the project first.")


class DomainNotFoundError(ExpertiseError):
    def __init__(self, domain: str, available: list[str]):
        self.domain = domain
        self.available = available
        listing = ", ".join(available) if available else "(none)"
        super().__init__(f'Domain "{domain}" not found in config. Available domains: {listing}')


class DomainExistsError(ExpertiseError):
    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f'Domain "{domain}" already exists.')


class InvalidDomainNameError(ExpertiseError, ValueError):
    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(
            f'Invalid domain name: "{domain}". Only alphanumeric characters, '
            "hyphens, and underscores are allowed."
        )


class ConfigError(ExpertiseError, ValueError):
    """Configuration file is unreadable or fails validation."""
