from __future__ import annotations


class RosterError(Exception):
    pass


class NotFound(RosterError, LookupError):
    def __init__(self, entity: str, entity_id: object = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f'{entity} not found')


class AlreadyEnrolled(RosterError, ValueError):
    pass


class NotEnrolled(RosterError, ValueError):
    pass


class InvalidState(RosterError, ValueError):
    pass


class DependencyFailure(RosterError):
    """The backing store call itself failed (connection, lock, permission)."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        detail = f': {cause}' if cause is not None else ''
        super().__init__(f'{operation} failed{detail}')
