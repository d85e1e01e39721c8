"""Exception types raised by the message store and correlator."""


class OutreachError(Exception):
    """Base class for all domain errors."""


class ValidationError(OutreachError):
    """Rejected input: empty content, no recipients, past-dated schedule."""


class NotFoundError(OutreachError):
    """The referenced message (or link session) does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")
