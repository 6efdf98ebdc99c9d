class ReconciliationError(Exception):
    pass


class VersioningConflict(ReconciliationError):
    """
        The transaction kept changing under us; all confirmation attempts hit
        a stale version.
    """

    def __init__(self, transaction_id, attempts: int):
        super().__init__('Transaction %s could not be confirmed after %d attempts due to concurrent updates.'
                         % (transaction_id, attempts))
        self.transaction_id = transaction_id
        self.attempts = attempts


class NotFound(ReconciliationError):
    def __init__(self, entity: str, transaction_id):
        super().__init__('No %s found for transaction %s.' % (entity, transaction_id))
        self.entity = entity
        self.transaction_id = transaction_id


class ConfigurationError(ReconciliationError):
    pass
