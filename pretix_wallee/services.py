import logging
import threading
import time
from collections import namedtuple
from typing import Any, Callable, Collection, Dict, Optional

from .api import WalleeApi
from .assembler import OrderDataAssembler
from .exceptions import NotFound, VersioningConflict

logger = logging.getLogger('pretix_wallee')


class TransactionState:
    CREATE = 'CREATE'
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    PROCESSING = 'PROCESSING'
    FAILED = 'FAILED'
    AUTHORIZED = 'AUTHORIZED'
    VOIDED = 'VOIDED'
    COMPLETED = 'COMPLETED'
    FULFILL = 'FULFILL'
    DECLINE = 'DECLINE'

    SUCCESSFUL = frozenset([AUTHORIZED, COMPLETED, FULFILL])
    UNSUCCESSFUL = frozenset([FAILED, VOIDED, DECLINE])


# status is one of 'confirmed', 'created' or 'conflict'
ConfirmOutcome = namedtuple('ConfirmOutcome', ['status', 'transaction'])


class TransactionReconciler():
    """
    Keep the wallee transaction of a payment in line with the pretix order.

    The remote transaction is changed concurrently (webhooks, the customer on
    the payment page), so every confirmation attempt re-reads it and decides
    again between confirming it and creating a new one.
    """

    MAX_CONFIRM_ATTEMPTS = 5

    def __init__(self, api: WalleeApi, assembler: OrderDataAssembler, space_id: int,
                 space_view_id: Optional[int] = None,
                 attach_transaction: Callable[[Any, Dict[str, Any]], None] = None):
        self.api = api
        self.assembler = assembler
        self.space_id = space_id
        self.space_view_id = space_view_id
        self.attach_transaction = attach_transaction

    @staticmethod
    def get_transaction_id(payment) -> Optional[int]:
        return (payment.info_data or {}).get('transaction_id')

    def get_space_id(self, payment) -> int:
        return (payment.info_data or {}).get('space_id') or self.space_id

    def fetch_transaction(self, payment) -> Optional[Dict[str, Any]]:
        transaction_id = self.get_transaction_id(payment)
        if transaction_id is None:
            return None
        return self.api.read_transaction(self.get_space_id(payment), transaction_id)

    def confirm_or_create(self, payment, invoice=None, charge_flow: bool = False, token=None) -> Dict[str, Any]:
        """
            Confirm the pending transaction of the payment with the current
            order data, or create a fresh one if there is no pending one.
        """
        self.assembler.check_flow(payment, charge_flow)

        for attempt in range(1, self.MAX_CONFIRM_ATTEMPTS + 1):
            outcome = self._confirm_attempt(payment, invoice, charge_flow, token)
            if outcome.status != 'conflict':
                return outcome.transaction
            logger.info('Version conflict while confirming transaction %s of payment %s (attempt %d of %d).',
                        self.get_transaction_id(payment), payment.pk, attempt, self.MAX_CONFIRM_ATTEMPTS)

        raise VersioningConflict(self.get_transaction_id(payment), self.MAX_CONFIRM_ATTEMPTS)

    def _confirm_attempt(self, payment, invoice, charge_flow, token) -> ConfirmOutcome:
        transaction = self.fetch_transaction(payment)
        if transaction is None or transaction.get('state') != TransactionState.PENDING:
            return ConfirmOutcome('created', self.create_transaction(payment, invoice, charge_flow, token))

        pending = {
            'id': transaction['id'],
            'version': transaction['version'],
        }
        self.assemble_transaction_data(pending, payment, invoice, charge_flow, token)
        try:
            confirmed = self.api.confirm_transaction(self.get_space_id(payment), pending)
        except WalleeApi.VersioningError:
            return ConfirmOutcome('conflict', None)
        return ConfirmOutcome('confirmed', confirmed)

    def create_transaction(self, payment, invoice=None, charge_flow: bool = False, token=None) -> Dict[str, Any]:
        create = {
            'customersPresence': 'VIRTUAL_PRESENT',
            'autoConfirmationEnabled': False,
        }
        if self.space_view_id:
            create['spaceViewId'] = self.space_view_id
        self.assemble_transaction_data(create, payment, invoice, charge_flow, token)

        transaction = self.api.create_transaction(self.get_space_id(payment), create)
        logger.info('Created transaction %s for payment %s.', transaction.get('id'), payment.pk)

        if self.attach_transaction is not None:
            self.attach_transaction(payment, transaction)
        return transaction

    def assemble_transaction_data(self, target, payment, invoice=None, charge_flow=False, token=None):
        return self.assembler.assemble(target, payment, invoice, charge_flow, token)

    def complete(self, payment):
        return self.api.complete_online(self.get_space_id(payment), self.get_transaction_id(payment))

    def void(self, payment):
        return self.api.void_online(self.get_space_id(payment), self.get_transaction_id(payment))

    def accept(self, payment):
        indication = self.get_delivery_indication(payment)
        return self.api.mark_delivery_indication(self.get_space_id(payment), indication['id'], suitable=True)

    def deny(self, payment):
        indication = self.get_delivery_indication(payment)
        return self.api.mark_delivery_indication(self.get_space_id(payment), indication['id'], suitable=False)

    def get_delivery_indication(self, payment) -> Dict[str, Any]:
        return self._search_one(payment, 'delivery-indication', 'transaction.id')

    def get_transaction_invoice(self, payment) -> Dict[str, Any]:
        return self._search_one(payment, 'transaction-invoice', 'completion.lineItemVersion.transaction.id')

    def _search_one(self, payment, service: str, field_name: str) -> Dict[str, Any]:
        transaction_id = self.get_transaction_id(payment)
        result = self.api.search(
            service,
            self.get_space_id(payment),
            WalleeApi.entity_filter(field_name, transaction_id),
            limit=1,
        )
        if not result:
            raise NotFound(service.replace('-', ' '), transaction_id)
        return result[0]


class StatePoller():
    """
    Wait for the locally stored transaction state to reach one of the given
    states. Only the local projection is read; keeping it current is up to the
    webhook.
    """

    POLL_INTERVAL = 2

    def __init__(self, lookup: Callable[[Any], Any], poll_interval: float = None,
                 clock: Callable[[], float] = time.monotonic):
        self.lookup = lookup
        self.poll_interval = self.POLL_INTERVAL if poll_interval is None else poll_interval
        self.clock = clock

    def wait_for_state(self, order_id, states: Collection[str], max_wait: float = 10,
                       fail_states: Collection[str] = (), cancel: threading.Event = None) -> bool:
        """
            Returns True once the state is in states. Returns False when
            max_wait seconds have passed, when a state in fail_states is seen
            or when cancel is set.
        """
        if cancel is None:
            cancel = threading.Event()

        start = self.clock()
        while True:
            if self.clock() - start >= max_wait:
                return False

            info = self.lookup(order_id)
            state = getattr(info, 'state', None)
            if state in states:
                return True
            if state in fail_states:
                logger.info('Transaction of order %s ended in state %s while waiting for %s.',
                            order_id, state, ', '.join(sorted(states)))
                return False

            if cancel.wait(self.poll_interval):
                return False
