import logging

from pretix.base.models import OrderPayment
from pretix.base.payment import PaymentException
from pretix.base.services.tasks import EventTask
from pretix.celery_app import app

from .payment import WalleePaymentProvider
from .services import TransactionState

logger = logging.getLogger('pretix_wallee')

# How long a charge waits for the webhook to report the outcome.
CHARGE_MAX_WAIT = 30


@app.task(base=EventTask, throws=(PaymentException,))
def charge_payment(event, payment: int, token, max_wait: float = CHARGE_MAX_WAIT) -> bool:
    """
    Charge a stored token for the payment without customer interaction and
    wait until wallee reports that the transaction went through.

    Returns ``False`` when the transaction failed or the wait timed out.
    """
    payment = OrderPayment.objects.select_related('order').get(pk=payment, order__event=event)
    provider = WalleePaymentProvider(event)
    provider.charge(payment, token)

    reached = provider.get_poller().wait_for_state(
        payment.order_id,
        TransactionState.SUCCESSFUL,
        max_wait=max_wait,
        fail_states=TransactionState.UNSUCCESSFUL,
    )
    if not reached:
        logger.info('Charge of payment %s has not succeeded after %s seconds.', payment.full_id, max_wait)
    return reached
