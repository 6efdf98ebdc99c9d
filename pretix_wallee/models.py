from django.db import models

from pretix.base.models import Order, OrderPayment

from .services import TransactionState


class WalleeTransaction(models.Model):
    '''
        Local copy of a wallee transaction's state. Written when a transaction
        is created and whenever a webhook reports a change; read by everything
        that needs to know how far the payment got without asking wallee.
    '''

    STATE_CHOICES = [
        (TransactionState.CREATE, 'Create'),
        (TransactionState.PENDING, 'Pending'),
        (TransactionState.CONFIRMED, 'Confirmed'),
        (TransactionState.PROCESSING, 'Processing'),
        (TransactionState.FAILED, 'Failed'),
        (TransactionState.AUTHORIZED, 'Authorized'),
        (TransactionState.VOIDED, 'Voided'),
        (TransactionState.COMPLETED, 'Completed'),
        (TransactionState.FULFILL, 'Fulfill'),
        (TransactionState.DECLINE, 'Decline'),
    ]

    space_id = models.BigIntegerField()
    transaction_id = models.BigIntegerField()
    state = models.CharField(max_length=16, choices=STATE_CHOICES, default=TransactionState.PENDING)
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='wallee_transactions')
    payment = models.OneToOneField(
        OrderPayment,
        on_delete=models.PROTECT,
        related_name='wallee_transaction',
        null=True)
    updated = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = (('space_id', 'transaction_id'),)

    @classmethod
    def get_by_order_id(cls, order_id):
        '''
            The transaction of the order's current payment. Rows detached from
            their payment are ignored, and an open payment wins over older
            payments of the same order.
        '''
        attached = cls.objects.filter(
            order_id=order_id, payment__isnull=False,
        ).order_by('-payment_id', '-pk')
        current = attached.filter(payment__state__in=(
            OrderPayment.PAYMENT_STATE_CREATED, OrderPayment.PAYMENT_STATE_PENDING,
        )).first()
        return current or attached.first()
