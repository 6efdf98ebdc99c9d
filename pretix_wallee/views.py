import json
import logging

from django.contrib import messages
from django.db import transaction
from django.http.response import (
    Http404, HttpResponse, HttpResponseBadRequest, JsonResponse,
)
from django.shortcuts import get_object_or_404, redirect
from django.urls import reverse
from django.utils.crypto import constant_time_compare
from django.utils.decorators import method_decorator
from django.utils.functional import cached_property
from django.utils.translation import gettext_lazy as _
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from django.views.generic import TemplateView, View

from pretix.base.models.orders import Order, OrderPayment
from pretix.control.permissions import event_permission_required
from pretix.presale.views import EventViewMixin
from pretix.presale.views.order import OrderDetailMixin

from .api import WalleeApi
from .exceptions import NotFound
from .models import WalleeTransaction
from .services import TransactionState

logger = logging.getLogger('pretix_wallee')

# Seconds between reloads of the page shown while wallee has not reported back.
RETURN_REFRESH_INTERVAL = 3


class WalleePaymentMixin:
    @cached_property
    def payment(self):
        return get_object_or_404(self.order.payments, pk=self.kwargs['payment'])

    def check_payment(self):
        if not self.order:
            raise Http404(_('Unknown order code or not authorized to access this order.'))

        if self.payment.provider != 'wallee':
            raise Http404(_('Wrong payment provider'))

    def get_paid_redirect(self):
        if self.order.status == Order.STATUS_PAID:
            return self.get_order_url() + '?paid=yes'
        return self.get_order_url() + '?thanks=yes'


class ReturnView(EventViewMixin, OrderDetailMixin, WalleePaymentMixin, TemplateView):
    """
    The customer lands here from the wallee payment page. As long as the
    webhook has not reported an outcome, a page is shown that reloads itself.
    """
    template_name = 'pretix_wallee/return_pending.html'

    def dispatch(self, request, *args, **kwargs):
        self.request = request
        self.check_payment()

        token = (self.payment.info_data or {}).get('security_token')
        if not token or not constant_time_compare(token, kwargs['token']):
            raise Http404(_('Unknown order code or not authorized to access this order.'))

        return super().dispatch(request, *args, **kwargs)

    def get(self, request, *args, **kwargs):
        if self.payment.state == OrderPayment.PAYMENT_STATE_CONFIRMED:
            return redirect(self.get_paid_redirect())

        record = WalleeTransaction.objects.filter(payment=self.payment).first()
        state = record.state if record is not None else None
        if (kwargs['action'] == 'failure' or state in TransactionState.UNSUCCESSFUL
                or self.payment.state not in (OrderPayment.PAYMENT_STATE_CREATED,
                                              OrderPayment.PAYMENT_STATE_PENDING)):
            messages.error(request, _('The payment was not completed. Please try again.'))
            return redirect(self.get_order_url())

        if state in TransactionState.SUCCESSFUL:
            return redirect(self.get_order_url() + '?thanks=yes')

        return super().get(request, *args, **kwargs)

    def get_context_data(self, **kwargs):
        ctx = super().get_context_data(**kwargs)
        ctx['order'] = self.order
        ctx['payment'] = self.payment
        ctx['order_url'] = self.get_order_url()
        ctx['refresh_interval'] = RETURN_REFRESH_INTERVAL
        return ctx


@csrf_exempt
@require_POST
def webhook_view(request, *args, **kwargs):
    event = request.event
    payment_provider = event.get_payment_providers()['wallee']
    if not payment_provider.is_enabled:
        raise Http404()

    # First, make sure the webhook_secret matches.
    webhook_secret = payment_provider.settings.webhook_secret
    if not webhook_secret or not constant_time_compare(kwargs['webhook_secret'], webhook_secret):
        raise Http404()  # Intentionally be opaque, because it's a part of the URL.

    try:
        notification = json.load(request)  # Note, HttpRequest implements read().
    except ValueError:
        return HttpResponseBadRequest()

    try:
        entity_id = int(notification['entityId'])
        space_id = int(notification['spaceId'])
    except (KeyError, TypeError, ValueError):
        return HttpResponseBadRequest()

    if notification.get('listenerEntityTechnicalName', 'Transaction') != 'Transaction':
        # Only transaction webhooks are of interest.
        return HttpResponse(status=200)

    try:
        trans = WalleeTransaction.objects.select_related('payment').get(
            space_id=space_id, transaction_id=entity_id, order__event=event)
    except WalleeTransaction.DoesNotExist:
        return HttpResponseBadRequest()

    # Never trust the notification body; ask wallee for the current state.
    try:
        remote = payment_provider.get_api().read_transaction(space_id, entity_id)
    except WalleeApi.ApiError:
        logger.exception('Error on reading transaction %d of space %d', entity_id, space_id)
        return HttpResponse(status=502)
    if remote is None:
        return HttpResponseBadRequest()

    with transaction.atomic():
        trans = WalleeTransaction.objects.select_for_update().get(pk=trans.pk)
        payment_provider.sync_transaction(trans, remote)

    return JsonResponse({'state': trans.state})


@method_decorator(event_permission_required('can_change_orders'), name='dispatch')
class DeliveryDecisionView(View):
    """
    Accept or deny the delivery of a transaction that wallee put on hold.
    """

    @cached_property
    def payment(self):
        return get_object_or_404(
            OrderPayment,
            order__event=self.request.event,
            pk=self.kwargs['payment'],
            provider='wallee',
        )

    def get_order_url(self):
        return reverse('control:event.order', kwargs={
            'organizer': self.request.event.organizer.slug,
            'event': self.request.event.slug,
            'code': self.payment.order.code,
        })

    def post(self, request, *args, **kwargs):
        reconciler = self.payment.payment_provider.get_reconciler()
        try:
            if kwargs['decision'] == 'accept':
                reconciler.accept(self.payment)
            else:
                reconciler.deny(self.payment)
        except NotFound:
            messages.error(request, _('wallee does not know of a delivery decision for this transaction.'))
        except WalleeApi.ApiError as e:
            logger.exception('Error on delivery decision: ' + str(e))
            messages.error(request, _('The decision could not be sent to wallee.'))
        else:
            messages.success(request, _('The decision has been sent to wallee.'))

        return redirect(self.get_order_url())

    def get(self, request, *args, **kwargs):
        return redirect(self.get_order_url())
