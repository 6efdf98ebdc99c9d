import logging
import re
import string
from collections import OrderedDict

from django import forms
from django.middleware.csrf import get_token
from django.urls import reverse
from django.utils.crypto import get_random_string
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _

from pretix.base.models.items import Quota
from pretix.base.models.orders import OrderPayment
from pretix.base.payment import BasePaymentProvider, PaymentException
from pretix.multidomain.urlreverse import build_absolute_uri

from .api import WalleeApi
from .assembler import OrderDataAssembler
from .exceptions import NotFound, ReconciliationError
from .models import WalleeTransaction
from .services import StatePoller, TransactionReconciler, TransactionState

logger = logging.getLogger('pretix_wallee')


class WalleePaymentProvider(BasePaymentProvider):
    identifier = 'wallee'
    verbose_name = 'wallee'
    public_name = _('Credit card and other payment methods')

    @property
    def settings_form_fields(self):
        return OrderedDict(
            list(super().settings_form_fields.items()) + [
                ('api_url', forms.URLField(
                    label=_('wallee API endpoint'),
                    help_text=_('Starts with https://. Trailing slash will be removed.'),
                    required=True,
                    initial='https://app-wallee.com/api',
                )),
                ('space_id', forms.IntegerField(
                    label=_('Space ID'),
                    required=True,
                )),
                ('user_id', forms.IntegerField(
                    label=_('Application user ID'),
                    help_text=_('The user needs permission to create, confirm, complete and void transactions.'),
                    required=True,
                )),
                ('authentication_key', forms.CharField(
                    widget=forms.TextInput,
                    label=_('Application user authentication key'),
                    required=True,
                )),
                ('space_view_id', forms.IntegerField(
                    label=_('Space view ID'),
                    help_text=_('Optional. Controls the look of the payment page.'),
                    required=False,
                )),
                ('method_configuration_id', forms.IntegerField(
                    label=_('Payment method configuration ID'),
                    help_text=_('Used to charge stored tokens without customer interaction.'),
                    required=False,
                )),
                ('shipping_description', forms.CharField(
                    widget=forms.Textarea,
                    label=_('Shipping method'),
                    help_text=_('Sent along when the order contains non-admission products. '
                                'Only the first line is used.'),
                    required=False,
                )),
                ('complete_on_authorization', forms.BooleanField(
                    label=_('Complete transactions as soon as they are authorized'),
                    required=False,
                    initial=True,
                )),
            ]
        )

    def settings_form_clean(self, cleaned_data):
        # Remove trailing slash from api_url
        api_url = re.sub(r'/$', '', cleaned_data.get('payment_wallee_api_url') or '')
        cleaned_data['payment_wallee_api_url'] = api_url

        return cleaned_data

    def get_webhook_secret(self):
        secret = self.settings.webhook_secret
        if secret is None:
            secret = get_random_string(length=32, allowed_chars=string.ascii_letters + string.digits)
            self.settings.webhook_secret = secret

        return secret

    def settings_content_render(self, request):
        return format_html(
            "<div class='alert alert-info'>{} <b>{}</b><br /><code>{}</code></div>",
            _("Configure this URL as webhook URL for the Transaction entity in your wallee space."),
            _("The URL contains a secret, so do not share it."),
            build_absolute_uri(self.event, 'plugins:pretix_wallee:webhook',
                               kwargs={'webhook_secret': self.get_webhook_secret()}),
        )

    def payment_is_valid_session(self, request):
        # We do not store any session info
        return True

    def payment_form_render(self, request, total):
        return _('After confirming your order you will be redirected to our payment partner wallee '
                 'to choose a payment method and complete the payment.')

    def checkout_confirm_render(self, request):
        return _('You will be redirected to wallee in the next step.')

    def get_api(self) -> WalleeApi:
        return WalleeApi(
            base_url=self.settings.api_url,
            user_id=self.settings.user_id,
            authentication_key=self.settings.authentication_key,
        )

    def get_reconciler(self) -> TransactionReconciler:
        assembler = OrderDataAssembler(
            method_configuration_id=self.settings.get('method_configuration_id', as_type=int),
            shipping_description=self.settings.shipping_description,
        )
        return TransactionReconciler(
            api=self.get_api(),
            assembler=assembler,
            space_id=self.settings.get('space_id', as_type=int),
            space_view_id=self.settings.get('space_view_id', as_type=int),
            attach_transaction=self.attach_transaction,
        )

    def get_poller(self) -> StatePoller:
        return StatePoller(lookup=WalleeTransaction.get_by_order_id)

    def attach_transaction(self, payment, transaction):
        """
            Remember a newly created transaction on the payment and in the
            local state table.
        """
        space_id = (payment.info_data or {}).get('space_id') or self.settings.get('space_id', as_type=int)
        info = dict(payment.info_data or {})
        info['space_id'] = space_id
        info['transaction_id'] = transaction['id']
        payment.info_data = info
        payment.save(update_fields=['info'])

        # A replaced transaction no longer belongs to the payment.
        replaced = WalleeTransaction.objects.filter(payment=payment).exclude(
            space_id=space_id, transaction_id=transaction['id'])
        for record in replaced:
            record.payment = None
            record.save(update_fields=['payment', 'updated'])
        WalleeTransaction.objects.update_or_create(
            space_id=space_id,
            transaction_id=transaction['id'],
            defaults={
                'order': payment.order,
                'payment': payment,
                'state': transaction.get('state') or TransactionState.PENDING,
            },
        )

    @staticmethod
    def get_invoice(payment):
        return payment.order.invoices.filter(is_cancellation=False).last()

    @staticmethod
    def ensure_security_token(payment):
        info = dict(payment.info_data or {})
        if not info.get('security_token'):
            info['security_token'] = get_random_string(length=32, allowed_chars=string.ascii_letters + string.digits)
            payment.info_data = info
            payment.save(update_fields=['info'])
        return info['security_token']

    def execute_payment(self, request, payment):
        self.ensure_security_token(payment)
        reconciler = self.get_reconciler()

        try:
            transaction = reconciler.confirm_or_create(payment, invoice=self.get_invoice(payment))
            payment_page_url = reconciler.api.build_payment_page_url(
                reconciler.get_space_id(payment), transaction['id'])
        except (WalleeApi.ApiError, ReconciliationError) as e:
            logger.exception('Error on confirming transaction: ' + str(e))
            raise PaymentException(_('We could not contact our payment partner. Please try again.')) from e

        self.store_state(reconciler.get_space_id(payment), transaction)

        payment.state = OrderPayment.PAYMENT_STATE_PENDING
        payment.save(update_fields=['state'])

        return payment_page_url

    def store_state(self, space_id, transaction):
        record = WalleeTransaction.objects.filter(space_id=space_id, transaction_id=transaction['id']).first()
        if record is None:
            return None
        record.state = transaction.get('state') or TransactionState.CONFIRMED
        record.save(update_fields=['state', 'updated'])
        return record

    def charge(self, payment, token):
        """
            Confirm the transaction without customer interaction, restricted
            to the configured payment method and the given stored token.
        """
        reconciler = self.get_reconciler()
        try:
            transaction = reconciler.confirm_or_create(
                payment, invoice=self.get_invoice(payment), charge_flow=True, token=token)
        except (WalleeApi.ApiError, ReconciliationError) as e:
            logger.exception('Error on charging transaction: ' + str(e))
            raise PaymentException(_('The payment could not be charged.')) from e

        self.store_state(reconciler.get_space_id(payment), transaction)
        if payment.state == OrderPayment.PAYMENT_STATE_CREATED:
            payment.state = OrderPayment.PAYMENT_STATE_PENDING
            payment.save(update_fields=['state'])

        return transaction

    def cancel_payment(self, payment):
        record = WalleeTransaction.objects.filter(payment=payment).first()
        if record is not None and record.state == TransactionState.AUTHORIZED:
            try:
                self.get_reconciler().void(payment)
            except WalleeApi.ApiError as e:
                logger.exception('Error on voiding transaction: ' + str(e))
                raise PaymentException(_('The transaction could not be voided at wallee.')) from e
            record.state = TransactionState.VOIDED
            record.save(update_fields=['state', 'updated'])

            # Voided, so the pending payment can be canceled.
            payment.state = OrderPayment.PAYMENT_STATE_CANCELED
            payment.save(update_fields=['state'])
            return

        super().cancel_payment(payment)

    def sync_transaction(self, record: WalleeTransaction, transaction):
        """
            Apply a freshly read transaction to the local state and to the
            pretix payment. Called by the webhook.
        """
        state = transaction['state']
        if record.state == state:
            return record

        logger.info('Transaction %s moved from %s to %s.', record.transaction_id, record.state, state)
        record.state = state
        record.save(update_fields=['state', 'updated'])

        payment = record.payment
        if payment is None:
            return record

        open_states = (OrderPayment.PAYMENT_STATE_CREATED, OrderPayment.PAYMENT_STATE_PENDING)
        if state == TransactionState.AUTHORIZED:
            if self.settings.get('complete_on_authorization', as_type=bool, default=True):
                self.get_reconciler().complete(payment)
        elif state == TransactionState.FULFILL:
            if payment.state in open_states:
                try:
                    payment.confirm()
                except Quota.QuotaExceededException:
                    # The payment is marked paid nonetheless.
                    pass
            self.store_transaction_invoice(payment)
        elif state in TransactionState.UNSUCCESSFUL and payment.state in open_states:
            payment.fail()

        return record

    def store_transaction_invoice(self, payment):
        try:
            invoice = self.get_reconciler().get_transaction_invoice(payment)
        except NotFound as e:
            logger.warning(str(e))
            return

        payment.refresh_from_db()
        info = dict(payment.info_data or {})
        info['transaction_invoice_id'] = invoice['id']
        payment.info_data = info
        payment.save(update_fields=['info'])

    def payment_control_render(self, request, payment):
        record = WalleeTransaction.objects.filter(payment=payment).first()
        if record is None:
            return ''

        html = format_html(
            '<dl class="dl-horizontal"><dt>{}</dt><dd>{}</dd><dt>{}</dt><dd>{}</dd></dl>',
            _('Transaction ID'), record.transaction_id,
            _('Transaction state'), record.get_state_display(),
        )
        if record.state == TransactionState.COMPLETED:
            for decision, label in (('accept', _('Accept delivery')), ('deny', _('Deny delivery'))):
                html += format_html(
                    '<form method="post" action="{}" class="form-inline" style="display:inline">'
                    '<input type="hidden" name="csrfmiddlewaretoken" value="{}" />'
                    '<button type="submit" class="btn btn-default">{}</button></form> ',
                    reverse('plugins:pretix_wallee:delivery_decision', kwargs={
                        'organizer': self.event.organizer.slug,
                        'event': self.event.slug,
                        'payment': payment.pk,
                        'decision': decision,
                    }),
                    get_token(request),
                    label,
                )
        return html

    def api_payment_details(self, payment):
        info = payment.info_data or {}
        return {
            'space_id': info.get('space_id'),
            'transaction_id': info.get('transaction_id'),
            'transaction_invoice_id': info.get('transaction_invoice_id'),
        }
