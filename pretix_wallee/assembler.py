import re
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from django.core.exceptions import ObjectDoesNotExist

from .exceptions import ConfigurationError

# wallee field limits
SALUTATION_LENGTH = 20
NAME_LENGTH = 100
POSTCODE_LENGTH = 40
STREET_LENGTH = 300
SHIPPING_METHOD_LENGTH = 200
LINE_ITEM_NAME_LENGTH = 150
TAX_TITLE_LENGTH = 40

_linebreaks = re.compile(r'\r\n|\r|\n')


def sanitize(text: Optional[str], max_len: int, keep_linebreaks: bool = False) -> Optional[str]:
    """
        Make free text acceptable to a wallee field: line breaks are replaced
        by spaces (or normalized to '\\n' when kept) and the result is cut to
        max_len characters.
    """
    if text is None:
        return None

    text = str(text)
    if keep_linebreaks:
        text = _linebreaks.sub('\n', text)
    else:
        text = _linebreaks.sub(' ', text)
    return text[:max_len]


def first_line(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return _linebreaks.split(str(text), maxsplit=1)[0]


def security_token(payment) -> Optional[str]:
    return (payment.info_data or {}).get('security_token')


class OrderDataAssembler():
    """
    Map a pretix payment (and its order) onto the fields shared by the
    transaction create and confirm payloads.
    """

    def __init__(self, method_configuration_id: Optional[int] = None,
                 shipping_description: Optional[str] = None,
                 url_builder: Callable[[str, Any, str], str] = None):
        self.method_configuration_id = method_configuration_id
        self.shipping_description = shipping_description
        self.url_builder = url_builder or build_return_url

    def check_flow(self, payment, charge_flow: bool):
        """
            Fail on configuration problems before anything is sent to wallee.
        """
        if charge_flow:
            if not self.method_configuration_id:
                raise ConfigurationError('A payment method configuration is required for charging without '
                                         'customer interaction.')
        elif not security_token(payment):
            raise ConfigurationError('The security token needs to be set on the payment to build the URL.')

    def assemble(self, target: Dict[str, Any], payment, invoice=None, charge_flow: bool = False,
                 token=None) -> Dict[str, Any]:
        self.check_flow(payment, charge_flow)
        order = payment.order

        target['currency'] = order.event.currency
        target['billingAddress'] = self.convert_billing_address(order)
        target['shippingAddress'] = self.convert_shipping_address(order)
        target['customerEmailAddress'] = self.get_customer_email_address(order)
        target['language'] = order.locale
        target['lineItems'] = adjust_line_items(self.convert_line_items(order), payment.amount)
        target['merchantReference'] = order.code
        if invoice is not None:
            target['invoiceMerchantReference'] = invoice.full_invoice_no
        if order.customer is not None:
            target['customerId'] = order.customer.identifier
        if target['shippingAddress'] is not None and self.shipping_description:
            target['shippingMethod'] = sanitize(first_line(self.shipping_description), SHIPPING_METHOD_LENGTH)

        if charge_flow:
            target['allowedPaymentMethodConfigurations'] = [self.method_configuration_id]
        else:
            token_value = security_token(payment)
            target['successUrl'] = self.url_builder('success', payment, token_value)
            target['failedUrl'] = self.url_builder('failure', payment, token_value)

        if token is not None:
            target['token'] = getattr(token, 'id', token)

        return target

    @staticmethod
    def get_customer_email_address(order) -> Optional[str]:
        if order.email:
            return order.email
        if order.customer is not None:
            return order.customer.email
        return None

    @staticmethod
    def get_invoice_address(order):
        try:
            return order.invoice_address
        except ObjectDoesNotExist:
            return None

    def convert_billing_address(self, order) -> Optional[Dict[str, Any]]:
        invoice_address = self.get_invoice_address(order)
        if invoice_address is None:
            return None

        address = self.convert_address(invoice_address)
        address['emailAddress'] = self.get_customer_email_address(order)
        if getattr(order, 'phone', None):
            address['phoneNumber'] = str(order.phone)
        return address

    def convert_shipping_address(self, order) -> Optional[Dict[str, Any]]:
        # pretix keeps a single postal address; it only doubles as shipping
        # address when the order contains non-admission (deliverable) products.
        if not any(not position.item.admission for position in order.positions.all()):
            return None

        invoice_address = self.get_invoice_address(order)
        if invoice_address is None:
            return None

        address = self.convert_address(invoice_address)
        address['emailAddress'] = self.get_customer_email_address(order)
        return address

    @staticmethod
    def convert_address(invoice_address) -> Dict[str, Any]:
        name_parts = invoice_address.name_parts or {}
        family_name = name_parts.get('family_name')
        given_name = name_parts.get('given_name')
        if family_name is None and given_name is None:
            family_name = name_parts.get('full_name') or invoice_address.name

        country = invoice_address.country
        return {
            'salutation': sanitize(name_parts.get('salutation'), SALUTATION_LENGTH),
            'city': sanitize(invoice_address.city, NAME_LENGTH),
            'country': getattr(country, 'code', country) or None,
            'familyName': sanitize(family_name, NAME_LENGTH),
            'givenName': sanitize(given_name, NAME_LENGTH),
            'organizationName': sanitize(invoice_address.company, NAME_LENGTH),
            'postalState': invoice_address.state or None,
            'postcode': sanitize(invoice_address.zipcode, POSTCODE_LENGTH),
            'street': sanitize(invoice_address.street, STREET_LENGTH, keep_linebreaks=True),
        }

    def convert_line_items(self, order) -> List[Dict[str, Any]]:
        line_items = []
        for position in order.positions.all():
            name = str(position.item.name)
            if position.variation is not None:
                name = '%s - %s' % (name, position.variation.value)
            line_items.append({
                'uniqueId': 'position-%d' % position.positionid,
                'sku': str(position.item.pk),
                'name': sanitize(name, LINE_ITEM_NAME_LENGTH),
                'quantity': 1,
                'amountIncludingTax': str(position.price),
                'type': 'PRODUCT',
                'taxes': self.convert_taxes(position.tax_rule, position.tax_rate),
            })

        for fee in order.fees.all():
            line_items.append({
                'uniqueId': 'fee-%d' % fee.pk,
                'sku': 'fee-%s' % fee.fee_type,
                'name': sanitize(fee.description or fee.get_fee_type_display(), LINE_ITEM_NAME_LENGTH),
                'quantity': 1,
                'amountIncludingTax': str(fee.value),
                'type': 'FEE',
                'taxes': self.convert_taxes(fee.tax_rule, fee.tax_rate),
            })

        return line_items

    @staticmethod
    def convert_taxes(tax_rule, tax_rate) -> List[Dict[str, Any]]:
        if not tax_rate:
            return []
        title = str(tax_rule.name) if tax_rule is not None else 'Tax'
        return [{'title': sanitize(title, TAX_TITLE_LENGTH), 'rate': str(tax_rate)}]


def adjust_line_items(line_items: List[Dict[str, Any]], amount: Decimal) -> List[Dict[str, Any]]:
    """
        wallee charges the sum of the line items. When the payment covers only
        part of the order (or more of it), one extra item makes up the difference.
    """
    total = sum((Decimal(item['amountIncludingTax']) for item in line_items), Decimal('0.00'))
    difference = Decimal(amount) - total
    if difference < 0:
        line_items.append({
            'uniqueId': 'already-paid',
            'sku': 'already-paid',
            'name': 'Already paid',
            'quantity': 1,
            'amountIncludingTax': str(difference),
            'type': 'DISCOUNT',
            'taxes': [],
        })
    elif difference > 0:
        line_items.append({
            'uniqueId': 'adjustment',
            'sku': 'adjustment',
            'name': 'Adjustment',
            'quantity': 1,
            'amountIncludingTax': str(difference),
            'type': 'FEE',
            'taxes': [],
        })
    return line_items


def build_return_url(action: str, payment, token: str) -> str:
    from pretix.multidomain.urlreverse import build_absolute_uri

    order = payment.order
    return build_absolute_uri(order.event, 'plugins:pretix_wallee:return', kwargs={
        'order': order.code,
        'secret': order.secret,
        'payment': payment.pk,
        'action': action,
        'token': token,
    })
