from decimal import Decimal
from types import SimpleNamespace

import pytest

from pretix_wallee.assembler import OrderDataAssembler, first_line, sanitize
from pretix_wallee.exceptions import ConfigurationError


def test_sanitize_keeps_short_text():
    street = 'x' * 250
    assert sanitize(street, 300) == street


def test_sanitize_truncates_to_limit():
    assert len(sanitize('x' * 350, 300)) == 300


def test_sanitize_replaces_line_breaks():
    assert sanitize('Zur\r\nich\nCity\r', 100) == 'Zur ich City '


def test_sanitize_can_keep_line_breaks():
    assert sanitize('Main Street 1\r\nBuilding B', 300, keep_linebreaks=True) == 'Main Street 1\nBuilding B'


def test_sanitize_none():
    assert sanitize(None, 20) is None


def test_first_line():
    assert first_line('Postal delivery\nShipped within two days') == 'Postal delivery'
    assert first_line('Pickup') == 'Pickup'


def test_interactive_flow_sets_redirect_urls(assembler, payment):
    data = assembler.assemble({}, payment)

    assert data['successUrl'] == 'https://shop.test/success/7/TOKEN'
    assert data['failedUrl'] == 'https://shop.test/failure/7/TOKEN'
    assert 'allowedPaymentMethodConfigurations' not in data


def test_interactive_flow_without_token_fails(assembler, payment):
    payment.info_data = {'space_id': 1, 'transaction_id': 42}

    with pytest.raises(ConfigurationError):
        assembler.assemble({}, payment)


def test_charge_flow_restricts_payment_method(assembler, payment):
    data = assembler.assemble({}, payment, charge_flow=True)

    assert data['allowedPaymentMethodConfigurations'] == [555]
    assert 'successUrl' not in data
    assert 'failedUrl' not in data


def test_charge_flow_does_not_need_security_token(assembler, payment):
    payment.info_data = {}

    data = assembler.assemble({}, payment, charge_flow=True)

    assert 'successUrl' not in data


def test_charge_flow_without_configuration_fails(payment):
    with pytest.raises(ConfigurationError):
        OrderDataAssembler().assemble({}, payment, charge_flow=True)


def test_order_fields(assembler, payment):
    data = assembler.assemble({'id': 42, 'version': 3}, payment)

    assert data['id'] == 42
    assert data['version'] == 3
    assert data['currency'] == 'CHF'
    assert data['language'] == 'en'
    assert data['merchantReference'] == 'FOOBAR'
    assert data['customerEmailAddress'] == 'jane@example.org'
    assert 'invoiceMerchantReference' not in data
    assert 'customerId' not in data
    assert 'token' not in data


def test_invoice_and_token_references(assembler, payment):
    invoice = SimpleNamespace(full_invoice_no='INV-00012')
    token = SimpleNamespace(id=9001)

    data = assembler.assemble({}, payment, invoice=invoice, token=token)

    assert data['invoiceMerchantReference'] == 'INV-00012'
    assert data['token'] == 9001


def test_email_falls_back_to_customer_account(assembler, payment, order):
    order.email = None
    order.customer = SimpleNamespace(email='account@example.org', identifier='C0FFEE')

    data = assembler.assemble({}, payment)

    assert data['customerEmailAddress'] == 'account@example.org'
    assert data['billingAddress']['emailAddress'] == 'account@example.org'
    assert data['customerId'] == 'C0FFEE'


def test_billing_address(assembler, payment, invoice_address):
    invoice_address.street = 'S' * 350
    invoice_address.city = 'Zur\nich'
    invoice_address.zipcode = '1' * 50
    invoice_address.company = 'C' * 120
    invoice_address.name_parts['salutation'] = 'Very Honourable Dr. Prof.'

    address = assembler.assemble({}, payment)['billingAddress']

    assert address['street'] == 'S' * 300
    assert address['city'] == 'Zur ich'
    assert address['postcode'] == '1' * 40
    assert address['organizationName'] == 'C' * 100
    assert address['salutation'] == 'Very Honourable Dr. '
    assert address['givenName'] == 'Jane'
    assert address['familyName'] == 'Doe'
    assert address['country'] == 'CH'
    assert address['postalState'] is None


def test_full_name_scheme_maps_to_family_name(assembler, payment, invoice_address):
    invoice_address.name_parts = {'_scheme': 'full', 'full_name': 'Jane Doe'}

    address = assembler.assemble({}, payment)['billingAddress']

    assert address['familyName'] == 'Jane Doe'
    assert address['givenName'] is None


def test_admission_only_order_has_no_shipping(assembler, payment):
    data = assembler.assemble({}, payment)

    assert data['shippingAddress'] is None
    assert 'shippingMethod' not in data


def test_merchandise_is_shipped(assembler, payment, order):
    shirt = SimpleNamespace(pk=12, name='Shirt', admission=False)
    order.positions.append(SimpleNamespace(positionid=2, item=shirt, variation=SimpleNamespace(value='XL'),
                                           price=Decimal('30.00'), tax_rule=None, tax_rate=Decimal('0.00')))
    assembler.shipping_description = 'P' * 250 + '\nsecond line'

    data = assembler.assemble({}, payment)

    assert data['shippingAddress']['city'] == 'Zurich'
    assert data['shippingMethod'] == 'P' * 200


def test_line_items(assembler, payment, order):
    order.fees.extend([
        SimpleNamespace(pk=5, fee_type='payment', description='', value=Decimal('1.50'),
                        tax_rule=None, tax_rate=Decimal('0.00'), get_fee_type_display=lambda: 'Payment fee'),
    ])
    payment.amount = Decimal('24.50')

    items = assembler.assemble({}, payment)['lineItems']

    assert items == [
        {
            'uniqueId': 'position-1',
            'sku': '11',
            'name': 'Ticket',
            'quantity': 1,
            'amountIncludingTax': '23.00',
            'type': 'PRODUCT',
            'taxes': [{'title': 'VAT', 'rate': '7.70'}],
        },
        {
            'uniqueId': 'fee-5',
            'sku': 'fee-payment',
            'name': 'Payment fee',
            'quantity': 1,
            'amountIncludingTax': '1.50',
            'type': 'FEE',
            'taxes': [],
        },
    ]


def test_partial_payment_discounts_the_rest(assembler, payment, order):
    order.positions[0].price = Decimal('13.37')
    payment.amount = Decimal('5.00')

    items = assembler.assemble({}, payment)['lineItems']

    assert items[-1] == {
        'uniqueId': 'already-paid',
        'sku': 'already-paid',
        'name': 'Already paid',
        'quantity': 1,
        'amountIncludingTax': '-8.37',
        'type': 'DISCOUNT',
        'taxes': [],
    }
    assert sum(Decimal(item['amountIncludingTax']) for item in items) == Decimal('5.00')


def test_payment_above_line_items_adds_adjustment(assembler, payment):
    payment.amount = Decimal('25.00')

    items = assembler.assemble({}, payment)['lineItems']

    assert [item['type'] for item in items] == ['PRODUCT', 'FEE']
    assert items[-1]['uniqueId'] == 'adjustment'
    assert items[-1]['amountIncludingTax'] == '2.00'


def test_full_payment_has_no_adjustment(assembler, payment):
    items = assembler.assemble({}, payment)['lineItems']

    assert [item['uniqueId'] for item in items] == ['position-1']
