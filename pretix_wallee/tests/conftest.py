from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

import pytest

from pretix_wallee.api import WalleeApi
from pretix_wallee.assembler import OrderDataAssembler


class FakeRelation(list):
    def all(self):
        return self


def fake_url_builder(action, payment, token):
    return 'https://shop.test/%s/%d/%s' % (action, payment.pk, token)


@pytest.fixture
def invoice_address():
    return SimpleNamespace(
        name_parts={'_scheme': 'salutation_given_family', 'salutation': 'Ms',
                    'given_name': 'Jane', 'family_name': 'Doe'},
        name='Jane Doe',
        company='ACME Corp',
        street='Main Street 1',
        zipcode='8000',
        city='Zurich',
        country=SimpleNamespace(code='CH'),
        state='',
    )


@pytest.fixture
def order(invoice_address):
    ticket = SimpleNamespace(pk=11, name='Ticket', admission=True)
    position = SimpleNamespace(positionid=1, item=ticket, variation=None, price=Decimal('23.00'),
                               tax_rule=SimpleNamespace(name='VAT'), tax_rate=Decimal('7.70'))
    return SimpleNamespace(
        pk=3,
        code='FOOBAR',
        secret='s3cr3t',
        email='jane@example.org',
        phone=None,
        locale='en',
        customer=None,
        event=SimpleNamespace(currency='CHF'),
        invoice_address=invoice_address,
        positions=FakeRelation([position]),
        fees=FakeRelation([]),
    )


@pytest.fixture
def payment(order):
    return SimpleNamespace(
        pk=7,
        order=order,
        amount=Decimal('23.00'),
        info_data={'security_token': 'TOKEN', 'space_id': 1, 'transaction_id': 42},
    )


@pytest.fixture
def assembler():
    return OrderDataAssembler(
        method_configuration_id=555,
        shipping_description='Postal delivery\nShipped within two days',
        url_builder=fake_url_builder,
    )


@pytest.fixture
def api():
    return mock.Mock(spec=WalleeApi)
