from django.urls import re_path
from pretix.multidomain import event_url

from . import views

urlpatterns = [
    re_path(r'^control/event/(?P<organizer>[^/]+)/(?P<event>[^/]+)/wallee/(?P<payment>[0-9]+)/'
            r'(?P<decision>accept|deny)/$',
            views.DeliveryDecisionView.as_view(), name='delivery_decision'),
]

event_patterns = [
    re_path(r'^order/(?P<order>[^/]+)/(?P<secret>[A-Za-z0-9]+)/pay/(?P<payment>[0-9]+)/'
            r'wallee_return/(?P<action>success|failure)/(?P<token>[A-Za-z0-9]+)$',
            views.ReturnView.as_view(), name='return'),
    event_url(r'^_wallee/webhook/(?P<webhook_secret>[A-Za-z0-9]+)$',
              views.webhook_view, name='webhook', require_live=False),
]
