from django.utils.translation import gettext_lazy

from . import __version__

try:
    from pretix.base.plugins import PluginConfig
except ImportError:
    raise RuntimeError("Please use pretix 4.0 or above to run this plugin!")


class PluginApp(PluginConfig):
    default = True
    name = 'pretix_wallee'
    verbose_name = 'wallee'
    default_auto_field = 'django.db.models.BigAutoField'

    class PretixPluginMeta:
        name = gettext_lazy('wallee')
        author = 'pretix-wallee contributors'
        description = gettext_lazy('Pretix payment plugin for the wallee payment gateway')
        visible = True
        version = __version__
        category = 'PAYMENT'
        compatibility = "pretix>=4.0.0"

    def ready(self):
        from . import signals  # NOQA
