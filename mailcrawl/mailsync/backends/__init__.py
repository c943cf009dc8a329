"""
Per-provider adapter modules.

An adapter module *must* meet the following requirements:

1. Specify the provider it implements as the module-level `PROVIDER` variable,
for example 'gmail'. A module whose PROVIDER is 'generic' is used for every
provider of type 'generic' in mailcrawl.providers that has no module of its
own.

2. Implement an adapter class which inherits from
mailcrawl.mailsync.backends.base.ProviderAdapter.

3. Specify the name of the adapter class as the module-level `ADAPTER_CLS`
variable.

"""
# Allow out-of-tree adapter submodules.
from pkgutil import extend_path
__path__ = extend_path(__path__, __name__)

from mailcrawl.util.misc import register_backends  # noqa: E402
from mailcrawl.mailsync.exc import NotSupportedError  # noqa: E402

module_registry = register_backends(__name__, __path__)


def adapter_for(account):
    """Build the provider adapter for `account`."""
    module = module_registry.get(account.provider)
    if module is None:
        raise NotSupportedError('No adapter for provider {}'.format(
            account.provider))
    adapter_cls = getattr(module, module.ADAPTER_CLS)
    return adapter_cls(account)
