import importlib
import pkgutil
import sys
from datetime import datetime, timedelta


def load_modules(base_name, base_path):
    """
    Imports all modules underneath `base_module` in the module tree.

    Note that if submodules are located in different directory trees, you
    need to use `pkgutil.extend_path` to make all the folders appear in
    the module's `__path__`.

    Returns
    -------
    list
        All the modules in the base module tree.

    """
    modules = []

    for _, module_name, _ in pkgutil.iter_modules(base_path):
        full_module_name = '{}.{}'.format(base_name, module_name)

        if full_module_name not in sys.modules:
            module = importlib.import_module(full_module_name)
        else:
            module = sys.modules[full_module_name]
        modules.append(module)

    return modules


def register_backends(base_name, base_path):
    """
    Dynamically loads all packages contained within the adapter backends
    module, including those by other module install paths, and maps each
    provider name to the module that handles it. A module whose PROVIDER is
    'generic' handles every provider of type 'generic' that no other module
    claims.

    """
    from mailcrawl.providers import providers

    modules = load_modules(base_name, base_path)

    mod_for = {}
    generic = None
    for module in modules:
        if hasattr(module, 'PROVIDER'):
            provider_name = module.PROVIDER
            if provider_name == 'generic':
                generic = module
            else:
                mod_for[provider_name] = module

    if generic is not None:
        for p_name, p in providers.items():
            if p.get('type') == 'generic' and p_name not in mod_for:
                mod_for[p_name] = generic

    return mod_for


def older_than(timestamp, seconds, now=None):
    """True if `timestamp` is unset or more than `seconds` in the past."""
    if timestamp is None:
        return True
    now = now or datetime.utcnow()
    return now - timestamp > timedelta(seconds=seconds)
