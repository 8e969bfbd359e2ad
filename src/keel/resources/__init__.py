"""This package contains all resource kinds and their providers."""

import importlib
import pkgutil
from types import ModuleType
from typing import Union

def _import_submodules(package: Union[str, ModuleType]) -> dict[str, ModuleType]:
    """
    Import all submodules of a package.

    Parameters
    ----------
    package
        The package to import all submodules from.

    Returns
    -------
    dict[str, ModuleType]
    """
    if isinstance(package, str):
        package = importlib.import_module(package)
    results = {}
    for _, name, _ in pkgutil.walk_packages(package.__path__): # type: ignore[attr-defined]
        full_name = package.__name__ + '.' + name
        results[full_name] = importlib.import_module(full_name)
    return results

# Import all submodules to ensure that decorators have a chance
# to register resource kinds and providers (e.g. package_providers).
__all__: list[str] = []
_import_submodules(__name__)
