"""
Provides the layered parameter lookup. A hierarchy is an ordered list of layers,
queried highest priority first. A value of None in a layer means that the layer
does not set this parameter, so the lookup continues with the next layer.
"""

from dataclasses import dataclass, field
from typing import Any, Collection, Iterator, Optional

from keel.utils import CompilationError

@dataclass
class Layer:
    """A named set of parameter values."""
    name: str
    """The name of the layer, e.g. 'defaults' or 'command line'."""
    values: dict[str, Any] = field(default_factory=dict)
    """The parameters set by this layer."""
    source: Optional[str] = None
    """The file the values were loaded from, if any."""

    def get(self, key: str) -> Any:
        """Returns the value of the given key in this layer, or None if it isn't set."""
        return self.values.get(key)

class Hierarchy:
    """
    Resolves parameters over an ordered list of layers. The first layer
    has the highest priority.
    """

    def __init__(self, layers: list[Layer]):
        self.layers = list(layers)

    def __iter__(self) -> Iterator[Layer]:
        return iter(self.layers)

    def with_layer(self, layer: Layer, index: int = 0) -> "Hierarchy":
        """Returns a new hierarchy which includes the given layer at the given priority index."""
        layers = list(self.layers)
        layers.insert(index, layer)
        return Hierarchy(layers)

    def lookup(self, key: str, default: Any = None) -> Any:
        """
        Looks up the given key in all layers in order of priority.

        Parameters
        ----------
        key
            The parameter to look up.
        default
            The value to return if no layer sets the parameter.

        Returns
        -------
        Any
            The value of the highest priority layer setting the key, or the default.
        """
        for layer in self.layers:
            value = layer.get(key)
            if value is not None:
                return value
        return default

    def origin(self, key: str) -> Optional[Layer]:
        """Returns the layer which provides the value of the given key, or None."""
        for layer in self.layers:
            if layer.get(key) is not None:
                return layer
        return None

    def merged(self) -> dict[str, Any]:
        """Returns the merged values of all layers."""
        # Add values bottom-up so that higher priorities overwrite lower ones.
        values: dict[str, Any] = {}
        for layer in reversed(self.layers):
            values.update({k: v for k,v in layer.values.items() if v is not None})
        return values

    def check_unknown(self, known: Collection[str]) -> None:
        """
        Ensures that no layer sets an unknown parameter.

        Raises
        ------
        CompilationError
            A layer contains a key which is not in `known`.
        """
        for layer in self.layers:
            unknown = sorted(set(layer.values) - set(known))
            if len(unknown) > 0:
                raise CompilationError(f"unknown parameter(s) in {layer.name}: {', '.join(unknown)}", loc=layer.source)

    def resolve(self, keys: Collection[str]) -> dict[str, Any]:
        """
        Resolves the given parameters, requiring that each of them has a value.

        Parameters
        ----------
        keys
            The parameters to resolve.

        Returns
        -------
        dict[str, Any]
            The resolved value for each key.

        Raises
        ------
        CompilationError
            Some keys are not set by any layer.
        """
        self.check_unknown(keys)
        merged = self.merged()
        missing = [k for k in keys if merged.get(k) is None]
        if len(missing) > 0:
            raise CompilationError(f"missing value for required parameter(s): {', '.join(missing)}")
        return {k: merged[k] for k in keys}

def overlay(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Merges two structs field by field. Fields of `override` that are not None
    replace the corresponding fields of `base`.

    Parameters
    ----------
    base
        The parent values.
    override
        The child values.

    Returns
    -------
    dict[str, Any]
        A new dictionary with the merged values.
    """
    merged = dict(base)
    merged.update({k: v for k,v in override.items() if v is not None})
    return merged
