"""Provides the API to define resources and to track their state during convergence."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Callable, ClassVar, Iterable, Optional, Type, TypeVar, Union

from keel.systems.system import System

relationship_fields = ("require", "before", "notify", "subscribe")
"""The resource fields that declare relationships to other resources."""

@dataclass(frozen=True, order=True)
class Ref:
    """A reference to a resource by its identity."""
    kind: str
    title: str

    def __str__(self) -> str:
        kind = ''.join(part.capitalize() for part in self.kind.split('_'))
        return f"{kind}[{self.title}]"

def ref(kind: str, title: str) -> Ref:
    """Returns a reference to the resource with the given kind and title."""
    return Ref(kind, title)

@dataclass(frozen=True)
class Change:
    """A single key of a resource that differs between the queried and the desired state."""
    key: str
    prior: Any
    new: Any

@dataclass(frozen=True)
class Resource:
    """
    The base class of all resources. A resource is a typed unit of desired state,
    identified by its kind and title. Resources are immutable once created.

    Derived classes must be annotated with @resource(kind) and @dataclass(frozen=True).
    """

    kind: ClassVar[str] = "resource"
    """The kind of this resource. Set by the @resource decorator."""

    registered_kinds: ClassVar[dict[str, Type[Resource]]] = {}
    """All registered resource kinds."""

    refreshable: ClassVar[bool] = False
    """Whether this resource reacts to notifications via `refresh()`."""

    title: str
    """The title of the resource. Unique among all resources of the same kind in a catalog."""

    require: tuple[Ref, ...] = field(default=(), kw_only=True)
    """Resources that must be converged before this one."""

    before: tuple[Ref, ...] = field(default=(), kw_only=True)
    """Resources that must be converged after this one."""

    notify: tuple[Ref, ...] = field(default=(), kw_only=True)
    """Resources that must be converged after this one, and refreshed if this one changes."""

    subscribe: tuple[Ref, ...] = field(default=(), kw_only=True)
    """Resources that must be converged before this one. This one is refreshed if any of them changes."""

    def __post_init__(self) -> None:
        for attr in relationship_fields:
            object.__setattr__(self, attr, tuple(_to_ref(r) for r in getattr(self, attr)))
        self.validate()

    @property
    def ref(self) -> Ref:
        """A reference to this resource."""
        return Ref(self.kind, self.title)

    @property
    def identity(self) -> tuple[str, str]:
        """The identity (kind, title) of this resource."""
        return (self.kind, self.title)

    @property
    def attributes(self) -> dict[str, Any]:
        """The declared properties of this resource, excluding title and relationships."""
        return {f.name: getattr(self, f.name) for f in fields(self)
                if f.name != "title" and f.name not in relationship_fields}

    def validate(self) -> None:
        """
        Validates the declared attributes.

        Raises
        ------
        keel.utils.ValidationError
            An attribute has an invalid value.
        """

    def lock_keys(self) -> frozenset[str]:
        """
        Returns the keys of all locks that must be held while this resource is converged.
        Resources sharing a key are never converged at the same time.
        """
        return frozenset([str(self.ref)])

    def examine(self, system: System, delta: Delta) -> None:
        """
        Queries the current state of this resource on the given system and records
        it together with the desired state in the given delta. Must not modify the system.

        Parameters
        ----------
        system
            The managed system.
        delta
            The delta to fill.
        """
        _ = (system, delta)
        raise NotImplementedError("Must be overwritten by subclass.")

    def apply(self, system: System, delta: Delta) -> None:
        """
        Applies the changes recorded in the given delta, and only those.

        Parameters
        ----------
        system
            The managed system.
        delta
            The delta as filled by `examine()`.
        """
        _ = (system, delta)
        raise NotImplementedError("Must be overwritten by subclass.")

    def refresh(self, system: System, delta: Delta, dry: bool) -> bool:
        """
        Reacts to a notification from a changed resource.

        Parameters
        ----------
        system
            The managed system.
        delta
            The delta of this resource in the current run.
        dry
            Whether this is a dry run, in which case nothing must be changed.

        Returns
        -------
        bool
            Whether the resource was (or would have been) refreshed.
        """
        _ = (system, delta, dry)
        return False

    def __str__(self) -> str:
        return str(self.ref)

RefLike = Union[Ref, Resource]

def _to_ref(value: RefLike) -> Ref:
    """Converts a resource or reference into a reference."""
    if isinstance(value, Resource):
        return value.ref
    if isinstance(value, Ref):
        return value
    raise TypeError(f"Invalid resource reference '{value}'")

R = TypeVar('R', bound=Type[Resource])

def resource(kind: str) -> Callable[[R], R]:
    """
    The @resource class decorator used to register a resource kind.

    Parameters
    ----------
    kind
        The kind of the resource, for example 'file'.
    """
    def wrapper(cls: R) -> R:
        cls.kind = kind
        Resource.registered_kinds[kind] = cls
        return cls
    return wrapper

def refs(kind: str, titles: Iterable[str]) -> tuple[Ref, ...]:
    """Returns references to all resources of the given kind with the given titles."""
    return tuple(Ref(kind, t) for t in titles)

class Delta:
    """
    Tracks the queried (initial) and desired (final) state of a resource during one run.
    A final value of None means that the resource has no opinion about that key.
    """

    def __init__(self) -> None:
        self.initial_state_dict: Optional[dict[str, Any]] = None
        self.final_state_dict: Optional[dict[str, Any]] = None
        self.diffs: list[tuple[str, Optional[bytes], Optional[bytes]]] = []
        self.context: dict[str, Any] = {}
        """Data a resource queried in `examine()` and needs again in `apply()`."""

    def initial_state(self, **kwargs: Any) -> None:
        """Sets the initial state."""
        if self.initial_state_dict is not None:
            raise RuntimeError("A delta's 'initial_state' can only be set once.")
        self.initial_state_dict = dict(kwargs)

    def final_state(self, **kwargs: Any) -> None:
        """Sets the final state."""
        if self.final_state_dict is not None:
            raise RuntimeError("A delta's 'final_state' can only be set once.")
        self.final_state_dict = dict(kwargs)

    def _states(self) -> tuple[dict[str, Any], dict[str, Any]]:
        if self.initial_state_dict is None or self.final_state_dict is None:
            raise RuntimeError("Both initial and final state must have been set before the delta can be inspected.")
        return self.initial_state_dict, self.final_state_dict

    def unchanged(self) -> bool:
        """
        Checks whether the initial and final states agree on every key
        for which the final state has an opinion.

        Returns
        -------
        bool
            Whether nothing needs to be changed.
        """
        return len(self.changes()) == 0

    def changed(self, key: str) -> bool:
        """
        Checks whether a specific key will change.

        Parameters
        ----------
        key
            The key to check for changes.

        Returns
        -------
        bool
            Whether the states differ.
        """
        initial, final = self._states()
        if final.get(key) is None:
            return False
        return bool(initial.get(key) != final[key])

    def changes(self) -> list[Change]:
        """
        Returns all changes in the order of the final state's keys.

        Returns
        -------
        list[Change]
            The changes required to reach the final state.
        """
        initial, final = self._states()
        return [Change(key=k, prior=initial.get(k), new=v) for k,v in final.items()
                if v is not None and initial.get(k) != v]

    def diff(self, file: str, old: Optional[bytes], new: Optional[bytes]) -> None:
        """
        Adds a file to the diffing output.

        Parameters
        ----------
        file
            The filename which the diff belongs to.
        old
            The previous content or None if the file didn't exist previously.
        new
            The new content or None if the file was deleted.
        """
        if old == new:
            return
        self.diffs.append((file, old, new))
