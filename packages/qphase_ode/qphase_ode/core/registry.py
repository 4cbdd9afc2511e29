"""qphase_ode: Registry
--------------------
Centralized name tables for stepping algorithms and solver factories.

Behavior
--------
- One table per namespace, keyed ``"namespace:name"``. The namespaces used by
  the package are ``algorithm`` (``AlgorithmDescriptor`` values),
  ``linear_solver`` and ``nonlinear_solver`` (solver classes/factories).
- Entries are registered eagerly, by dotted path for deferred import, or via
  the decorator form. Aliases resolve to another name in the same namespace.
- ``create`` returns descriptor values as-is and instantiates callables unless
  the entry was registered with ``return_callable=True``.

Notes
-----
- Dotted import supports both ``module:attr`` and ``module.attr`` forms.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from importlib import import_module
from typing import Any

from .errors import QPSConfigError, QPSRegistryError

__all__ = [
    "RegistryCenter",
    "registry",
    "register",
    "register_lazy",
]

Namespace = str
Name = str
FullName = str


@dataclass
class _Entry:
    """Internal record: a value/builder, a dotted target, or an alias."""

    kind: str  # "value" | "dotted" | "alias"
    obj: Any = None
    target: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


class RegistryCenter:
    """Namespace registry with factory-style lookup.

    Examples
    --------
    >>> rc = RegistryCenter()
    >>> rc.register("default", "adder", lambda x, y: x + y, return_callable=True)
    >>> rc.create("default:adder")(1, 2)
    3

    """

    VALID_NAMESPACES = {"algorithm", "linear_solver", "nonlinear_solver", "default"}

    def __init__(self) -> None:
        self._tables: dict[Namespace, dict[Name, _Entry]] = {}
        self._namespaces = set(self.VALID_NAMESPACES)

    @staticmethod
    def _split(full_name: FullName, default_ns: str = "default") -> tuple[Namespace, Name]:
        if ":" in full_name:
            ns, nm = full_name.split(":", 1)
            return ns.strip().lower(), nm.strip().lower()
        return default_ns, full_name.strip().lower()

    def _ensure_ns(self, namespace: Namespace) -> dict[Name, _Entry]:
        ns = namespace.strip().lower()
        self._namespaces.add(ns)
        return self._tables.setdefault(ns, {})

    def _put(
        self, namespace: Namespace, name: Name, entry: _Entry, overwrite: bool, code: int
    ) -> None:
        ns = namespace.strip().lower()
        nm = name.strip().lower()
        table = self._ensure_ns(ns)
        if not overwrite and nm in table:
            raise QPSRegistryError(f"[{code}] Duplicate registration: {ns}:{nm}")
        entry.meta.setdefault("registered_at", datetime.now(UTC).isoformat())
        table[nm] = entry

    # --------------------------- registration ---------------------------
    def register(
        self,
        namespace: Namespace,
        name: Name,
        obj: Any,
        *,
        overwrite: bool = False,
        **meta: Any,
    ) -> None:
        """Register a value or builder immediately.

        Parameters
        ----------
        namespace : str
            Target namespace (``"algorithm"``, ``"linear_solver"``, ...).
        name : str
            Case-insensitive key.
        obj : Any
            Descriptor value, class or factory function.
        overwrite : bool, default False
            Replace an existing entry instead of raising.
        **meta : Any
            Metadata stored with the entry (``return_callable``, ``tags``, ...).

        Raises
        ------
        QPSRegistryError
            - [400] Duplicate registration when ``overwrite`` is False.

        """
        full_meta = dict(meta)
        full_meta.setdefault("builder_type", self._infer_builder_type(obj))
        full_meta.setdefault("delayed_import", False)
        self._put(namespace, name, _Entry("value", obj=obj, meta=full_meta), overwrite, 400)

    def register_lazy(
        self,
        namespace: Namespace,
        name: Name,
        target: str,
        *,
        overwrite: bool = False,
        **meta: Any,
    ) -> None:
        """Register a dotted path that is imported on first ``create()``.

        Raises
        ------
        QPSRegistryError
            - [401] Duplicate lazy registration when ``overwrite`` is False.

        """
        full_meta = dict(meta)
        full_meta.setdefault("builder_type", "dotted")
        full_meta.setdefault("delayed_import", True)
        full_meta.setdefault("module_path", target)
        entry = _Entry("dotted", target=str(target), meta=full_meta)
        self._put(namespace, name, entry, overwrite, 401)

    def alias(self, namespace: Namespace, alias: Name, name: Name) -> None:
        """Make ``alias`` resolve to ``name`` within ``namespace``.

        Raises
        ------
        QPSRegistryError
            - [405] Alias already taken.

        """
        entry = _Entry("alias", target=name.strip().lower(), meta={"alias_of": name})
        self._put(namespace, alias, entry, False, 405)

    def decorator(self, namespace: Namespace, name: Name, **meta: Any):
        """Return a decorator that registers the object on import."""

        def _wrap(obj: Any):
            self.register(namespace, name, obj, **meta)
            return obj

        return _wrap

    # --------------------------- lookup ---------------------------
    def _resolve(self, ns: Namespace, nm: Name) -> tuple[Name, _Entry]:
        table = self._tables.get(ns, {})
        seen = set()
        entry = table.get(nm)
        while entry is not None and entry.kind == "alias":
            if nm in seen:
                raise QPSRegistryError(f"[406] Alias cycle at {ns}:{nm}")
            seen.add(nm)
            nm = str(entry.target)
            entry = table.get(nm)
        if entry is None:
            raise QPSConfigError(f"[404] Unknown registry key: {ns}:{nm}")
        return nm, entry

    def get(self, full_name: FullName, namespace: Namespace = "default") -> Any:
        """Return the registered object itself, importing dotted targets.

        Raises
        ------
        QPSConfigError
            - [404] Unknown registry key.
        QPSRegistryError
            - [402] Failed to import a registered target.

        """
        ns, nm = self._split(full_name, namespace)
        nm, entry = self._resolve(ns, nm)
        if entry.kind == "value":
            return entry.obj
        assert entry.target is not None
        try:
            return self._import_target(entry.target)
        except QPSConfigError:
            raise
        except ImportError as e:
            raise QPSRegistryError(
                f"[402] Failed to import {ns} '{nm}' from '{entry.target}': {e}"
            ) from e

    def create(self, full_name: FullName, /, **kwargs: Any) -> Any:
        """Resolve ``"namespace:name"`` and construct the entry.

        Non-callable values (algorithm descriptors) are returned unchanged;
        callables are invoked with ``kwargs`` unless registered with
        ``return_callable=True``.
        """
        ns, nm = self._split(full_name)
        _, entry = self._resolve(ns, nm)
        obj = self.get(full_name)
        if entry.meta.get("return_callable") or not callable(obj):
            return obj
        return obj(**kwargs)

    def contains(self, full_name: FullName) -> bool:
        ns, nm = self._split(full_name)
        try:
            self._resolve(ns, nm)
        except QPSConfigError:
            return False
        return True

    def _import_target(self, target: str) -> Any:
        attr_name: str | None
        if ":" in target:
            module_name, attr_name = target.split(":", 1)
        elif "." in target:
            module_name, attr_name = target.rsplit(".", 1)
        else:
            module_name, attr_name = target, None
        mod = import_module(module_name)
        if attr_name is None:
            return mod
        if not hasattr(mod, attr_name):
            raise QPSConfigError(f"[403] Target '{target}' not found")
        return getattr(mod, attr_name)

    # --------------------------- introspection ---------------------------
    def list(self, namespace: Namespace | None = None) -> dict[str, Any]:
        """List entries with metadata for one namespace, or names for all."""
        if namespace is None:
            return {ns: sorted(tbl.keys()) for ns, tbl in self._tables.items()}
        table = self._tables.get(namespace.strip().lower(), {})
        return {name: {"kind": e.kind, **e.meta} for name, e in table.items()}

    @staticmethod
    def _infer_builder_type(obj: Any) -> str:
        if isinstance(obj, type):
            return "class"
        if callable(obj):
            return "function"
        return type(obj).__name__.lower()


# Global singleton
registry = RegistryCenter()


def register(namespace: Namespace, name: Name, **meta: Any):
    """Decorator form registration on the global registry.

    Examples
    --------
    >>> @register("linear_solver", "my_lu")  # doctest: +SKIP
    ... class MyLU:
    ...     def solve(self, A, b): ...

    """
    return registry.decorator(namespace, name, **meta)


def register_lazy(namespace: Namespace, name: Name, target: str, **meta: Any) -> None:
    """Register a dotted path on the global registry without importing it."""
    registry.register_lazy(namespace, name, target, **meta)
