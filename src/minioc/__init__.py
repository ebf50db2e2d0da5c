"""Minimal inversion-of-control container.

Register classes or zero-argument factories against a token (usually an
abstract class or protocol), then resolve fully constructed object graphs by
that token. Constructor dependencies are discovered once, at registration, from
type hints.

Exports:
- `Container`: Root container; registration, resolution, scopes and disposal.
- `Scope`: Child container created by `Container.create_scope()`. Shares the
  registry, caches per-scope instances and defers singletons to the root.
- `RegisteredType`: Handle returned by `register`; `as_singleton()` / `per_scope()`.
- `Lifetime`: Transient (default), singleton or per-scope.
- `Disposable`: Protocol for instances closed when their owning context is disposed.
- Errors: `MinIocError` and its subclasses.
"""

from ._container import (
    Container,
    Disposable,
    Lifetime,
    MinIocError,
    NoAccessibleConstructorError,
    RegisteredType,
    RegistrationError,
    ResolutionError,
    Scope,
    ScopeDisposedError,
    UnregisteredTypeError,
)


__all__ = [
    "Container",
    "Disposable",
    "Lifetime",
    "MinIocError",
    "NoAccessibleConstructorError",
    "RegisteredType",
    "RegistrationError",
    "ResolutionError",
    "Scope",
    "ScopeDisposedError",
    "UnregisteredTypeError",
]
