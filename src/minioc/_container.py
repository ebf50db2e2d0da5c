from __future__ import annotations

import inspect
import logging
import threading
import typing
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Protocol,
    TypeVar,
    get_type_hints,
    overload,
    runtime_checkable,
)


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    T = TypeVar("T")

    Token = type[T] | str

_C = TypeVar("_C", bound="Container")


class Lifetime(Enum):
    TRANSIENT = "transient"
    SINGLETON = "singleton"
    PER_SCOPE = "per_scope"


@runtime_checkable
class Disposable(Protocol):
    """Anything with a ``close()`` method; closed when its owning context is disposed."""

    def close(self) -> None: ...


class MinIocError(Exception):
    pass


class RegistrationError(MinIocError, ValueError):
    pass


class NoAccessibleConstructorError(RegistrationError):
    pass


class ResolutionError(MinIocError, RuntimeError):
    pass


class UnregisteredTypeError(ResolutionError, KeyError):
    def __str__(self) -> str:
        # KeyError quotes its message
        return BaseException.__str__(self)


class ScopeDisposedError(ResolutionError):
    pass


@dataclass
class Registration:
    token: Any
    factory: Callable[[Container], object]
    lifetime: Lifetime = Lifetime.TRANSIENT
    # pre-built instance owned by the caller: never cached, never closed
    external: bool = False

    def resolve(self, context: Container) -> object:
        if self.lifetime is Lifetime.TRANSIENT:
            return self.factory(context)

        owner = _CACHE_OWNERS[self.lifetime](context)
        return owner._get_or_create(self.token, self.factory)  # noqa: SLF001


# Which context caches the instance for a given lifetime
_CACHE_OWNERS: dict[Lifetime, Callable[[Container], Container]] = {
    Lifetime.SINGLETON: lambda context: context.root,
    Lifetime.PER_SCOPE: lambda context: context,
}


class RegisteredType:
    """Handle returned by registration, used to pick the lifetime.

    The handle is tied to the registration it was created for. Registering the
    same token again installs a new registration; lifetime changes made through
    an older handle then no longer affect resolution.
    """

    def __init__(self, registration: Registration) -> None:
        self._registration = registration

    @property
    def token(self) -> Any:
        return self._registration.token

    @property
    def lifetime(self) -> Lifetime:
        return self._registration.lifetime

    def as_singleton(self) -> RegisteredType:
        """One instance for the whole scope tree, cached at the root container."""
        return self._transition(Lifetime.SINGLETON)

    def per_scope(self) -> RegisteredType:
        """One instance per resolution context, cached where it is resolved."""
        return self._transition(Lifetime.PER_SCOPE)

    def _transition(self, lifetime: Lifetime) -> RegisteredType:
        reg = self._registration
        if reg.lifetime is lifetime:
            return self

        if reg.external:
            msg = f"{_token_name(reg.token)} is a registered instance; its lifetime belongs to the caller"
            raise RegistrationError(msg)

        if reg.lifetime is not Lifetime.TRANSIENT:
            msg = (
                f"{_token_name(reg.token)} is already registered as {reg.lifetime.value}; "
                f"cannot change it to {lifetime.value}"
            )
            raise RegistrationError(msg)

        reg.lifetime = lifetime
        logger.debug("%s lifetime set to %s", _token_name(reg.token), lifetime.value)
        return self


class Container:
    """Minimal IoC container.

    - register classes (constructor injection) or zero-argument factories
    - resolve by token
    - lifetimes: transient / singleton / per-scope
    - nested scopes sharing one registry.
    """

    def __init__(self) -> None:
        self._registrations: dict[Any, Registration] = {}
        self._instances: dict[Any, object] = {}
        self._lock = threading.RLock()
        self._parent: Container | None = None
        self._root: Container = self
        self._disposed = False

    @property
    def root(self) -> Container:
        return self._root

    @property
    def parent(self) -> Container | None:
        return self._parent

    @property
    def is_root(self) -> bool:
        return self._parent is None

    @overload
    def register(
        self,
        token: type[T],
        impl: type[T],
        *,
        factory: None = ...,
        lifetime: Lifetime = Lifetime.TRANSIENT,
    ) -> RegisteredType: ...

    @overload
    def register(
        self,
        token: type[T],
        impl: None = ...,
        *,
        factory: Callable[[], T],
        lifetime: Lifetime = Lifetime.TRANSIENT,
    ) -> RegisteredType: ...

    @overload
    def register(
        self,
        token: str,
        impl: type | None = ...,
        *,
        factory: Callable[[], Any] | None = ...,
        lifetime: Lifetime = Lifetime.TRANSIENT,
    ) -> RegisteredType: ...

    def register(
        self,
        token: Token[T],
        impl: type | None = None,
        *,
        factory: Callable[[], Any] | None = None,
        lifetime: Lifetime = Lifetime.TRANSIENT,
    ) -> RegisteredType:
        """Register a concrete class or a zero-argument factory for a token.

        Example:
          container.register(IFoo, FooImpl).as_singleton()
          container.register("db", factory=create_db, lifetime=Lifetime.PER_SCOPE)

        The constructor of ``impl`` is inspected here, once; a class that cannot
        be instantiated fails now rather than on first resolve.
        """
        if impl is not None and factory is not None:
            msg = "Provide either `impl` or `factory`, not both."
            raise RegistrationError(msg)

        if impl is None and factory is None:
            msg = "Either `impl` or `factory` must be provided."
            raise RegistrationError(msg)

        if impl is not None:
            if inspect.isclass(impl):
                _validate_impl(token, impl)
            build: Callable[[Container], object] = Constructor(impl)
        else:
            if not callable(factory):
                msg = f"Factory for {_token_name(token)} is not callable: {factory!r}"
                raise RegistrationError(msg)
            build = _factory_procedure(factory)

        handle = self._install(Registration(token=token, factory=build))
        if lifetime is not Lifetime.TRANSIENT:
            handle._transition(lifetime)  # noqa: SLF001
        return handle

    def register_instance(self, token: Token[T], instance: object) -> RegisteredType:
        """Register a pre-built object. It is returned as is and never disposed by the container.

        The returned handle refuses lifetime changes.
        """
        _validate_impl(token, type(instance))
        return self._install(Registration(token=token, factory=lambda _: instance, external=True))

    def is_registered(self, token: Any) -> bool:
        return token in self._registrations

    @overload
    def resolve(self, token: type[T]) -> T: ...

    @overload
    def resolve(self, token: str) -> object: ...

    def resolve(self, token: Token[T]) -> object:
        """Resolve the token to an instance.

        Dependencies of a synthesized constructor are resolved through this same
        context, so per-scope dependencies come from the scope being asked.
        Dependency cycles are not detected and end in ``RecursionError``.
        """
        self._ensure_alive()
        registration = self._registrations.get(token)
        if registration is None:
            msg = f"No registration found for token: {_token_name(token)}"
            raise UnregisteredTypeError(msg)

        return registration.resolve(self)

    def create_scope(self) -> Scope:
        """Create a child scope sharing this container's registrations."""
        self._ensure_alive()
        return Scope(self, _from_parent=True)

    def dispose(self) -> None:
        """Close every disposable instance cached in this context.

        Only this context's own cache is touched: disposing a scope leaves its
        parent and siblings alone, disposing the root closes singletons (and
        anything resolved per-scope from the root) but not instances owned by
        live child scopes.

        Every disposable is closed even when some ``close()`` calls fail; the
        first failure is re-raised afterwards.
        """
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            instances = list(self._instances.values())
            self._instances.clear()

        errors: list[Exception] = []
        closed: set[int] = set()
        for instance in instances:
            if id(instance) in closed or not _is_disposable(instance):
                continue
            closed.add(id(instance))
            try:
                _close(instance)
            except Exception as e:  # noqa: BLE001
                logger.error("Closing %s failed: %s", type(instance).__qualname__, e)
                errors.append(e)

        if errors:
            raise errors[0]

    def __enter__(self: _C) -> _C:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()

    def _install(self, registration: Registration) -> RegisteredType:
        with self._root._lock:  # noqa: SLF001
            if registration.token in self._registrations:
                logger.debug("Replacing registration for %s", _token_name(registration.token))
            else:
                logger.debug("Registering %s", _token_name(registration.token))
            self._registrations[registration.token] = registration
        return RegisteredType(registration)

    def _get_or_create(self, token: Any, factory: Callable[[Container], object]) -> object:
        with self._lock:
            self._ensure_alive()
            if token in self._instances:
                return self._instances[token]

        # Built outside the lock: a factory may resolve into other contexts.
        instance = factory(self)

        with self._lock:
            self._ensure_alive()
            stored = self._instances.setdefault(token, instance)

        if stored is not instance:
            logger.debug("Discarding concurrently built instance of %s", _token_name(token))
            if _is_disposable(instance):
                _close(instance)
        return stored

    def _ensure_alive(self) -> None:
        if self._disposed:
            kind = "Container" if self.is_root else "Scope"
            msg = f"{kind} has been disposed"
            raise ScopeDisposedError(msg)


class Scope(Container):
    """A child resolution context.

    Shares the registry of its parent (registering through a scope is visible
    to the whole tree), caches per-scope instances itself and leaves singletons
    to the root container. Scopes nest; use them as context managers to dispose
    on exit.
    """

    def __init__(self, parent: Container, *, _from_parent: bool = False) -> None:
        if not _from_parent:
            msg = "Scope instances must be created via Container.create_scope()"
            raise RuntimeError(msg)
        super().__init__()
        self._registrations = parent._registrations  # noqa: SLF001
        self._parent = parent
        self._root = parent._root  # noqa: SLF001
        logger.debug("Created scope (depth %d)", self.depth)

    @property
    def depth(self) -> int:
        depth, context = 0, self._parent
        while context is not None:
            depth += 1
            context = context.parent
        return depth


@dataclass(frozen=True)
class Dependency:
    name: str
    token: Any
    kind: inspect._ParameterKind
    default: Any = inspect.Parameter.empty

    @property
    def optional(self) -> bool:
        return self.default is not inspect.Parameter.empty


class Constructor:
    """Construction procedure for a registered class.

    The class's constructor is inspected once. Each parameter becomes a
    dependency keyed by its type hint, or by the parameter name when it has
    none. Calling the procedure with a context resolves the dependencies
    through that context, in declaration order, and instantiates the class.
    Parameters with a default fall back to it when their key is not registered;
    ``*args``/``**kwargs`` are never filled.
    """

    def __init__(self, cls: type) -> None:
        self.cls = cls
        self.dependencies = _plan_dependencies(cls)

    def __call__(self, context: Container) -> object:
        args: list[Any] = []
        kwargs: dict[str, Any] = {}

        for dep in self.dependencies:
            if dep.optional and not context.is_registered(dep.token):
                value = dep.default
            else:
                value = context.resolve(dep.token)

            if dep.kind is inspect.Parameter.POSITIONAL_ONLY:
                args.append(value)
            else:
                kwargs[dep.name] = value

        return self.cls(*args, **kwargs)

    def __repr__(self) -> str:
        return f"Constructor({self.cls.__qualname__})"


def _plan_dependencies(cls: type) -> tuple[Dependency, ...]:
    if not inspect.isclass(cls):
        msg = f"Implementation {cls!r} is not a class"
        raise NoAccessibleConstructorError(msg)

    if _is_protocol(cls):
        msg = f"Protocol {cls.__name__} cannot be instantiated; register a concrete implementation"
        raise NoAccessibleConstructorError(msg)

    if inspect.isabstract(cls):
        missing = ", ".join(sorted(cls.__abstractmethods__))
        msg = f"Abstract class {cls.__name__} cannot be instantiated (abstract methods: {missing})"
        raise NoAccessibleConstructorError(msg)

    if cls.__init__ is object.__init__ and cls.__new__ is object.__new__:
        return ()

    try:
        sig = inspect.signature(cls)
    except (TypeError, ValueError) as e:
        msg = f"Cannot inspect the constructor of {cls.__name__}: {e}"
        raise NoAccessibleConstructorError(msg) from e

    hints = _get_init_type_hints(cls)
    dependencies = []
    for name, p in sig.parameters.items():
        if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
            continue

        ann = hints.get(name, p.annotation)
        # unresolvable string annotations fall back to the name as well
        token = name if ann is inspect.Parameter.empty or isinstance(ann, str) else ann
        dependencies.append(Dependency(name=name, token=token, kind=p.kind, default=p.default))

    return tuple(dependencies)


def _factory_procedure(factory: Callable[[], object]) -> Callable[[Container], object]:
    def build(_context: Container) -> object:
        return factory()

    return build


def _is_disposable(instance: object) -> bool:
    # a class whose instances have close() is not itself disposable
    return not inspect.isclass(instance) and isinstance(instance, Disposable) and callable(instance.close)


def _close(instance: Disposable) -> None:
    logger.debug("Closing %s", type(instance).__qualname__)
    instance.close()


def _validate_impl(token: object, impl: type) -> None:
    """Require ``impl`` to subclass ``token`` when the token is a plain class.

    Protocols are structural and string tokens carry no type, so neither is checked.
    """
    if not inspect.isclass(token) or typing.get_origin(token) is not None or _is_protocol(token):
        return

    if not issubclass(impl, token):
        msg = f"Implementation {impl.__name__} must be a subclass of {token.__name__}"
        raise RegistrationError(msg)


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def _is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def _is_protocol(tp: object) -> bool:
        # concrete subclasses of a protocol get _is_protocol = False
        return inspect.isclass(tp) and bool(getattr(tp, "_is_protocol", False))


def _get_init_type_hints(cls: type) -> dict[str, Any]:
    try:
        init = inspect.getattr_static(cls, "__init__")
        hints = get_type_hints(init)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning(
            "'%s' name error retrieving %s (%s) type hints; string annotations fall back to parameter names",
            exc.name,
            cls.__name__,
            cls.__qualname__,
        )
        hints = {}

    return hints


def _token_name(token: object) -> str:
    if inspect.isclass(token):
        return token.__qualname__
    return repr(token)
