"""
Lazy reference proxies.

A proxy is an instance of a generated subclass of the model. It carries the
identifier from the start and loads everything else on first use through a
loader supplied by the unit of work.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Tuple, Type

from ..core.model import Model
from .errors import EntityNotFoundError

ProxyLoader = Callable[[Model], None]

_proxy_classes: Dict[Type[Model], Type[Model]] = {}


class EntityProxy:
    """
    Mixin placed in front of the model class in every generated proxy class.
    """

    _is_proxy = True
    _proxied_model: Type[Model]

    _proxy_loader: Optional[ProxyLoader]
    _proxy_initialized: bool
    _proxy_loading: bool
    _proxy_failed: bool

    def _ensure_loaded(self) -> None:
        if self._proxy_initialized or self._proxy_loading:
            return
        if self._proxy_failed:
            raise EntityNotFoundError(self._proxied_model, self.identifier())
        loader = self._proxy_loader
        if loader is None:
            raise EntityNotFoundError(self._proxied_model, self.identifier())
        self._proxy_loading = True
        try:
            loader(self)
        except EntityNotFoundError:
            self._proxy_failed = True
            self._proxy_loader = None
            raise
        finally:
            self._proxy_loading = False
        mark_initialized(self)

    @classmethod
    def _real_class(cls) -> Type[Model]:
        return cls._proxied_model

    def __repr__(self) -> str:
        if not self._proxy_initialized:
            return f"<{self._proxied_model.__name__} proxy pk={self.identifier()!r} (uninitialized)>"
        return super().__repr__()


def proxy_class_for(model: Type[Model]) -> Type[Model]:
    """
    Return (creating once) the proxy class of ``model``.
    """
    model = model._real_class()
    proxy_cls = _proxy_classes.get(model)
    if proxy_cls is None:
        metaclass = type(model)
        proxy_cls = metaclass(
            f"{model.__name__}Proxy",
            (EntityProxy, model),
            {
                "_is_proxy": True,
                "_proxied_model": model,
                "__module__": model.__module__,
                "__qualname__": f"{model.__qualname__}Proxy",
            },
        )
        _proxy_classes[model] = proxy_cls
    return proxy_cls


def make_proxy(model: Type[Model], pk: Tuple[Any, ...], loader: ProxyLoader) -> Model:
    proxy_cls = proxy_class_for(model)
    proxy = proxy_cls.__new__(proxy_cls)
    proxy._field_values = dict(zip(model._meta.identifier_names, pk))
    proxy._related_cache = {}
    proxy._persisted = True
    proxy._proxy_loader = loader
    proxy._proxy_initialized = False
    proxy._proxy_loading = False
    proxy._proxy_failed = False
    return proxy


def mark_initialized(proxy: Model) -> None:
    """
    Flag a proxy as loaded; its data was populated by the caller.
    """
    if is_proxy(proxy):
        proxy._proxy_initialized = True
        proxy._proxy_loader = None


def is_proxy(instance: Any) -> bool:
    return isinstance(instance, EntityProxy)


def is_initialized(instance: Any) -> bool:
    """
    ``False`` for proxies and collections that have not loaded yet.
    """
    if is_proxy(instance):
        return instance._proxy_initialized
    if isinstance(instance, Model):
        return True
    return bool(getattr(instance, "is_initialized", True))


def is_loading(instance: Any) -> bool:
    return is_proxy(instance) and instance._proxy_loading


def real_class(instance_or_model: Any) -> Type[Model]:
    model = instance_or_model if isinstance(instance_or_model, type) else type(instance_or_model)
    return model._real_class()
