"""
Authorization strategy registry.

Maps each `AuthType` to the class that implements it.
"""

from typing import Protocol

from fhirsession.client.auth.protocol import AuthContext, AuthStrategy, AuthType
from fhirsession.client.auth.strategies import (
    CodeGrantAuth,
    HeaderAuth,
    ImplicitGrantAuth,
    NoneAuth,
    PasswordGrantAuth,
)
from fhirsession.shared.auth import AuthSettings


class AuthStrategyFactory(Protocol):
    def __call__(self, settings: AuthSettings, context: AuthContext) -> AuthStrategy: ...


class AuthTypeRegistry:
    """
    Registry of authorization strategies.

    Holds the strategy class for every `AuthType`; integrators can replace an
    entry, for example to plug in their own `custom` strategy.
    """

    _defaults: dict[AuthType, AuthStrategyFactory] = {
        AuthType.NONE: NoneAuth,
        AuthType.IMPLICIT_GRANT: ImplicitGrantAuth,
        AuthType.CODE_GRANT: CodeGrantAuth,
        AuthType.PASSWORD_GRANT: PasswordGrantAuth,
        AuthType.CUSTOM: HeaderAuth,
    }
    _strategies: dict[AuthType, AuthStrategyFactory] = dict(_defaults)

    @classmethod
    def register(cls, auth_type: AuthType, factory: AuthStrategyFactory) -> None:
        """
        Register the strategy for an authorization type.

        Args:
            auth_type: The variant the factory implements
            factory: A class (or callable) taking ``(settings, context)``
        """
        cls._strategies[auth_type] = factory

    @classmethod
    def get(cls, auth_type: AuthType) -> AuthStrategyFactory | None:
        return cls._strategies.get(auth_type)

    @classmethod
    def create(cls, auth_type: AuthType, settings: AuthSettings, context: AuthContext) -> AuthStrategy:
        factory = cls._strategies.get(auth_type)
        if factory is None:
            raise KeyError(f"No strategy registered for {auth_type.value}")
        return factory(settings, context)

    @classmethod
    def restore_defaults(cls) -> None:
        cls._strategies = dict(cls._defaults)

    @classmethod
    def list_registered(cls) -> list[AuthType]:
        return list(cls._strategies)
