"""Ultimate Control - Operation executor.

Runs connect / disconnect / forget / enable / disable against a freshly
resolved target.  Each call walks IDLE -> RESOLVING -> ACTING and ends in
SUCCEEDED or FAILED.  Gateway errors never escape: every call returns an
``Outcome``.

Connect policy for secured targets: the first attempt never sends
credentials so a saved association is reused when it still works.  Only if
that fails on a secured target, and the caller supplied credentials, is a
second attempt made.
"""

import enum
import logging
import threading
from typing import Callable, Optional, Set, Tuple

from .errors import ActionRejected, GatewayError, ResolutionFailed
from .interfaces import (
    ActionsInterface,
    BluetoothGatewayInterface,
    Outcome,
    OperationKind,
    ResolvedTarget,
    ResolverInterface,
    WifiGatewayInterface,
)
from .state import StateCache

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    IDLE = 'idle'
    RESOLVING = 'resolving'
    ACTING = 'acting'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


PhaseListener = Callable[[str, OperationKind, Phase], None]


# ---------------------------------------------------------------------------
# Operation tokens
# ---------------------------------------------------------------------------

class OperationTokens:
    """At most one live token per (identifier, kind)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._live: Set[Tuple[str, OperationKind]] = set()

    def acquire(self, identifier: str, kind: OperationKind) -> bool:
        key = (identifier, kind)
        with self._lock:
            if key in self._live:
                return False
            self._live.add(key)
            return True

    def release(self, identifier: str, kind: OperationKind) -> None:
        with self._lock:
            self._live.discard((identifier, kind))

    def is_busy(self, identifier: str, kind: OperationKind) -> bool:
        with self._lock:
            return (identifier, kind) in self._live

    def __len__(self) -> int:
        with self._lock:
            return len(self._live)


# ---------------------------------------------------------------------------
# Subsystem actions
# ---------------------------------------------------------------------------

class BluetoothActions(ActionsInterface):
    """Device1 / Adapter1 calls on resolved BlueZ paths."""

    uses_credentials = False

    def __init__(self, gateway: BluetoothGatewayInterface):
        self._gateway = gateway

    def connect(self, target: ResolvedTarget,
                credentials: Optional[str] = None) -> None:
        self._gateway.connect(target.path)

    def disconnect(self, target: ResolvedTarget) -> None:
        self._gateway.disconnect(target.path)

    def remove(self, target: ResolvedTarget) -> None:
        self._gateway.remove_device(target.parent, target.path)

    def remove_by_name(self, name: str) -> None:
        raise ActionRejected(f'BlueZ cannot remove {name!r} without an object path')

    def set_radio_enabled(self, on: bool) -> None:
        self._gateway.set_radio_enabled(on)


class WifiActions(ActionsInterface):
    """NetworkManager profile calls on resolved WiFi targets."""

    uses_credentials = True

    def __init__(self, gateway: WifiGatewayInterface):
        self._gateway = gateway

    def connect(self, target: ResolvedTarget,
                credentials: Optional[str] = None) -> None:
        if credentials:
            self._gateway.connect_network(target.identifier, credentials)
        elif target.saved:
            self._gateway.activate_profile(target.path)
        else:
            self._gateway.connect_network(target.identifier)

    def disconnect(self, target: ResolvedTarget) -> None:
        if not target.saved:
            raise ActionRejected(f'{target.identifier} has no profile to take down')
        self._gateway.deactivate_profile(target.path)

    def remove(self, target: ResolvedTarget) -> None:
        if not target.saved:
            raise ActionRejected(f'{target.identifier} has no saved profile')
        self._gateway.delete_profile(target.path)

    def remove_by_name(self, name: str) -> None:
        self._gateway.delete_profile_by_name(name)

    def set_radio_enabled(self, on: bool) -> None:
        self._gateway.set_radio_enabled(on)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class OperationExecutor:
    """Performs one operation synchronously on the calling worker thread."""

    def __init__(self, resolver: ResolverInterface, actions: ActionsInterface,
                 cache: StateCache, listener: Optional[PhaseListener] = None):
        self._resolver = resolver
        self._actions = actions
        self._cache = cache
        self._listener = listener

    def _enter(self, identifier: str, kind: OperationKind, phase: Phase) -> None:
        logger.debug('%s %s -> %s', kind.value, identifier, phase.value)
        if self._listener is not None:
            self._listener(identifier, kind, phase)

    def _finish(self, identifier: str, kind: OperationKind, success: bool,
                message: str = '', needs_credentials: bool = False) -> Outcome:
        self._enter(identifier, kind, Phase.SUCCEEDED if success else Phase.FAILED)
        if success:
            logger.info('%s %s succeeded%s', kind.value, identifier,
                        f' ({message})' if message else '')
        else:
            logger.warning('%s %s failed: %s', kind.value, identifier, message)
        return Outcome(success=success, identifier=identifier, kind=kind,
                       needs_credentials=needs_credentials, message=message)

    def execute(self, kind: OperationKind, identifier: str,
                credentials: Optional[str] = None) -> Outcome:
        self._enter(identifier, kind, Phase.IDLE)

        if kind is OperationKind.ENABLE:
            return self._set_radio(identifier, kind, True)
        if kind is OperationKind.DISABLE:
            return self._set_radio(identifier, kind, False)

        if not self._cache.is_enabled():
            return self._finish(identifier, kind, False, 'subsystem disabled')

        if kind is OperationKind.CONNECT:
            return self._connect(identifier, credentials)
        if kind is OperationKind.DISCONNECT:
            return self._disconnect(identifier)
        return self._forget(identifier)

    def _resolve(self, identifier: str, kind: OperationKind) -> ResolvedTarget:
        self._enter(identifier, kind, Phase.RESOLVING)
        target = self._resolver.resolve(identifier)
        if target is None:
            raise ResolutionFailed(f'{identifier} not found')
        return target

    def _connect(self, identifier: str, credentials: Optional[str]) -> Outcome:
        kind = OperationKind.CONNECT
        record = self._cache.find(identifier)
        if record is not None and record.connected:
            return self._finish(identifier, kind, True, 'already connected')

        try:
            target = self._resolve(identifier, kind)
        except ResolutionFailed as exc:
            return self._finish(identifier, kind, False, str(exc))

        self._enter(identifier, kind, Phase.ACTING)
        try:
            self._actions.connect(target)
            return self._finish(identifier, kind, True)
        except GatewayError as exc:
            first_error = str(exc)

        if not self._actions.uses_credentials:
            return self._finish(identifier, kind, False, first_error)

        secured = record.secured if record is not None else True
        if not credentials or not secured:
            return self._finish(identifier, kind, False, first_error,
                                needs_credentials=secured and not credentials)

        logger.info('Retrying %s with supplied credentials', identifier)
        try:
            self._actions.connect(target, credentials)
        except GatewayError as exc:
            return self._finish(identifier, kind, False, str(exc))
        return self._finish(identifier, kind, True)

    def _disconnect(self, identifier: str) -> Outcome:
        kind = OperationKind.DISCONNECT
        try:
            target = self._resolve(identifier, kind)
        except ResolutionFailed as exc:
            return self._finish(identifier, kind, False, str(exc))

        self._enter(identifier, kind, Phase.ACTING)
        try:
            self._actions.disconnect(target)
        except GatewayError as exc:
            return self._finish(identifier, kind, False, str(exc))
        return self._finish(identifier, kind, True)

    def _forget(self, identifier: str) -> Outcome:
        kind = OperationKind.FORGET
        record = self._cache.find(identifier)

        try:
            target = self._resolve(identifier, kind)
        except ResolutionFailed:
            target = None

        self._enter(identifier, kind, Phase.ACTING)
        try:
            if target is not None and target.saved:
                try:
                    self._actions.disconnect(target)
                except GatewayError as exc:
                    logger.debug('Ignoring disconnect error before forget: %s', exc)
                self._actions.remove(target)
            else:
                # Some services key saved profiles by name; two networks
                # sharing a display name would collide here.
                name = record.display_name if record is not None else identifier
                logger.warning('Forgetting %s by name %r', identifier, name)
                self._actions.remove_by_name(name)
        except GatewayError as exc:
            return self._finish(identifier, kind, False, str(exc))
        return self._finish(identifier, kind, True)

    def _set_radio(self, identifier: str, kind: OperationKind, on: bool) -> Outcome:
        self._enter(identifier, kind, Phase.ACTING)
        try:
            self._actions.set_radio_enabled(on)
        except GatewayError as exc:
            return self._finish(identifier, kind, False, str(exc))

        if on:
            self._cache.set_enabled(True)
        else:
            self._cache.disable()
        return self._finish(identifier, kind, True)
