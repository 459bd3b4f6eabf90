"""Guard composition for entrypoints.

Guards are declared by name and composed once, when the entrypoint is
decorated. At call time they run in a fixed stage order regardless of the
order they were declared in:

    Access -> Pause -> Reentrancy -> body

The reentrancy locks are released on every exit path, including exceptions
and task cancellation. A guarded function is guarded everywhere: calling it
from another operation in the same unit goes through the same chain.
"""

from __future__ import annotations

import functools
import inspect
import logging
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

from warden.core.auth.models import Capability, validate_role_id
from warden.core.context import CallContext
from warden.core.errors import ConfigurationError, GuardError, UnauthorizedError
from warden.core.observability.metrics import inc_guard_rejection, inc_guarded_call

from .reentrancy import caller_key, group_key

log = logging.getLogger("warden.guards")


class GuardStage(IntEnum):
    ACCESS = 0
    PAUSE = 1
    REENTRANCY = 2


@dataclass(frozen=True)
class Guard:
    name: str
    stage: GuardStage
    # ACCESS / PAUSE: raise to reject
    check: Optional[Callable[[CallContext], None]] = None
    # REENTRANCY: lock key for this call
    lock_key: Optional[Callable[[CallContext], str]] = None


def _split_roles(raw: str, spec: str) -> Tuple[str, ...]:
    roles = tuple(validate_role_id(r) for r in raw.split(",") if r.strip())
    if not roles:
        raise ConfigurationError(f"Guard {spec!r} names no roles")
    return roles


def _capability_check(cap: Capability, name: str) -> Callable[[CallContext], None]:
    def check(ctx: CallContext) -> None:
        ctx.gov.access.require_capability(ctx.caller, cap, guard=name)
    return check


def _not_anonymous(name: str) -> Callable[[CallContext], None]:
    def check(ctx: CallContext) -> None:
        if ctx.caller.is_anonymous:
            raise UnauthorizedError(name, "Anonymous caller is not allowed", caller=str(ctx.caller))
    return check


def _roles_check(roles: Tuple[str, ...], name: str, *, require_all: bool) -> Callable[[CallContext], None]:
    def check(ctx: CallContext) -> None:
        access = ctx.gov.access
        caps = [Capability.for_role(r) for r in roles]
        ok = (
            all(access.has_capability(ctx.caller, c) for c in caps)
            if require_all
            else any(access.has_capability(ctx.caller, c) for c in caps)
        )
        if not ok:
            mode = "all" if require_all else "any"
            raise UnauthorizedError(
                name,
                f"Caller {ctx.caller} does not hold {mode} of roles {', '.join(roles)}",
                caller=str(ctx.caller),
            )
    return check


def _pause_check(name: str, *, paused: bool) -> Callable[[CallContext], None]:
    def check(ctx: CallContext) -> None:
        pausable = ctx.gov.pausable
        if paused:
            pausable.when_paused(guard=name, caller=str(ctx.caller))
        else:
            pausable.when_not_paused(guard=name, caller=str(ctx.caller))
    return check


def parse_guard(spec: str) -> Guard:
    """
    Supported names:
      owner-only, admin-only, not-anonymous, role:X, roles-any:X,Y, roles-all:X,Y
      not-paused, when-paused
      reentrancy-group:Y, non-reentrant (per caller across all such entrypoints)
    """
    try:
        return _build_guard((spec or "").strip(), spec)
    except ValueError as e:
        # bad role ids
        raise ConfigurationError(f"Invalid guard {spec!r}: {e}") from e


def _build_guard(name: str, spec: str) -> Guard:
    if name == "owner-only":
        return Guard(name, GuardStage.ACCESS, check=_capability_check(Capability.owner(), name))
    if name == "admin-only":
        return Guard(name, GuardStage.ACCESS, check=_capability_check(Capability.admin(), name))
    if name == "not-anonymous":
        return Guard(name, GuardStage.ACCESS, check=_not_anonymous(name))
    if name.startswith("role:"):
        cap = Capability.for_role(name.split(":", 1)[1])
        return Guard(name, GuardStage.ACCESS, check=_capability_check(cap, name))
    if name.startswith("roles-any:"):
        roles = _split_roles(name.split(":", 1)[1], name)
        return Guard(name, GuardStage.ACCESS, check=_roles_check(roles, name, require_all=False))
    if name.startswith("roles-all:"):
        roles = _split_roles(name.split(":", 1)[1], name)
        return Guard(name, GuardStage.ACCESS, check=_roles_check(roles, name, require_all=True))

    if name == "not-paused":
        return Guard(name, GuardStage.PAUSE, check=_pause_check(name, paused=False))
    if name == "when-paused":
        return Guard(name, GuardStage.PAUSE, check=_pause_check(name, paused=True))

    if name.startswith("reentrancy-group:"):
        group = name.split(":", 1)[1].strip()
        if not group:
            raise ConfigurationError(f"Guard {spec!r} names no lock group")
        key = group_key(group)
        return Guard(name, GuardStage.REENTRANCY, lock_key=lambda ctx: key)
    if name == "non-reentrant":
        return Guard(name, GuardStage.REENTRANCY, lock_key=lambda ctx: caller_key(ctx.caller.subject))

    raise ConfigurationError(f"Unknown guard: {spec!r}")


class GuardChain:
    def __init__(self, guards: Sequence[Guard], *, entrypoint: str):
        # sorted() is stable: declaration order is kept within a stage
        self.guards: List[Guard] = sorted(guards, key=lambda g: int(g.stage))
        self.entrypoint = entrypoint

    @classmethod
    def from_specs(cls, specs: Sequence[str], *, entrypoint: str) -> "GuardChain":
        seen = set()
        guards: List[Guard] = []
        for s in specs:
            g = parse_guard(s)
            if g.name in seen:
                raise ConfigurationError(f"Guard {g.name!r} declared twice on {entrypoint}")
            seen.add(g.name)
            guards.append(g)
        return cls(guards, entrypoint=entrypoint)

    @property
    def names(self) -> List[str]:
        return [g.name for g in self.guards]

    def _reject(self, err: GuardError) -> None:
        inc_guard_rejection(err.stage, err.guard)
        inc_guarded_call(self.entrypoint, "rejected")
        log.info("%s", {"event": "guard_rejected", "entrypoint": self.entrypoint, **err.to_dict()})

    def check(self, ctx: CallContext) -> None:
        """Run the access and pause stages."""
        ctx.gov.require_ready()
        for g in self.guards:
            if g.check is None:
                continue
            try:
                g.check(ctx)
            except GuardError as e:
                self._reject(e)
                raise

    @contextmanager
    def held(self, ctx: CallContext) -> Generator[None, None, None]:
        """Acquire every reentrancy lock of the chain; release all on exit."""
        with ExitStack() as stack:
            for g in self.guards:
                if g.lock_key is None:
                    continue
                try:
                    stack.enter_context(
                        ctx.gov.reentrancy.hold(g.lock_key(ctx), guard=g.name, caller=str(ctx.caller))
                    )
                except GuardError as e:
                    self._reject(e)
                    raise
            yield

    def run(self, fn: Callable[..., Any], ctx: CallContext, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Any:
        self.check(ctx)
        with self.held(ctx):
            try:
                result = fn(ctx, *args, **kwargs)
                if inspect.isawaitable(result):
                    # the locks would be released before the awaitable runs
                    if inspect.iscoroutine(result):
                        result.close()
                    raise TypeError(
                        f"{self.entrypoint} returned an awaitable from a sync body; declare it async"
                    )
            except Exception:
                inc_guarded_call(self.entrypoint, "failed")
                raise
        inc_guarded_call(self.entrypoint, "ok")
        return result

    async def run_async(
        self,
        fn: Callable[..., Any],
        ctx: CallContext,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ) -> Any:
        self.check(ctx)
        with self.held(ctx):
            try:
                result = await fn(ctx, *args, **kwargs)
            except Exception:
                inc_guarded_call(self.entrypoint, "failed")
                raise
            except BaseException:
                # CancelledError and friends: the lock is still released by held()
                inc_guarded_call(self.entrypoint, "cancelled")
                raise
        inc_guarded_call(self.entrypoint, "ok")
        return result


def _require_context(ctx: Any, entrypoint: str) -> CallContext:
    if not isinstance(ctx, CallContext):
        raise TypeError(f"{entrypoint} must be called with a CallContext as first argument")
    return ctx


def guarded(*guards: str, name: Optional[str] = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorate an operation taking a CallContext first.

        @guarded("role:minter", "not-paused", "reentrancy-group:ledger")
        async def mint(ctx, amount): ...
    """

    def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
        entrypoint = name or fn.__name__
        chain = GuardChain.from_specs(guards, entrypoint=entrypoint)

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(ctx: CallContext, *args: Any, **kwargs: Any) -> Any:
                return await chain.run_async(fn, _require_context(ctx, entrypoint), args, kwargs)

            async_wrapper.__guard_chain__ = chain  # type: ignore[attr-defined]
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(ctx: CallContext, *args: Any, **kwargs: Any) -> Any:
            return chain.run(fn, _require_context(ctx, entrypoint), args, kwargs)

        wrapper.__guard_chain__ = chain  # type: ignore[attr-defined]
        return wrapper

    return deco


def guard_chain_of(fn: Callable[..., Any]) -> Optional[GuardChain]:
    return getattr(fn, "__guard_chain__", None)
