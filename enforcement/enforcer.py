"""
Enforcer: orchestrates model, matchers, role managers, policy store,
effector and decision cache behind a reader/writer lock.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from shared.config import EnforcerSettings
from shared.errors import AdapterError, EnforceError, EvalError, ModelError
from shared.logging import get_logger, reset_subject_context, set_subject_context
from shared.metrics import MetricsCollector
from .cache import DecisionCache, make_request_key
from .concurrency import ReadWriteLock
from .effect import EffectKind, Effector
from .expression import CompiledMatcher, compile_expression, evaluate, get_builtin_functions
from .model import Model
from .persist import Adapter, AsyncAdapter, PolicyLine, Watcher
from .policy import PolicyStore, Row
from .rbac import RoleManager


ModelLike = Union[Model, Mapping[str, Any]]
MatchingFn = Callable[[str, str], bool]


@dataclass(frozen=True)
class EnforceContext:
    """Selects which request, policy, effect and matcher sections to use."""
    r_type: str = "r"
    p_type: str = "p"
    e_type: str = "e"
    m_type: str = "m"

    @classmethod
    def new(cls, suffix: str) -> "EnforceContext":
        """``EnforceContext.new("2")`` selects r2, p2, e2 and m2."""
        return cls(f"r{suffix}", f"p{suffix}", f"e{suffix}", f"m{suffix}")

    @property
    def key(self) -> str:
        return f"{self.r_type}|{self.p_type}|{self.e_type}|{self.m_type}"


DEFAULT_CONTEXT = EnforceContext()


@dataclass
class EnforceResult:
    """Result of an enforcement call."""
    allowed: bool
    explain: List[List[str]] = field(default_factory=list)
    cache_hit: bool = False
    evaluation_time_ms: float = 0.0
    rule_errors: int = 0


class Enforcer:
    """Authorization decision engine.

    Safe to share between threads: ``enforce`` calls run concurrently under
    the read lock. Mutations and reloads are serialized by a mutation lock
    and publish their changes under the write lock, clearing the decision
    cache before returning.

    With an ``AsyncAdapter`` build the enforcer through ``await
    Enforcer.create(...)`` so the initial rule set is loaded.
    """

    def __init__(
        self,
        model: ModelLike,
        adapter: Optional[Union[Adapter, AsyncAdapter]] = None,
        *,
        settings: Optional[EnforcerSettings] = None,
        functions: Optional[Mapping[str, Callable[..., Any]]] = None,
        watcher: Optional[Watcher] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.logger = get_logger("enforcement.enforcer")
        self.settings = settings or EnforcerSettings()
        self.metrics = metrics

        self._enabled = self.settings.enabled
        self._auto_save = self.settings.auto_save
        self._auto_notify_watcher = self.settings.auto_notify_watcher
        self._auto_build_role_links = self.settings.auto_build_role_links
        self._cache_enabled = self.settings.cache_enabled

        self._lock = ReadWriteLock()
        # Serializes writers end to end, including adapter reads during a reload
        self._mutation_lock = threading.Lock()
        self._policy_version = 0
        self._effector = Effector()
        self._cache = DecisionCache(self.settings.cache_max_size)
        self._custom_functions: Dict[str, Callable[..., Any]] = dict(functions or {})
        self._matching_fns: Dict[str, Dict[str, Optional[MatchingFn]]] = {}
        self._adapter = adapter
        self._watcher: Optional[Watcher] = None

        model = model if isinstance(model, Model) else Model.load(model)
        self._model = model
        self._matchers = self._compile_matchers(model)
        self._store = self._new_store(model)
        self._role_managers = self._new_role_managers(model)
        self._functions = self._bind_functions(model, self._role_managers)

        if isinstance(adapter, Adapter):
            self.load_policy()
        elif adapter is not None:
            self.logger.info("Async adapter attached; policy is empty until load_policy_async")

        if watcher is not None:
            self.set_watcher(watcher)

        self.logger.info(
            "Enforcer initialized",
            policies=list(model.policies),
            roles=list(model.roles),
            cache_enabled=self._cache_enabled,
            max_hierarchy_level=self.settings.max_hierarchy_level
        )

    @classmethod
    async def create(
        cls,
        model: ModelLike,
        adapter: Optional[Union[Adapter, AsyncAdapter]] = None,
        **kwargs: Any,
    ) -> "Enforcer":
        """Build an enforcer and await the initial load of an async adapter.

        Synchronous adapters are loaded by the constructor as usual.
        """
        enforcer = cls(model, adapter, **kwargs)
        if isinstance(adapter, AsyncAdapter):
            await enforcer.load_policy_async()
        return enforcer

    # ------------------------------------------------------------------
    # Construction helpers (callers hold the write lock or own the state)
    # ------------------------------------------------------------------

    def _available_functions(self, model: Model) -> List[str]:
        return [*get_builtin_functions(), *self._custom_functions, *model.roles]

    def _compile_matchers(self, model: Model) -> Dict[str, CompiledMatcher]:
        functions = self._available_functions(model)
        return {
            key: compile_expression(text, model.matcher_fields(key), functions)
            for key, text in model.matchers.items()
        }

    def _new_store(self, model: Model) -> PolicyStore:
        store = PolicyStore()
        if self.settings.unique_policies:
            for key in (*model.policies, *model.roles):
                store.set_unique(key)
        return store

    def _new_role_managers(self, model: Model) -> Dict[str, RoleManager]:
        role_managers = {}
        for gtype in model.roles:
            rm = RoleManager(self.settings.max_hierarchy_level, name=gtype)
            fns = self._matching_fns.get(gtype, {})
            rm.add_matching_fn(fns.get("role"))
            rm.add_domain_matching_fn(fns.get("domain"))
            role_managers[gtype] = rm
        return role_managers

    def _bind_functions(self, model: Model, role_managers: Mapping[str, RoleManager]) -> Dict[str, Callable[..., Any]]:
        functions: Dict[str, Callable[..., Any]] = get_builtin_functions()
        functions.update(self._custom_functions)
        for gtype, rm in role_managers.items():
            functions[gtype] = self._role_predicate(gtype, model.role_arity(gtype), rm)
        return functions

    @staticmethod
    def _role_predicate(gtype: str, arity: int, rm: RoleManager) -> Callable[..., bool]:
        def predicate(*args) -> bool:
            if len(args) != arity:
                raise EvalError(
                    f"Role predicate '{gtype}' takes {arity} arguments",
                    {"function": gtype, "given": len(args)}
                )
            if not all(isinstance(arg, str) for arg in args):
                raise EvalError(f"Role predicate '{gtype}' expects string arguments", {"function": gtype})
            domain = args[2] if arity == 3 else None
            return rm.has_link(args[0], args[1], domain)

        return predicate

    def _stage(self, model: Model, lines: Sequence[PolicyLine]) -> Tuple[PolicyStore, Dict[str, RoleManager]]:
        """Build a store and role graphs from raw rows without touching live state."""
        store = self._new_store(model)
        for key, row in lines:
            row = tuple(row)
            self._validate_row(model, key, row, ModelError)
            if not store.add(key, row):
                self.logger.debug("Duplicate policy row skipped", ptype=key, row=list(row))

        role_managers = self._new_role_managers(model)
        if self._auto_build_role_links:
            self._link_all(model, store, role_managers)
        return store, role_managers

    @staticmethod
    def _link_all(model: Model, store: PolicyStore, role_managers: Mapping[str, RoleManager]):
        for gtype, rm in role_managers.items():
            domain_aware = model.has_domain(gtype)
            for row in store.rows(gtype):
                rm.add_link(row[0], row[1], row[2] if domain_aware else None)

    @staticmethod
    def _validate_row(model: Model, key: str, row: Sequence[Any], error_cls=EnforceError):
        if key in model.policies:
            expected = len(model.policies[key])
        elif key in model.roles:
            expected = model.roles[key]
        else:
            raise error_cls("Unknown policy type", {"ptype": key})

        if len(row) != expected:
            raise error_cls(
                "Policy row arity mismatch",
                {"ptype": key, "expected": expected, "given": len(row)}
            )
        if not all(isinstance(value, str) for value in row):
            raise error_cls("Policy row fields must be strings", {"ptype": key})

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def enforce(self, *rvals: Any, context: Optional[EnforceContext] = None) -> bool:
        """Decide whether the request is permitted."""
        return self._enforce(rvals, context or DEFAULT_CONTEXT, explain=False).allowed

    def enforce_ex(self, *rvals: Any, context: Optional[EnforceContext] = None) -> EnforceResult:
        """Decide and report the rows that determined the decision.

        Explained calls always evaluate and never consult the cache.
        """
        return self._enforce(rvals, context or DEFAULT_CONTEXT, explain=True)

    def _enforce(self, rvals: Sequence[Any], context: EnforceContext, explain: bool) -> EnforceResult:
        # Bind the subject so rule and failure logs carry it
        token = set_subject_context(rvals[0]) if rvals and isinstance(rvals[0], str) else None
        try:
            return self._decide(rvals, context, explain)
        finally:
            if token is not None:
                reset_subject_context(token)

    def _decide(self, rvals: Sequence[Any], context: EnforceContext, explain: bool) -> EnforceResult:
        start_time = time.perf_counter()

        try:
            with self._lock.read_locked():
                self._validate_request(rvals, context)
                if not self._enabled:
                    return EnforceResult(allowed=True)
                result = self._evaluate_request(rvals, context, explain)
        except EnforceError as e:
            if self.metrics:
                self.metrics.record_error(e.code)
            self.logger.warning("Enforce failed", error=e.message, details=e.details)
            raise

        duration = time.perf_counter() - start_time
        result.evaluation_time_ms = duration * 1000
        if self.metrics:
            self.metrics.record_decision(result.allowed, duration)

        self.logger.debug(
            "Enforce decision",
            request=[str(value) for value in rvals],
            allowed=result.allowed,
            cache_hit=result.cache_hit
        )
        return result

    def _validate_request(self, rvals: Sequence[Any], context: EnforceContext):
        model = self._model
        if (context.r_type not in model.requests or context.p_type not in model.policies
                or context.e_type not in model.effects or context.m_type not in self._matchers):
            raise EnforceError("Unknown enforce context", {"context": context.key})

        r_fields = model.requests[context.r_type]
        if len(rvals) != len(r_fields):
            raise EnforceError(
                "Request arity mismatch",
                {"expected": len(r_fields), "given": len(rvals), "request": context.r_type}
            )

    def _evaluate_request(self, rvals: Sequence[Any], context: EnforceContext, explain: bool) -> EnforceResult:
        model = self._model
        matcher = self._matchers[context.m_type]
        r_fields = model.requests[context.r_type]

        cache_key = None
        if self._cache_enabled and not explain:
            cache_key = make_request_key(context.key, rvals)
            if cache_key is not None:
                cached = self._cache.get(cache_key)
                if self.metrics:
                    self.metrics.record_cache_lookup(cached is not None)
                if cached is not None:
                    return EnforceResult(allowed=cached, cache_hit=True)

        values: Dict[str, Any] = {f"{context.r_type}.{name}": value for name, value in zip(r_fields, rvals)}
        p_fields = model.policies[context.p_type]
        p_names = [f"{context.p_type}.{name}" for name in p_fields]
        eft_index = p_fields.index("eft") if "eft" in p_fields else None
        rows = self._store.rows(context.p_type)
        rule_errors = 0

        if rows:
            stream = self._effector.new_stream(model.effects[context.e_type], len(rows))
            for row in rows:
                row_values = dict(values)
                row_values.update(zip(p_names, row))
                effect = self._evaluate_row(matcher, row_values, row, eft_index)
                if effect is None:
                    rule_errors += 1
                    effect = EffectKind.INDETERMINATE
                if stream.push_effect(effect):
                    break
        else:
            # No rows: evaluate once with empty policy fields
            stream = self._effector.new_stream(model.effects[context.e_type], 1)
            row_values = dict(values)
            row_values.update((name, "") for name in p_names)
            effect = self._evaluate_row(matcher, row_values, (), None)
            if effect is None:
                rule_errors += 1
                effect = EffectKind.INDETERMINATE
            stream.push_effect(effect)

        allowed = stream.next()
        explained = [list(rows[i]) for i in stream.explain()] if explain and rows else []

        if cache_key is not None:
            self._cache.put(cache_key, allowed)

        return EnforceResult(allowed=allowed, explain=explained, rule_errors=rule_errors)

    def _evaluate_row(self, matcher: CompiledMatcher, values: Mapping[str, Any], row: Row,
                      eft_index: Optional[int]) -> Optional[EffectKind]:
        """Outcome of one row, or None when its evaluation failed."""
        try:
            matched = evaluate(matcher, values, self._functions)
        except EvalError as e:
            self.logger.error(
                "Rule evaluation error",
                matcher=matcher.text,
                row=list(row),
                error=e.message,
                details=e.details
            )
            if self.metrics:
                self.metrics.record_rule_error()
            return None

        if not matched:
            return EffectKind.INDETERMINATE
        if eft_index is None:
            return EffectKind.ALLOW

        eft = row[eft_index]
        if eft == EffectKind.ALLOW.value:
            return EffectKind.ALLOW
        if eft == EffectKind.DENY.value:
            return EffectKind.DENY
        return EffectKind.INDETERMINATE

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _mutate(self, operation: str, check: Callable[[Model], bool],
                persist: Optional[Callable[[Adapter], None]], apply: Callable[[Model], Any]) -> bool:
        """Check, persist, apply and invalidate as one exclusive step.

        The mutation lock keeps other writers out for the whole step; readers
        are only held off while the change is applied.
        """
        with self._mutation_lock:
            model = self._model
            if not check(model):
                return False
            if persist is not None and self._auto_save and self._adapter is not None:
                if isinstance(self._adapter, Adapter):
                    self._call_adapter(operation, persist)
                else:
                    self.logger.debug("Async adapter has no incremental hooks", operation=operation)
            with self._lock.write_locked():
                apply(model)
                self._policy_version += 1
                self._cache.invalidate_all()

        self.logger.info("Policy mutated", operation=operation)
        if self.metrics:
            self.metrics.record_mutation(operation)
        self._notify_watcher()
        return True

    def _call_adapter(self, operation: str, call: Callable[[Adapter], None]):
        adapter = self._adapter
        try:
            call(adapter)
        except NotImplementedError:
            self.logger.debug("Adapter has no incremental support", operation=operation)
        except Exception as e:
            self.logger.error("Adapter call failed", operation=operation, error=str(e))
            if self.metrics:
                self.metrics.record_error("ADAPTER_ERROR")
            raise AdapterError(type(adapter).__name__, str(e), {"operation": operation}) from e

    def _notify_watcher(self):
        watcher = self._watcher
        if watcher is None or not self._auto_notify_watcher:
            return
        try:
            watcher.update()
        except Exception as e:
            # The mutation is committed; propagation failure is reported, not rolled back.
            self.logger.error("Watcher update failed", error=str(e))
            if self.metrics:
                self.metrics.record_error("WATCHER_ERROR")

    def _link(self, model: Model, key: str, row: Row):
        if key in model.roles and self._auto_build_role_links:
            domain = row[2] if model.has_domain(key) else None
            self._role_managers[key].add_link(row[0], row[1], domain)

    def _unlink(self, model: Model, key: str, row: Row):
        # Duplicate rows may still back the link
        if key in model.roles and self._auto_build_role_links and not self._store.has(key, row):
            domain = row[2] if model.has_domain(key) else None
            self._role_managers[key].delete_link(row[0], row[1], domain)

    @staticmethod
    def _params(params: Sequence[Any]) -> Row:
        if len(params) == 1 and isinstance(params[0], (list, tuple)):
            params = params[0]
        return tuple(params)

    def add_named_policy(self, ptype: str, *params: Any) -> bool:
        """Add one row; False if it already exists."""
        row = self._params(params)

        def check(model: Model) -> bool:
            self._validate_row(model, ptype, row)
            return not (self._store.is_unique(ptype) and self._store.has(ptype, row))

        def apply(model: Model):
            self._store.add(ptype, row)
            self._link(model, ptype, row)

        return self._mutate("add_policy", check, lambda a: a.add_policy(ptype, list(row)), apply)

    def add_named_policies(self, ptype: str, rows: Sequence[Sequence[str]]) -> bool:
        """Add all rows atomically; False if any already exists."""
        rows = [tuple(row) for row in rows]

        def check(model: Model) -> bool:
            for row in rows:
                self._validate_row(model, ptype, row)
            if not self._store.is_unique(ptype):
                return bool(rows)
            return bool(rows) and len(set(rows)) == len(rows) and not any(self._store.has(ptype, row) for row in rows)

        def apply(model: Model):
            self._store.add_many(ptype, rows)
            for row in rows:
                self._link(model, ptype, row)

        return self._mutate(
            "add_policies", check, lambda a: a.add_policies(ptype, [list(row) for row in rows]), apply
        )

    def remove_named_policy(self, ptype: str, *params: Any) -> bool:
        """Remove one row; False if absent."""
        row = self._params(params)

        def check(model: Model) -> bool:
            self._validate_row(model, ptype, row)
            return self._store.has(ptype, row)

        def apply(model: Model):
            self._store.remove(ptype, row)
            self._unlink(model, ptype, row)

        return self._mutate("remove_policy", check, lambda a: a.remove_policy(ptype, list(row)), apply)

    def remove_named_policies(self, ptype: str, rows: Sequence[Sequence[str]]) -> bool:
        """Remove all rows atomically; False if any is absent."""
        rows = [tuple(row) for row in rows]

        def check(model: Model) -> bool:
            for row in rows:
                self._validate_row(model, ptype, row)
            return bool(rows) and all(self._store.has(ptype, row) for row in rows)

        def apply(model: Model):
            self._store.remove_many(ptype, rows)
            for row in rows:
                self._unlink(model, ptype, row)

        return self._mutate(
            "remove_policies", check, lambda a: a.remove_policies(ptype, [list(row) for row in rows]), apply
        )

    def remove_filtered_named_policy(self, ptype: str, field_index: int, *values: str) -> bool:
        """Remove rows matching ``values`` from ``field_index`` on ('' matches anything)."""

        def check(model: Model) -> bool:
            if ptype not in model.policies and ptype not in model.roles:
                raise EnforceError("Unknown policy type", {"ptype": ptype})
            return bool(self._store.get_filtered(ptype, field_index, *values))

        def apply(model: Model):
            for row in self._store.remove_filtered(ptype, field_index, *values):
                self._unlink(model, ptype, row)

        return self._mutate(
            "remove_filtered_policy", check,
            lambda a: a.remove_filtered_policy(ptype, field_index, *values), apply
        )

    def update_named_policy(self, ptype: str, old_row: Sequence[str], new_row: Sequence[str]) -> bool:
        """Replace ``old_row`` with ``new_row`` keeping its position."""
        old_row, new_row = tuple(old_row), tuple(new_row)

        def check(model: Model) -> bool:
            self._validate_row(model, ptype, old_row)
            self._validate_row(model, ptype, new_row)
            if not self._store.has(ptype, old_row):
                return False
            return not (self._store.is_unique(ptype) and new_row != old_row and self._store.has(ptype, new_row))

        def apply(model: Model):
            self._store.update(ptype, old_row, new_row)
            self._unlink(model, ptype, old_row)
            self._link(model, ptype, new_row)

        return self._mutate(
            "update_policy", check, lambda a: a.update_policy(ptype, list(old_row), list(new_row)), apply
        )

    def add_policy(self, *params: Any) -> bool:
        return self.add_named_policy("p", *params)

    def add_policies(self, rows: Sequence[Sequence[str]]) -> bool:
        return self.add_named_policies("p", rows)

    def remove_policy(self, *params: Any) -> bool:
        return self.remove_named_policy("p", *params)

    def remove_policies(self, rows: Sequence[Sequence[str]]) -> bool:
        return self.remove_named_policies("p", rows)

    def remove_filtered_policy(self, field_index: int, *values: str) -> bool:
        return self.remove_filtered_named_policy("p", field_index, *values)

    def update_policy(self, old_row: Sequence[str], new_row: Sequence[str]) -> bool:
        return self.update_named_policy("p", old_row, new_row)

    def add_grouping_policy(self, *params: Any) -> bool:
        return self.add_named_policy("g", *params)

    def add_named_grouping_policy(self, gtype: str, *params: Any) -> bool:
        return self.add_named_policy(gtype, *params)

    def remove_grouping_policy(self, *params: Any) -> bool:
        return self.remove_named_policy("g", *params)

    def remove_named_grouping_policy(self, gtype: str, *params: Any) -> bool:
        return self.remove_named_policy(gtype, *params)

    def remove_filtered_grouping_policy(self, field_index: int, *values: str) -> bool:
        return self.remove_filtered_named_policy("g", field_index, *values)

    def add_role_link(self, subject: str, role: str, domain: Optional[str] = None, gtype: str = "g") -> bool:
        """Record ``subject`` has ``role`` (in ``domain`` for domain-aware declarations)."""
        params = (subject, role) if domain is None else (subject, role, domain)
        return self.add_named_policy(gtype, *params)

    def remove_role_link(self, subject: str, role: str, domain: Optional[str] = None, gtype: str = "g") -> bool:
        params = (subject, role) if domain is None else (subject, role, domain)
        return self.remove_named_policy(gtype, *params)

    def clear_policy(self):
        """Drop every row and role link from memory. The adapter is not touched."""
        with self._mutation_lock, self._lock.write_locked():
            self._store.clear()
            for rm in self._role_managers.values():
                rm.clear()
            self._policy_version += 1
            self._cache.invalidate_all()
        self.logger.info("Policy cleared")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_policy(self):
        """Load rows from the adapter and swap them in atomically.

        The adapter read and the swap run under the mutation lock, so a
        mutation either lands before the read or after the swap. On adapter
        failure, or rows that do not fit the model, the current state is left
        untouched and AdapterError is raised.
        """
        adapter = self._adapter
        if not isinstance(adapter, Adapter):
            raise AdapterError(type(adapter).__name__, "load_policy requires a synchronous adapter")

        with self._mutation_lock:
            try:
                lines = adapter.load_policy()
            except Exception as e:
                raise self._load_error(adapter, e) from e
            self._install_policy(adapter, lines)

    def reload_policy(self):
        """Reload from the adapter; the entry point for watcher callbacks."""
        self.load_policy()

    async def load_policy_async(self):
        """Await the adapter's load, then swap the rows in synchronously.

        The mutation lock cannot be held across the await; if a mutation
        committed meanwhile, the adapter is read again.
        """
        adapter = self._adapter
        if adapter is None:
            raise AdapterError("None", "No adapter configured")

        while True:
            version = self._policy_version
            try:
                lines = adapter.load_policy()
                if asyncio.iscoroutine(lines):
                    lines = await lines
            except Exception as e:
                raise self._load_error(adapter, e) from e

            with self._mutation_lock:
                if self._policy_version == version:
                    self._install_policy(adapter, lines)
                    return
            self.logger.debug("Policy changed during load, reading again")

    def _load_error(self, adapter: Any, error: Exception) -> AdapterError:
        self.logger.error("Failed to load policy", error=str(error))
        if self.metrics:
            self.metrics.record_error("ADAPTER_ERROR")
        return AdapterError(type(adapter).__name__, str(error), {"operation": "load_policy"})

    def _install_policy(self, adapter: Any, lines: Sequence[PolicyLine]):
        """Stage ``lines`` and swap them in. Callers hold the mutation lock."""
        model = self._model
        try:
            store, role_managers = self._stage(model, list(lines))
        except ModelError as e:
            raise AdapterError(type(adapter).__name__, e.message, e.details) from e

        with self._lock.write_locked():
            self._store = store
            self._role_managers = role_managers
            self._functions = self._bind_functions(model, role_managers)
            self._policy_version += 1
            self._cache.invalidate_all()

        self.logger.info("Policy loaded", rows=store.count())
        if self.metrics:
            self.metrics.record_mutation("load_policy")
            for key in store.keys():
                self.metrics.set_gauge("policy_rows", store.count(key), ptype=key)

    def _policy_lines(self) -> List[PolicyLine]:
        with self._lock.read_locked():
            model = self._model
            return [
                (key, list(row))
                for key in (*model.policies, *model.roles)
                for row in self._store.rows(key)
            ]

    def save_policy(self):
        """Write every in-memory row through the adapter."""
        adapter = self._adapter
        if not isinstance(adapter, Adapter):
            raise AdapterError(type(adapter).__name__, "save_policy requires a synchronous adapter")
        lines = self._policy_lines()
        try:
            adapter.save_policy(lines)
        except Exception as e:
            self.logger.error("Failed to save policy", error=str(e))
            raise AdapterError(type(adapter).__name__, str(e), {"operation": "save_policy"}) from e
        self.logger.info("Policy saved", rows=len(lines))

    async def save_policy_async(self):
        adapter = self._adapter
        if adapter is None:
            raise AdapterError("None", "No adapter configured")
        lines = self._policy_lines()
        try:
            result = adapter.save_policy(lines)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.logger.error("Failed to save policy", error=str(e))
            raise AdapterError(type(adapter).__name__, str(e), {"operation": "save_policy"}) from e
        self.logger.info("Policy saved", rows=len(lines))

    def load_model(self, model: ModelLike):
        """Replace the model, recompiling matchers and re-staging current rows.

        Raises ModelError or CompileError without changing anything when the
        new model or the existing rows do not fit.
        """
        model = model if isinstance(model, Model) else Model.load(model)
        matchers = self._compile_matchers(model)

        with self._mutation_lock:
            lines = [
                (key, row)
                for key in (*self._model.policies, *self._model.roles)
                for row in self._store.rows(key)
                if key in model.policies or key in model.roles
            ]
            store, role_managers = self._stage(model, lines)
            with self._lock.write_locked():
                self._model = model
                self._matchers = matchers
                self._store = store
                self._role_managers = role_managers
                self._functions = self._bind_functions(model, role_managers)
                self._policy_version += 1
                self._cache.invalidate_all()

        self.logger.info("Model loaded", matchers=list(model.matchers))

    def build_role_links(self):
        """Rebuild every role graph from the stored grouping rows."""
        with self._mutation_lock, self._lock.write_locked():
            role_managers = self._new_role_managers(self._model)
            self._link_all(self._model, self._store, role_managers)
            self._role_managers = role_managers
            self._functions = self._bind_functions(self._model, role_managers)
            self._cache.invalidate_all()

    def add_matching_fn(self, gtype: str, fn: Optional[MatchingFn]):
        """Pattern-match role names of ``gtype``, e.g. with ``key_match``."""
        self._set_matching_fn(gtype, "role", fn)

    def add_domain_matching_fn(self, gtype: str, fn: Optional[MatchingFn]):
        """Pattern-match domains of ``gtype``, e.g. with ``glob_match``."""
        self._set_matching_fn(gtype, "domain", fn)

    def _set_matching_fn(self, gtype: str, kind: str, fn: Optional[MatchingFn]):
        with self._mutation_lock, self._lock.write_locked():
            rm = self._role_managers.get(gtype)
            if rm is None:
                raise EnforceError("Unknown role definition", {"gtype": gtype})
            self._matching_fns.setdefault(gtype, {})[kind] = fn
            if kind == "role":
                rm.add_matching_fn(fn)
            else:
                rm.add_domain_matching_fn(fn)
            self._cache.invalidate_all()

    def set_adapter(self, adapter: Optional[Union[Adapter, AsyncAdapter]]):
        self._adapter = adapter

    def get_adapter(self) -> Optional[Union[Adapter, AsyncAdapter]]:
        return self._adapter

    def set_watcher(self, watcher: Optional[Watcher]):
        """Attach a watcher; remote changes trigger ``reload_policy``."""
        self._watcher = watcher
        if watcher is not None:
            watcher.set_update_callback(self.reload_policy)

    def get_watcher(self) -> Optional[Watcher]:
        return self._watcher

    def enable_enforce(self, enabled: bool = True):
        self._enabled = enabled

    def enable_cache(self, enabled: bool = True):
        with self._lock.write_locked():
            self._cache_enabled = enabled
            self._cache.invalidate_all()

    def enable_auto_save(self, enabled: bool = True):
        self._auto_save = enabled

    def enable_auto_notify_watcher(self, enabled: bool = True):
        self._auto_notify_watcher = enabled

    def enable_auto_build_role_links(self, enabled: bool = True):
        self._auto_build_role_links = enabled

    @property
    def model(self) -> Model:
        return self._model

    @property
    def cache(self) -> DecisionCache:
        return self._cache

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_named_policy(self, ptype: str) -> List[List[str]]:
        with self._lock.read_locked():
            return [list(row) for row in self._store.rows(ptype)]

    def get_policy(self) -> List[List[str]]:
        return self.get_named_policy("p")

    def get_grouping_policy(self) -> List[List[str]]:
        return self.get_named_policy("g")

    def get_named_grouping_policy(self, gtype: str) -> List[List[str]]:
        return self.get_named_policy(gtype)

    def get_filtered_named_policy(self, ptype: str, field_index: int, *values: str) -> List[List[str]]:
        with self._lock.read_locked():
            if len(values) == 1 and values[0]:
                rows = self._store.filter(ptype, field_index, values[0])
            else:
                rows = self._store.get_filtered(ptype, field_index, *values)
            return [list(row) for row in rows]

    def get_filtered_policy(self, field_index: int, *values: str) -> List[List[str]]:
        return self.get_filtered_named_policy("p", field_index, *values)

    def get_filtered_grouping_policy(self, field_index: int, *values: str) -> List[List[str]]:
        return self.get_filtered_named_policy("g", field_index, *values)

    def has_named_policy(self, ptype: str, *params: Any) -> bool:
        row = self._params(params)
        with self._lock.read_locked():
            return self._store.has(ptype, row)

    def has_policy(self, *params: Any) -> bool:
        return self.has_named_policy("p", *params)

    def has_grouping_policy(self, *params: Any) -> bool:
        return self.has_named_policy("g", *params)

    def _role_manager(self, gtype: str) -> RoleManager:
        rm = self._role_managers.get(gtype)
        if rm is None:
            raise EnforceError("Unknown role definition", {"gtype": gtype})
        return rm

    def get_roles_for_user(self, name: str, domain: Optional[str] = None, gtype: str = "g") -> List[str]:
        with self._lock.read_locked():
            return self._role_manager(gtype).get_roles(name, domain)

    def get_users_for_role(self, name: str, domain: Optional[str] = None, gtype: str = "g") -> List[str]:
        with self._lock.read_locked():
            return self._role_manager(gtype).get_users(name, domain)

    def has_role_for_user(self, name: str, role: str, domain: Optional[str] = None, gtype: str = "g") -> bool:
        """Direct membership only; use ``has_link`` semantics via enforce for transitive checks."""
        return role in self.get_roles_for_user(name, domain, gtype)

    def get_implicit_roles_for_user(self, name: str, domain: Optional[str] = None, gtype: str = "g") -> List[str]:
        with self._lock.read_locked():
            return self._role_manager(gtype).get_implicit_roles(name, domain)

    def get_domains_for_user(self, name: str, gtype: str = "g") -> List[str]:
        with self._lock.read_locked():
            return self._role_manager(gtype).get_domains(name)

    def _field_values(self, ptype: str, field_name: str, default_index: int) -> List[str]:
        with self._lock.read_locked():
            model = self._model
            if ptype not in model.policies:
                return []
            index = model.field_index(ptype, field_name)
            return self._store.field_values(ptype, default_index if index is None else index)

    def get_all_subjects(self, ptype: str = "p") -> List[str]:
        return self._field_values(ptype, "sub", 0)

    def get_all_objects(self, ptype: str = "p") -> List[str]:
        return self._field_values(ptype, "obj", 1)

    def get_all_actions(self, ptype: str = "p") -> List[str]:
        return self._field_values(ptype, "act", 2)

    def get_all_roles(self, gtype: str = "g") -> List[str]:
        with self._lock.read_locked():
            return self._store.field_values(gtype, 1)

    def get_enforcer_stats(self) -> Dict[str, Any]:
        """Get enforcer statistics."""
        with self._lock.read_locked():
            model = self._model
            return {
                "enabled": self._enabled,
                "policy_rows": {key: self._store.count(key) for key in model.policies},
                "role_links": {key: rm.link_count() for key, rm in self._role_managers.items()},
                "cache_enabled": self._cache_enabled,
                "cache": self._cache.stats(),
                "max_hierarchy_level": self.settings.max_hierarchy_level,
            }
