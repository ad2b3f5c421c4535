from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from errors import PhraseError


EVENTS = frozenset({"program_start", "before_command", "after_command", "on_error", "program_end"})


class ExtensionError(PhraseError):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    command: Any  # Command | None
    extra: Optional[Dict[str, Any]]


StepHandler = Callable[[Any, StepContext], None]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, name)]
    _step_rules: List[Tuple[int, StepHandler, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0, name: str = ""):
        if event not in EVENTS:
            raise ExtensionError(f"Unknown interpreter event '{event}'")
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self.on_event(event, fn, priority=priority, name=name)
                return fn
            return deco
        self._events.setdefault(event, []).append((priority, handler, name or handler.__name__))
        self._events[event].sort(key=lambda t: t[0], reverse=True)
        return handler

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _name in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(self, every_n: int, handler: StepHandler, *, name: str = "") -> None:
        if every_n <= 0:
            raise ExtensionError("every_n must be >= 1")
        self._step_rules.append((every_n, handler, name or handler.__name__))

    def every_n_steps(self, every_n: int):
        def deco(fn: StepHandler) -> StepHandler:
            self.add_step_rule(every_n, fn)
            return fn

        return deco

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)

    def handlers(self, event: str) -> List[str]:
        return [name for _priority, _handler, name in self._events.get(event, [])]
