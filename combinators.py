"""Composable recursive-descent grammar primitives.

Rules are plain objects combined with operators::

    a >> b      sequence            a | b      ordered alternation
    -a          optional            +a         one or more
    many(a)     zero or more        ~a         negative lookahead
    a - b       a, unless b matches here
    lexeme(a)   no implicit skipping inside a
    a[fn]       semantic action: fn(value) when a matches

Semantic actions and backtracking
---------------------------------
In ``ActionMode.IMMEDIATE`` an action fires the moment its own rule matches,
even when an enclosing sequence or alternative fails afterwards and a sibling
branch is tried instead. Nothing is rolled back: a grammar parsed in this mode
must guard every branch that carries a mutating action with negative lookahead
so the branch is only entered when it cannot fail.

``ActionMode.DEFERRED`` (the default) queues actions instead. A failing rule
drops whatever was queued while it ran, a lookahead always drops its body's
queue, and the queue is replayed in order only once the whole parse has
succeeded.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from errors import GrammarError

Action = Callable[[str], None]
RuleLike = Union["Rule", str]


class ActionMode(enum.Enum):
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class ParseOptions:
    actions: ActionMode = ActionMode.DEFERRED
    require_full_match: bool = True


@dataclass(frozen=True)
class Cursor:
    text: str
    offset: int = 0

    @property
    def at_end(self) -> bool:
        return self.offset >= len(self.text)

    def peek(self) -> str:
        return "" if self.at_end else self.text[self.offset]

    def startswith(self, literal: str) -> bool:
        return self.text.startswith(literal, self.offset)

    def advance(self, count: int = 1) -> "Cursor":
        target = self.offset + count
        if count < 0 or target > len(self.text):
            raise GrammarError(f"Cannot advance cursor by {count} at offset {self.offset}")
        return Cursor(self.text, target)

    def __repr__(self) -> str:
        return f"Cursor(offset={self.offset}, ahead={self.text[self.offset:self.offset + 12]!r})"


@dataclass(frozen=True)
class MatchResult:
    success: bool
    cursor: Cursor
    start: int
    value: Optional[str] = None

    @classmethod
    def failure(cls, cursor: Cursor) -> "MatchResult":
        return cls(False, cursor, cursor.offset)

    @classmethod
    def empty(cls, cursor: Cursor) -> "MatchResult":
        return cls(True, cursor, cursor.offset)

    @property
    def span(self) -> Optional[Tuple[int, int]]:
        if not self.success:
            return None
        return (self.start, self.cursor.offset)

    @property
    def text(self) -> str:
        if not self.success:
            return ""
        return self.cursor.text[self.start:self.cursor.offset]

    def __bool__(self) -> bool:
        return self.success


class ParseContext:
    def __init__(self, skipper: Optional["Rule"], mode: ActionMode) -> None:
        self.skipper = skipper
        self.skipping = skipper is not None
        self.mode = mode
        self.pending: List[Tuple[Action, str]] = []

    def skip(self, cursor: Cursor) -> Cursor:
        if not self.skipping or self.skipper is None:
            return cursor
        # The skipper itself runs without skipping.
        self.skipping = False
        try:
            while not cursor.at_end:
                result = self.skipper.parse(cursor, self)
                if not result or result.cursor.offset == cursor.offset:
                    break
                cursor = result.cursor
        finally:
            self.skipping = True
        return cursor

    def dispatch(self, callback: Action, value: str) -> None:
        if self.mode is ActionMode.IMMEDIATE:
            callback(value)
        else:
            self.pending.append((callback, value))

    def commit(self) -> None:
        pending, self.pending = self.pending, []
        for callback, value in pending:
            callback(value)


def _join(values: List[str]) -> Optional[str]:
    return "".join(values) if values else None


class Rule:
    def parse(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        mark = len(ctx.pending)
        result = self._match(cursor, ctx)
        if not result.success:
            del ctx.pending[mark:]
            return MatchResult.failure(cursor)
        return result

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        raise NotImplementedError(self)

    def __rshift__(self, other: RuleLike) -> "Sequence":
        return seq(self, other)

    def __rrshift__(self, other: RuleLike) -> "Sequence":
        return seq(other, self)

    def __or__(self, other: RuleLike) -> "Alternative":
        return alt(self, other)

    def __ror__(self, other: RuleLike) -> "Alternative":
        return alt(other, self)

    def __sub__(self, other: RuleLike) -> "Difference":
        return Difference(self, coerce(other))

    def __rsub__(self, other: RuleLike) -> "Difference":
        return Difference(coerce(other), self)

    def __neg__(self) -> "OptionalRule":
        return OptionalRule(self)

    def __pos__(self) -> "Repeat":
        return Repeat(self, minimum=1)

    def __invert__(self) -> "NotPredicate":
        return NotPredicate(self)

    def __getitem__(self, callback: Action) -> "ActionRule":
        return action(self, callback)


def coerce(rule: RuleLike) -> Rule:
    if isinstance(rule, Rule):
        return rule
    if isinstance(rule, str):
        return Literal(rule)
    raise GrammarError(f"Cannot build a rule from {rule!r}")


class Terminal(Rule):
    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        return self._match_here(ctx.skip(cursor))

    def _match_here(self, cursor: Cursor) -> MatchResult:
        raise NotImplementedError(self)


class Literal(Terminal):
    def __init__(self, text: str) -> None:
        if not text:
            raise GrammarError("Literal text must be non-empty")
        self.literal = text

    def _match_here(self, cursor: Cursor) -> MatchResult:
        if cursor.startswith(self.literal):
            return MatchResult(True, cursor.advance(len(self.literal)), cursor.offset)
        return MatchResult.failure(cursor)

    def __repr__(self) -> str:
        return f"lit({self.literal!r})"


class CharClass(Terminal):
    def __init__(self, predicate: Callable[[str], bool], name: str) -> None:
        self.predicate = predicate
        self.name = name

    def _match_here(self, cursor: Cursor) -> MatchResult:
        ch = cursor.peek()
        if ch and self.predicate(ch):
            return MatchResult(True, cursor.advance(), cursor.offset, ch)
        return MatchResult.failure(cursor)

    def __repr__(self) -> str:
        return self.name


class EndOfInput(Terminal):
    def _match_here(self, cursor: Cursor) -> MatchResult:
        if cursor.at_end:
            return MatchResult.empty(cursor)
        return MatchResult.failure(cursor)

    def __repr__(self) -> str:
        return "eoi"


class Sequence(Rule):
    def __init__(self, *elements: Rule) -> None:
        self.elements = elements

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        values: List[str] = []
        current = cursor
        start: Optional[int] = None
        for element in self.elements:
            result = element.parse(current, ctx)
            if not result:
                return MatchResult.failure(cursor)
            if start is None:
                start = result.start
            if result.value is not None:
                values.append(result.value)
            current = result.cursor
        return MatchResult(True, current, cursor.offset if start is None else start, _join(values))

    def __repr__(self) -> str:
        return " >> ".join(repr(e) for e in self.elements).join("()")


class Alternative(Rule):
    def __init__(self, *branches: Rule) -> None:
        self.branches = branches

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        for branch in self.branches:
            result = branch.parse(cursor, ctx)
            if result:
                return result
        return MatchResult.failure(cursor)

    def __repr__(self) -> str:
        return " | ".join(repr(b) for b in self.branches).join("()")


class Difference(Rule):
    def __init__(self, subject: Rule, excluded: Rule) -> None:
        self.subject = subject
        self.excluded = excluded

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        mark = len(ctx.pending)
        blocked = self.excluded.parse(cursor, ctx)
        del ctx.pending[mark:]
        if blocked:
            return MatchResult.failure(cursor)
        return self.subject.parse(cursor, ctx)

    def __repr__(self) -> str:
        return f"({self.subject!r} - {self.excluded!r})"


class OptionalRule(Rule):
    def __init__(self, subject: Rule) -> None:
        self.subject = subject

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        result = self.subject.parse(cursor, ctx)
        return result if result else MatchResult.empty(cursor)

    def __repr__(self) -> str:
        return f"-{self.subject!r}"


class Repeat(Rule):
    def __init__(self, subject: Rule, minimum: int = 0) -> None:
        if minimum < 0:
            raise GrammarError(f"Repeat minimum must be non-negative, got {minimum}")
        self.subject = subject
        self.minimum = minimum

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        values: List[str] = []
        current = cursor
        start: Optional[int] = None
        count = 0
        while True:
            result = self.subject.parse(current, ctx)
            if not result:
                break
            count += 1
            if start is None:
                start = result.start
            if result.value is not None:
                values.append(result.value)
            if result.cursor.offset == current.offset:
                # an empty match would repeat forever
                break
            current = result.cursor
        if count < self.minimum:
            return MatchResult.failure(cursor)
        return MatchResult(True, current, cursor.offset if start is None else start, _join(values))

    def __repr__(self) -> str:
        prefix = "+" if self.minimum == 1 else "*"
        return f"{prefix}{self.subject!r}"


class Lexeme(Rule):
    def __init__(self, subject: Rule) -> None:
        self.subject = subject

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        cursor = ctx.skip(cursor)
        saved = ctx.skipping
        ctx.skipping = False
        try:
            return self.subject.parse(cursor, ctx)
        finally:
            ctx.skipping = saved

    def __repr__(self) -> str:
        return f"lexeme[{self.subject!r}]"


class NotPredicate(Rule):
    def __init__(self, subject: Rule) -> None:
        self.subject = subject

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        mark = len(ctx.pending)
        result = self.subject.parse(cursor, ctx)
        del ctx.pending[mark:]
        if result:
            return MatchResult.failure(cursor)
        return MatchResult.empty(cursor)

    def __repr__(self) -> str:
        return f"!{self.subject!r}"


class ActionRule(Rule):
    def __init__(self, subject: Rule, callback: Action) -> None:
        if not callable(callback):
            raise GrammarError(f"Semantic action must be callable, got {callback!r}")
        self.subject = subject
        self.callback = callback

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        result = self.subject.parse(cursor, ctx)
        if result:
            ctx.dispatch(self.callback, result.value if result.value is not None else result.text)
        return result

    def __repr__(self) -> str:
        name = getattr(self.callback, "__name__", "action")
        return f"{self.subject!r}[{name}]"


class Forward(Rule):
    """Placeholder for a rule that refers to itself."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.subject: Optional[Rule] = None

    def define(self, rule: RuleLike) -> "Forward":
        if self.subject is not None:
            raise GrammarError(f"Rule '{self.name}' is already defined")
        self.subject = coerce(rule)
        return self

    def __ilshift__(self, rule: RuleLike) -> "Forward":
        return self.define(rule)

    def _match(self, cursor: Cursor, ctx: ParseContext) -> MatchResult:
        if self.subject is None:
            raise GrammarError(f"Rule '{self.name}' used before definition")
        return self.subject.parse(cursor, ctx)

    def __repr__(self) -> str:
        return f"<{self.name}>"


def lit(text: str) -> Literal:
    return Literal(text)


def char_(chars: Optional[str] = None) -> CharClass:
    if chars is None:
        return CharClass(lambda ch: True, "char_")
    members = frozenset(chars)
    return CharClass(lambda ch: ch in members, f"char_({chars!r})")


def seq(*rules: RuleLike) -> Sequence:
    elements: List[Rule] = []
    for rule in rules:
        rule = coerce(rule)
        if isinstance(rule, Sequence):
            elements.extend(rule.elements)
        else:
            elements.append(rule)
    if not elements:
        raise GrammarError("A sequence needs at least one rule")
    return Sequence(*elements)


def alt(*rules: RuleLike) -> Alternative:
    branches: List[Rule] = []
    for rule in rules:
        rule = coerce(rule)
        if isinstance(rule, Alternative):
            branches.extend(rule.branches)
        else:
            branches.append(rule)
    if not branches:
        raise GrammarError("An alternative needs at least one branch")
    return Alternative(*branches)


def difference(subject: RuleLike, excluded: RuleLike) -> Difference:
    return Difference(coerce(subject), coerce(excluded))


def opt(rule: RuleLike) -> OptionalRule:
    return OptionalRule(coerce(rule))


def many(rule: RuleLike) -> Repeat:
    return Repeat(coerce(rule), minimum=0)


def some(rule: RuleLike) -> Repeat:
    return Repeat(coerce(rule), minimum=1)


def lexeme(rule: RuleLike) -> Lexeme:
    return Lexeme(coerce(rule))


def not_(rule: RuleLike) -> NotPredicate:
    return NotPredicate(coerce(rule))


def action(rule: RuleLike, callback: Action) -> ActionRule:
    return ActionRule(coerce(rule), callback)


def _ascii(predicate: Callable[[str], bool]) -> Callable[[str], bool]:
    return lambda ch: ch.isascii() and predicate(ch)


alnum = CharClass(_ascii(str.isalnum), "alnum")
alpha = CharClass(_ascii(str.isalpha), "alpha")
digit = CharClass(_ascii(str.isdigit), "digit")
space = CharClass(_ascii(str.isspace), "space")
eoi = EndOfInput()


def phrase_parse(
    rule: RuleLike,
    text: str,
    skipper: Optional[Rule] = space,
    options: Optional[ParseOptions] = None,
) -> MatchResult:
    options = options or ParseOptions()
    ctx = ParseContext(skipper, options.actions)
    cursor = Cursor(text)
    try:
        result = coerce(rule).parse(cursor, ctx)
    except RecursionError:
        raise GrammarError("Input is nested too deeply to parse")
    if result and options.require_full_match and not ctx.skip(result.cursor).at_end:
        result = MatchResult.failure(cursor)
    if result:
        ctx.commit()
    return result


class Grammar:
    """A start rule bundled with its skipper and parse options.

    Subclasses build their rules in ``__init__`` around the builder they feed,
    then hand the start rule to this constructor.
    """

    def __init__(
        self,
        start: RuleLike,
        *,
        skipper: Optional[Rule] = space,
        options: Optional[ParseOptions] = None,
    ) -> None:
        self.start = coerce(start)
        self.skipper = skipper
        self.options = options or ParseOptions()

    def parse(self, text: str) -> MatchResult:
        return phrase_parse(self.start, text, self.skipper, self.options)
