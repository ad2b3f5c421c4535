from __future__ import annotations
import weakref
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from combinators import Forward, Grammar, MatchResult, ParseOptions, alnum, char_, lexeme, lit, many, space
from errors import BuilderConsumedError, Diagnostic, DiagnosticSink, ErrorKind, GrammarError, ValidityState


@dataclass
class TagNode:
    name: str
    is_paired: bool = False
    closing: bool = False
    body: str = ""
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    next: Optional["TagNode"] = field(default=None, repr=False, compare=False)


def chain_nodes(head: Optional[TagNode]) -> Iterator[TagNode]:
    node = head
    while node is not None:
        yield node
        node = node.next


class TagTreeBuilder:
    """Collects tag nodes in document order while a markup grammar matches.

    Nodes form a flat chain; nesting is implied by the opening and closing
    paired nodes and checked against ``tag_stack``. The first structural or
    schema error turns the builder invalid and every later call is ignored.
    """

    def __init__(self, diagnostic_sink: Optional[DiagnosticSink] = None) -> None:
        self.validity = ValidityState("markup", diagnostic_sink)
        self.tag_stack: List[str] = []
        self._head: Optional[TagNode] = None
        self._current: Optional[TagNode] = None
        self._consumed = False

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return self.validity.diagnostics

    def _accepting(self) -> bool:
        if self._consumed:
            raise BuilderConsumedError("Markup tree was already taken from this builder")
        return self.validity.valid

    def _append(self, node: TagNode) -> None:
        if self._current is None:
            self._head = node
        else:
            self._current.next = node
        self._current = node

    def push_single_tag(self, name: str) -> None:
        if self._accepting():
            self._append(TagNode(name=name))

    def push_pair_tag(self, name: str) -> None:
        if self._accepting():
            self._append(TagNode(name=name, is_paired=True))
            self.tag_stack.append(name)

    def pop_pair_tag(self, name: str) -> None:
        if not self._accepting():
            return
        if not self.tag_stack:
            self.validity.invalidate(ErrorKind.STRUCTURAL_MISMATCH, f"closing tag </{name}> without an open tag")
            return
        if self.tag_stack[-1] != name:
            self.validity.invalidate(
                ErrorKind.STRUCTURAL_MISMATCH,
                f"closing tag </{name}> does not match open tag <{self.tag_stack[-1]}>",
            )
            return
        self._append(TagNode(name=name, is_paired=True, closing=True))
        self.tag_stack.pop()

    def set_body(self, text: str) -> None:
        if not self._accepting():
            return
        node = self._current
        if node is None:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"body text {text!r} before any tag")
        elif not node.is_paired:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"single tag <{node.name}/> cannot carry body text")
        else:
            node.body = text

    def add_attribute_name(self, name: str) -> None:
        if not self._accepting():
            return
        node = self._current
        if node is None:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"attribute {name!r} before any tag")
        elif node.is_paired:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"paired tag <{node.name}> cannot carry attributes")
        else:
            node.attributes.append((name, ""))

    def add_attribute_value(self, value: str) -> None:
        if not self._accepting():
            return
        # Empty values are stored as a single space so they stay distinguishable
        # from an attribute still waiting for its value.
        value = value or " "
        node = self._current
        if node is None:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"attribute value {value!r} before any tag")
        elif node.is_paired:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"paired tag <{node.name}> cannot carry attributes")
        elif not node.attributes or node.attributes[-1][1]:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"attribute value {value!r} without an attribute name")
        else:
            node.attributes[-1] = (node.attributes[-1][0], value)

    def finalize(self) -> None:
        if self._accepting() and self.tag_stack:
            unclosed = ", ".join(f"<{name}>" for name in self.tag_stack)
            self.validity.invalidate(ErrorKind.STRUCTURAL_MISMATCH, f"unclosed tags {unclosed}")

    def is_valid(self) -> bool:
        return self.validity.valid and self._head is not None

    def take_tree(self) -> Optional[TagNode]:
        if self._consumed or not self.is_valid():
            return None
        head = self._head
        self._head = None
        self._current = None
        self.tag_stack = []
        self._consumed = True
        return head


class MarkupGrammar(Grammar):
    def __init__(self, builder: TagTreeBuilder, options: Optional[ParseOptions] = None) -> None:
        self.builder = builder
        b = builder

        name = lexeme(+alnum)
        word = +(char_() - char_("<>") - space)
        body = lexeme(word >> many(+space >> word))[b.set_body]

        declaration = lit("<?") >> +(char_() - lit("?>")) >> lit("?>")

        attribute = (
            name[b.add_attribute_name]
            >> lit("=")
            >> lexeme(lit('"') >> many(char_() - char_('"'))[b.add_attribute_value] >> lit('"'))
        )

        # A name followed by '>' opens a paired tag; the lookahead keeps the
        # single-tag action from firing for it.
        single_tag = lit("<") >> (name >> ~lit(">"))[b.push_single_tag] >> many(attribute) >> lit("/>")

        pair_tag = Forward("pair_tag")
        pair_tag <<= (
            lit("<")
            >> lexeme(+alnum >> lit(">"))[b.push_pair_tag]
            >> many(single_tag | body | pair_tag)
            >> lit("</")
            >> lexeme(+alnum >> lit(">"))[b.pop_pair_tag]
        )

        start = many(declaration) >> many(single_tag | pair_tag)
        super().__init__(start, options=options)

    def parse(self, text: str) -> MatchResult:
        result = super().parse(text)
        self.builder.finalize()
        return result


def parse_markup(
    text: str,
    options: Optional[ParseOptions] = None,
    diagnostic_sink: Optional[DiagnosticSink] = None,
) -> Optional[TagNode]:
    builder = TagTreeBuilder(diagnostic_sink)
    result = MarkupGrammar(builder, options).parse(text)
    if not result or not builder.is_valid():
        return None
    return builder.take_tree()


@dataclass
class Element:
    name: str
    is_paired: bool = True
    body: str = ""
    tail: str = ""
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    children: List["Element"] = field(default_factory=list)
    _parent: Optional["weakref.ReferenceType[Element]"] = field(default=None, repr=False, compare=False)

    @property
    def parent(self) -> Optional["Element"]:
        return self._parent() if self._parent is not None else None

    def append(self, child: "Element") -> None:
        child._parent = weakref.ref(self)
        self.children.append(child)

    def iter(self) -> Iterator["Element"]:
        yield self
        for child in self.children:
            yield from child.iter()


def build_element_tree(head: Optional[TagNode]) -> List[Element]:
    roots: List[Element] = []
    open_elements: List[Element] = []
    for node in chain_nodes(head):
        if node.is_paired and node.closing:
            if not open_elements or open_elements[-1].name != node.name:
                raise GrammarError(f"Unbalanced closing node </{node.name}> in tag chain")
            closed = open_elements.pop()
            closed.tail = node.body
            continue
        element = Element(
            name=node.name,
            is_paired=node.is_paired,
            body=node.body,
            attributes=list(node.attributes),
        )
        if open_elements:
            open_elements[-1].append(element)
        else:
            roots.append(element)
        if node.is_paired:
            open_elements.append(element)
    if open_elements:
        raise GrammarError(f"Unclosed node <{open_elements[-1].name}> in tag chain")
    return roots


def _render_element(element: Element, depth: int, lines: List[str]) -> None:
    pad = " " * depth
    if not element.is_paired:
        attrs = "".join(f' {key}="{value}"' for key, value in element.attributes)
        lines.append(f"{pad}<{element.name}{attrs}/>")
        return
    lines.append(f"{pad}<{element.name}>")
    if element.body:
        lines.append(f"{pad} {element.body}")
    for child in element.children:
        _render_element(child, depth + 1, lines)
    lines.append(f"{pad}</{element.name}>")
    if element.tail:
        lines.append(f"{pad}{element.tail}")


def render_tree(head: Optional[TagNode]) -> str:
    lines: List[str] = []
    for root in build_element_tree(head):
        _render_element(root, 0, lines)
    return "\n".join(lines)
