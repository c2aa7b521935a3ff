"""Find the source lines where a traced program reads from standard input."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from .toolchain import Language

logger = logging.getLogger(__name__)

INPUT_KIND_SCANF = "scanf"
INPUT_KIND_CIN = "cin"

_SCANF_FUNCTIONS = frozenset({"scanf", "fscanf", "getchar", "fgets", "gets"})
_CIN_STREAMS = frozenset({"cin", "std::cin"})
_GETLINE_FUNCTIONS = frozenset({"getline", "std::getline"})
_GRAMMARS: dict[Language, str] = {Language.C: "c", Language.CPP: "cpp"}


class ParserFactory(ABC):
    """Hands out a tree-sitter parser for a source language."""

    @abstractmethod
    def get_parser(self, language: Language): ...


class TreeSitterParserFactory(ParserFactory):
    def get_parser(self, language: Language):
        import tree_sitter_language_pack as tslp

        return tslp.get_parser(_GRAMMARS[language])


@dataclass(frozen=True)
class InputRequest:
    """A statement that blocks on standard input."""

    line: int
    kind: str
    variables: tuple[str, ...] = ()
    format: str = ""

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"inputKind": self.kind, "variables": list(self.variables)}
        if self.format:
            data["format"] = self.format
        return data


class InputScanner:
    """Walks the tree-sitter syntax tree for scanf-family calls and cin reads."""

    def __init__(self, parser_factory: ParserFactory | None = None):
        self._factory = parser_factory or TreeSitterParserFactory()

    def scan(self, source: str, language: Language) -> dict[int, InputRequest]:
        source_bytes = source.encode("utf-8")
        tree = self._factory.get_parser(language).parse(source_bytes)
        requests: dict[int, InputRequest] = {}

        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            request = None
            if node.type == "call_expression":
                request = self._from_call(node, source_bytes)
            elif node.type == "binary_expression" and not _is_inner_extraction(
                node, source_bytes
            ):
                request = self._from_extraction(node, source_bytes)
            if request is not None and request.line not in requests:
                requests[request.line] = request
            stack.extend(reversed(node.children))

        logger.info("Found %d input statements", len(requests))
        return requests

    def _from_call(self, node, source: bytes) -> InputRequest | None:
        function = node.child_by_field_name("function")
        arguments = node.child_by_field_name("arguments")
        if function is None:
            return None
        name = _text(function, source)
        args = [c for c in arguments.children if c.is_named] if arguments else []

        if name in _GETLINE_FUNCTIONS:
            if not args or _text(args[0], source) not in _CIN_STREAMS:
                return None
            variables = tuple(_text(a, source) for a in args[1:2])
            return InputRequest(line=_line(node), kind=INPUT_KIND_CIN, variables=variables)

        if name not in _SCANF_FUNCTIONS:
            return None
        fmt = ""
        variables: list[str] = []
        for arg in args:
            if arg.type == "string_literal" and not fmt:
                fmt = _text(arg, source).strip('"')
            elif arg.type == "pointer_expression":
                variables.append(_text(arg, source).lstrip("&").strip())
        return InputRequest(
            line=_line(node), kind=INPUT_KIND_SCANF, variables=tuple(variables), format=fmt
        )

    def _from_extraction(self, node, source: bytes) -> InputRequest | None:
        variables: list[str] = []
        current = node
        while current.type == "binary_expression" and _operator(current, source) == ">>":
            operands = _operands(current)
            variables.append(_text(operands[1], source))
            current = operands[0]
        if not variables or _text(current, source) not in _CIN_STREAMS:
            return None
        variables.reverse()
        return InputRequest(line=_line(node), kind=INPUT_KIND_CIN, variables=tuple(variables))


def _text(node, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8")


def _line(node) -> int:
    return node.start_point[0] + 1


def _operands(node) -> list:
    children = [c for c in node.children if c.type not in ("(", ")")]
    return [children[0], children[2]]


def _operator(node, source: bytes) -> str:
    children = [c for c in node.children if c.type not in ("(", ")")]
    return _text(children[1], source) if len(children) == 3 else ""


def _is_inner_extraction(node, source: bytes) -> bool:
    parent = node.parent
    return (
        parent is not None
        and parent.type == "binary_expression"
        and _operator(parent, source) == ">>"
    )
