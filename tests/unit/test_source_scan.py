"""Tests for ctrace.source_scan: locating stdin reads with tree-sitter."""

from __future__ import annotations

from ctrace.source_scan import InputScanner, ParserFactory, TreeSitterParserFactory
from ctrace.toolchain import Language

C_SOURCE = """\
#include <stdio.h>
int main(void) {
    int n, m;
    scanf("%d %d", &n, &m);
    printf("%d\\n", n + m);
    return 0;
}
"""

CPP_SOURCE = """\
#include <iostream>
#include <string>
int main() {
    int a, b;
    std::cin >> a >> b;
    std::string s;
    std::getline(std::cin, s);
    std::cout << a + b << std::endl;
    int shifted = a >> 1;
    return shifted;
}
"""


class RecordingParserFactory(ParserFactory):
    """Delegates to tree-sitter and records requested languages."""

    def __init__(self):
        self.requested = []
        self._inner = TreeSitterParserFactory()

    def get_parser(self, language):
        self.requested.append(language)
        return self._inner.get_parser(language)


class TestScanf:
    def test_scanf_line_format_and_variables(self):
        requests = InputScanner().scan(C_SOURCE, Language.C)

        assert list(requests) == [4]
        request = requests[4]
        assert request.kind == "scanf"
        assert request.variables == ("n", "m")
        assert request.format == "%d %d"


class TestCin:
    def test_extraction_chain_and_getline(self):
        requests = InputScanner().scan(CPP_SOURCE, Language.CPP)

        assert sorted(requests) == [5, 7]
        assert requests[5].kind == "cin"
        assert requests[5].variables == ("a", "b")
        assert requests[7].variables == ("s",)

    def test_plain_shift_not_reported(self):
        requests = InputScanner().scan(CPP_SOURCE, Language.CPP)
        assert 9 not in requests

    def test_unqualified_cin(self):
        source = "using namespace std;\nint main() { int x; cin >> x; }\n"
        requests = InputScanner().scan(source, Language.CPP)
        assert requests[2].variables == ("x",)


class TestParserInjection:
    def test_factory_receives_language(self):
        factory = RecordingParserFactory()
        InputScanner(factory).scan("int main(void) { return 0; }", Language.C)
        assert factory.requested == [Language.C]

    def test_program_without_input(self):
        assert InputScanner().scan("int main(void) { return 0; }", Language.C) == {}
