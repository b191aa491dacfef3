from __future__ import annotations

from covship.core.gcov import Count, Function, Header, condense, condense_bytes, parse, parse_line

from tests.conftest import GCOV_SAMPLE


def test_condense_reference_sample() -> None:
    assert condense(GCOV_SAMPLE) == "foo.c:\n1:3:\nfunc\n"


def test_parse_yields_typed_entries() -> None:
    assert list(parse(GCOV_SAMPLE.splitlines())) == [Header("foo.c:"), Count("1", "3"), Function()]


def test_header_is_kept_verbatim_even_if_it_looks_like_a_count() -> None:
    text = "        -:    0:Source:src/a.c\n        5:   10:    return 0;\n"
    assert condense(text) == "        -:    0:Source:src/a.c\n5:10:\n"


def test_unexecuted_lines_keep_their_marker() -> None:
    assert parse_line("    #####:   12:    fail();") == Count("#####", "12")


def test_only_first_two_fields_are_kept() -> None:
    assert parse_line("        2:   7:  printf(\"a:b:c\");") == Count("2", "7")


def test_dropped_lines() -> None:
    assert parse_line("        -:    4:}") is None
    assert parse_line("        3:   20:}") is None
    assert parse_line("branch  0 taken 3") is None
    assert parse_line("call    1 returned 1") is None
    assert parse_line("   ") is None
    assert parse_line(":5:") is None


def test_function_lines_collapse() -> None:
    assert parse_line("function helper called 0 returned 0% blocks executed 0%") == Function()


def test_empty_and_header_only_documents() -> None:
    assert condense("") == ""
    assert condense("only-header.c:") == "only-header.c:\n"


def test_condense_bytes_preserves_undecodable_bytes() -> None:
    raw = b"caf\xe9.c:\n    1:    2:x\n"
    assert condense_bytes(raw) == b"caf\xe9.c:\n1:2:\n"
