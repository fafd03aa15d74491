import pytest

from mg_api.errors import MatchError
from mg_api.scanner import (
    extract_balanced,
    extract_balanced_braces,
    extract_balanced_parens,
    locate_literal,
    variable_name_before,
)


@pytest.mark.parametrize(
    "text,start,expected",
    [
        ("x={a:1}", 2, "{a:1}"),
        ("{a:{b:{c:1}}},d", 0, "{a:{b:{c:1}}}"),
        ('{a:"}"}', 0, '{a:"}"}'),
        ("{a:'{'}", 0, "{a:'{'}"),
        ("{a:`}${1}`}", 0, "{a:`}${1}`}"),
        ('{a:"\\"}"}', 0, '{a:"\\"}"}'),
        ("f(a,(b,c))+1", 1, "(a,(b,c))"),
        ('(")")', 0, '(")")'),
    ],
)
def test_extract_balanced(text, start, expected):
    assert extract_balanced(text, start) == expected


class TestExtractBalancedErrors:
    def test_unbalanced(self):
        with pytest.raises(MatchError):
            extract_balanced("{a:{b:1}", 0)

    def test_not_an_opener(self):
        with pytest.raises(MatchError):
            extract_balanced("abc", 1)

    def test_out_of_range(self):
        with pytest.raises(MatchError):
            extract_balanced("{}", 5)

    def test_unterminated_string_swallows_closer(self):
        with pytest.raises(MatchError):
            extract_balanced('{a:"}', 0)

    def test_braces_wrapper_rejects_paren(self):
        with pytest.raises(MatchError):
            extract_balanced_braces("(a)", 0)

    def test_parens_wrapper_rejects_brace(self):
        with pytest.raises(MatchError):
            extract_balanced_parens("{a}", 0)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("var Ab={", "Ab"),
        ("const $x ={", "$x"),
        ("a,_q1={", "_q1"),
        ("={", None),
    ],
)
def test_variable_name_before(text, expected):
    assert variable_name_before(text, text.rindex("=")) == expected


class TestLocateLiteral:
    BUNDLE = (
        'var a=1;const Zq={Carrot:{seed:{tileRef:Xy.Carrot,name:"Carrot Seed"},'
        'plant:{tileRef:Xy.CarrotPlant}},Apple:{seed:{tileRef:Xy.Apple}}};var b=2;'
    )

    def test_finds_enclosing_literal(self):
        hit = locate_literal(self.BUNDLE, ("seed:{tileRef", "plant:{tileRef"))
        assert hit is not None
        assert hit.variable_name == "Zq"
        assert hit.source.startswith("{Carrot:")
        assert hit.source.endswith("Xy.Apple}}}")
        assert self.BUNDLE[hit.start] == "{"
        assert hit.anchor_offset > hit.start

    def test_missing_anchor(self):
        assert locate_literal(self.BUNDLE, ("nothing here",)) is None

    def test_confirmation_outside_window(self):
        text = "Q={anchor:1}" + " " * 500 + "confirm"
        assert locate_literal(text, ("anchor", "confirm"), window_size=100) is None
        assert locate_literal(text, ("anchor", "confirm"), window_size=1000) is not None

    def test_skips_unconfirmed_occurrence(self):
        text = "A={anchor:1};" + " " * 300 + "B={anchor:2,confirm:1}"
        hit = locate_literal(text, ("anchor", "confirm"), window_size=50)
        assert hit is not None
        assert hit.variable_name == "B"

    def test_requires_signatures(self):
        with pytest.raises(ValueError):
            locate_literal("abc", ())

    def test_unbalanced_literal_raises(self):
        with pytest.raises(MatchError):
            locate_literal("X={anchor:{", ("anchor",))
