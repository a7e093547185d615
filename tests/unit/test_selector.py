import pytest

from droidscript.core.errors import SelectorSyntaxError
from droidscript.script.selector import Predicate, SelectorClause, format_selector, parse_selector


def test_parse_simple_predicate():
    selector = parse_selector("id=login")

    assert len(selector.clauses) == 1
    assert selector.clauses[0].predicates == (Predicate("id", "=", "login"),)
    assert selector.clauses[0].nth is None


def test_parse_conjunction_and_operators():
    selector = parse_selector("role=Button; text~=sign in ;desc^=Log")

    predicates = selector.clauses[0].predicates
    assert [(p.key, p.op, p.value) for p in predicates] == [
        ("role", "=", "Button"),
        ("text", "~=", "sign in"),
        ("desc", "^=", "Log"),
    ]


def test_parse_fallback_clauses_in_order():
    selector = parse_selector("id=ok || text=OK || desc=Confirm")

    assert [clause.predicates[0].value for clause in selector.clauses] == ["ok", "OK", "Confirm"]


def test_parse_boolean_and_relations():
    selector = parse_selector("role=TextView;enabled=false;inside=(id=toolbar;role=ViewGroup);nth=2")
    clause = selector.clauses[0]

    assert clause.predicates[1] == Predicate("enabled", "=", False)
    relation = clause.predicates[2]
    assert relation.key == "inside"
    assert isinstance(relation.value, SelectorClause)
    assert relation.value.predicates[0] == Predicate("id", "=", "toolbar")
    assert clause.nth == 2


def test_first_is_shorthand_for_nth_zero():
    assert parse_selector("role=Button;first") == parse_selector("role=Button;nth=0")


def test_quoted_values_keep_separators():
    selector = parse_selector('text="a;b || (c)";desc="say \\"hi\\""')

    values = [p.value for p in selector.clauses[0].predicates]
    assert values == ["a;b || (c)", 'say "hi"']


@pytest.mark.parametrize(
    "text",
    [
        "id=login",
        "role=Button;text=Sign in",
        "text~=settings || desc=Settings",
        "role=Row;has=(text=Item 3);nth=1",
        'text=" padded "',
        'text="a|b"',
        "checked=true;below=(id=header)",
    ],
)
def test_format_is_inverse_of_parse(text):
    selector = parse_selector(text)
    canonical = format_selector(selector)

    assert parse_selector(canonical) == selector
    assert format_selector(parse_selector(canonical)) == canonical


def test_format_canonical_spacing():
    assert format_selector(parse_selector("id=a||  text = b ;first")) == "id=a || text=b;nth=0"


@pytest.mark.parametrize(
    "text",
    ["", "   ", "colour=red", "id", "id=", "enabled=maybe", "text=\"open", "nth=1", "id=a;first;nth=2", "inside=(id=a", "id=a)"],
)
def test_invalid_selectors_raise(text):
    with pytest.raises(SelectorSyntaxError):
        parse_selector(text)


def test_positional_detection():
    assert parse_selector("role=Button;nth=3").is_positional
    assert parse_selector("role=Button").is_positional
    assert parse_selector("role=TextView;below=(id=title)").is_positional
    assert not parse_selector("role=Button;text=OK").is_positional
    assert not parse_selector("id=login").is_positional


def test_variable_references_and_substitution():
    selector = parse_selector("text=${label} || has=(desc=${icon})")

    assert selector.variable_references() == {"label", "icon"}
    substituted = selector.substitute(lambda value: value.replace("${label}", "Save").replace("${icon}", "disk"))
    assert format_selector(substituted) == "text=Save || has=(desc=disk)"
