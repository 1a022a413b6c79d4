import pytest

from tagmarks.model import BookmarkRecord, Tag
from tagmarks.query import filter_records, matches, order_records, parse_query, search, tag_query


@pytest.mark.parametrize("text", ["python", "two words", "  padded  ", "a-b_c/d?e=f", " "])
def test_text_without_colon_is_unscoped(text):
    assert parse_query(text) == text


def test_single_qualifier():
    assert parse_query("tag:foo") == {"tag": "foo"}


def test_leading_free_text_becomes_title():
    assert parse_query("bar tag:foo") == {"tag": "foo", "title": "bar"}


def test_multiple_qualifiers():
    assert parse_query("a:1 b:2") == {"a": "1", "b": "2"}


def test_empty_search():
    assert parse_query("") == ""


def test_pattern_keeps_inner_spaces():
    assert parse_query("title:search string") == {"title": "search string"}
    assert parse_query("search title tag:search tag") == {"tag": "search tag", "title": "search title"}


def test_empty_pattern_is_kept():
    assert parse_query("tag:") == {"tag": ""}


def test_leftmost_repeated_field_wins():
    assert parse_query("tag:a tag:b") == {"tag": "a"}


@pytest.mark.parametrize("text", [":", "::", " : ", "   ", ":a:b", "a: :b"])
def test_parser_is_total(text):
    parse_query(text)


def test_lone_colon_yields_empty_field_name():
    assert parse_query(":") == {"": ""}


def test_tag_query_round_trips_through_parser():
    assert parse_query(tag_query("Dev")) == {"tag": "Dev"}


def _rec(rid, title, url, date, *tags):
    return BookmarkRecord(id=rid, title=title, url=url, date=date, tag=[Tag(t, custom=c) for t, c in tags])


RECORDS = [
    _rec("1", "Rust book", "https://doc.rust-lang.org/book/", 100, ("Dev", False), ("lang", True)),
    _rec("2", "python docs", "https://docs.python.org/", 300, ("Dev", False)),
    _rec("3", "Hacker News", "https://news.ycombinator.com/", 200),
]


def test_unscoped_match_checks_every_field_case_insensitively():
    assert [r.id for r in filter_records(RECORDS, "PYTHON")] == ["2"]
    assert [r.id for r in filter_records(RECORDS, "ycombinator")] == ["3"]
    assert [r.id for r in filter_records(RECORDS, "lang")] == ["1"]


def test_field_expression_requires_every_field():
    expr = parse_query("book tag:dev")
    assert [r.id for r in filter_records(RECORDS, expr)] == ["1"]


def test_empty_expression_matches_everything():
    assert filter_records(RECORDS, "") == RECORDS
    assert filter_records(RECORDS, {}) == RECORDS


def test_empty_tag_pattern_needs_at_least_one_tag():
    assert [r.id for r in filter_records(RECORDS, parse_query("tag:"))] == ["1", "2"]


def test_unknown_field_never_matches():
    assert not matches(RECORDS[0], {"nope": ""})
    assert not matches(RECORDS[0], {"folder_tags": ""})


def test_order_by_title_ignores_case():
    assert [r.id for r in order_records(RECORDS, "title")] == ["3", "2", "1"]


def test_order_by_date_is_newest_first():
    assert [r.id for r in order_records(RECORDS, "date")] == ["2", "3", "1"]


def test_order_by_url():
    assert [r.id for r in order_records(RECORDS, "url")] == ["1", "2", "3"]


def test_unknown_order_is_rejected():
    with pytest.raises(ValueError):
        order_records(RECORDS, "id")


def test_search_filters_then_orders():
    assert [r.id for r in search(RECORDS, "tag:Dev", "date")] == ["2", "1"]
