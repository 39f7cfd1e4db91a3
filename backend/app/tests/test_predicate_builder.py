from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import sqlite

from app import schemas
from app.services.predicate_builder import (
    FilterOperator,
    PredicateError,
    build_predicate,
    normalize_direction,
    parse_operator,
)
from app.services.sheet_query import query_sheet
from app.services.sheet_store import SheetStore


def compile_where(plan):
    return str(plan.where.compile(dialect=sqlite.dialect()))


def test_in_filter_binds_each_value_in_order(financial):
    plan = build_predicate(
        financial,
        [schemas.FilterCriterion(column="category", operator="in", values=["OPEX", "CAPEX"])],
        [],
        page=1,
        page_size=50,
    )
    assert compile_where(plan) == "financial_data.category IN (?, ?)"
    assert plan.bindings == (("filter_0", "OPEX"), ("filter_1", "CAPEX"))
    assert plan.parameters == {"filter_0": "OPEX", "filter_1": "CAPEX"}


def test_second_page_defaults_to_key_order(financial, db):
    plan = build_predicate(financial, [], [], page=2, page_size=10)
    assert plan.order_by == (("internal_order", "asc"), ("item_id", "asc"))
    assert plan.offset == 10
    assert plan.limit == 10
    assert plan.where is None

    sql = SheetStore(db).render(SheetStore(db).page_statement(financial, plan))
    assert "ORDER BY financial_data.internal_order ASC, financial_data.item_id ASC" in sql
    assert "LIMIT" in sql and "OFFSET" in sql


def test_filters_combine_with_and_and_number_bindings(financial):
    plan = build_predicate(
        financial,
        [
            schemas.FilterCriterion(column="amount", operator=">=", value="100"),
            schemas.FilterCriterion(column="Description", operator="contains", value="50%_off"),
            schemas.FilterCriterion(column="cost_center", operator="isnull"),
        ],
        [schemas.SortCriterion(column="amount", direction="DESC")],
        page=1,
        page_size=25,
    )
    sql = compile_where(plan)
    assert "financial_data.amount >= ?" in sql
    assert "financial_data.description LIKE ? ESCAPE" in sql
    assert "financial_data.cost_center IS NULL" in sql
    assert " AND " in sql
    names = [name for name, _ in plan.bindings]
    assert names == ["filter_0", "filter_1"]
    assert plan.bindings[1][1] == "%50\\%\\_off%"
    assert plan.order_by == (("amount", "desc"),)


def test_values_never_appear_in_statement_text(financial):
    hostile = "x'; DROP TABLE financial_data; --"
    plan = build_predicate(
        financial,
        [schemas.FilterCriterion(column="description", operator="eq", value=hostile)],
        [],
        page=1,
        page_size=10,
    )
    assert hostile not in compile_where(plan)
    assert plan.parameters["filter_0"] == hostile


def test_all_invalid_criteria_reported_together(financial):
    with pytest.raises(PredicateError) as excinfo:
        build_predicate(
            financial,
            [
                schemas.FilterCriterion(column="nope", operator="eq", value=1),
                schemas.FilterCriterion(column="amount", operator="between", value=1),
                schemas.FilterCriterion(column="amount", operator="contains", value="1"),
                schemas.FilterCriterion(column="category", operator="in", values=[]),
                schemas.FilterCriterion(column="amount", operator="eq", value="abc"),
                schemas.FilterCriterion(column="amount", operator="eq"),
                schemas.FilterCriterion(column="amount", operator="isnull", value=3),
            ],
            [schemas.SortCriterion(column="missing")],
            page=1,
            page_size=10,
        )
    errors = excinfo.value.errors
    assert len(errors) == 8
    assert "Column 'nope' does not exist" in errors[0]
    assert "Unsupported filter operator 'between'" in errors[1]
    assert "requires a text column" in errors[2]
    assert "non-empty value set" in errors[3]


def test_non_finite_integer_filter_is_rejected(financial):
    with pytest.raises(PredicateError) as excinfo:
        build_predicate(
            financial,
            [schemas.FilterCriterion(column="item_id", operator="eq", value="Infinity")],
            [],
            page=1,
            page_size=10,
        )
    assert "item_id" in str(excinfo.value)


def test_descending_sort_token(financial):
    plan = build_predicate(
        financial,
        [],
        [schemas.SortCriterion(column="amount", direction="descending")],
        page=1,
        page_size=10,
    )
    assert plan.order_by == (("amount", "desc"),)


def test_unknown_filter_column_fails_before_storage(financial):
    store = MagicMock(spec=SheetStore)
    payload = schemas.SheetQueryRequest(
        filters=[schemas.FilterCriterion(column="ghost", operator="eq", value=1)],
    )
    with pytest.raises(PredicateError):
        query_sheet(store, financial, payload, actor="alice")
    assert store.method_calls == []


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("=", FilterOperator.EQ),
        ("<>", FilterOperator.NE),
        ("greater-or-equal", FilterOperator.GTE),
        ("Starts-With", FilterOperator.STARTS_WITH),
        ("not-in-set", FilterOperator.NOT_IN),
        ("isnotnull", FilterOperator.IS_NOT_NULL),
        ("like", None),
    ],
)
def test_parse_operator(raw, expected):
    assert parse_operator(raw) is expected


def test_sort_direction_is_lenient():
    assert normalize_direction("DESC") == "desc"
    assert normalize_direction("descending") == "desc"
    assert normalize_direction(" Descending ") == "desc"
    assert normalize_direction("down") == "asc"
    assert normalize_direction(None) == "asc"
