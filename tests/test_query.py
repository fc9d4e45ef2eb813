"""Tests for the server query-language builder."""

from mbt_ci_bridge.core.query import Query


class TestQuery:
    """Tests for Query and FieldQuery."""

    def test_literals(self):
        assert Query.field("name").equal("a").build() == "name EQ 'a'"
        assert Query.field("id").equal(7).build() == "id EQ 7"
        assert Query.field("path").not_equal(None).build() == "path NEQ null"
        assert Query.field("flag").equal(True).build() == "flag EQ true"

    def test_nested_query_in_braces(self):
        query = Query.field("ci_server").equal(Query.field("id").equal(7))
        assert query.build() == "ci_server EQ {id EQ 7}"

    def test_and_or_not(self):
        a = Query.field("a").equal(1)
        b = Query.field("b").equal(2)
        assert a.and_(b).build() == "a EQ 1;b EQ 2"
        assert a.or_(b).build() == "(a EQ 1||b EQ 2)"
        assert a.not_().build() == "!a EQ 1"

    def test_in(self):
        assert Query.field("name").in_(["x", "y"]).build() == "name IN 'x','y'"

    def test_any_of(self):
        queries = [Query.field("n").equal(v) for v in ("a", "b", "c")]
        assert Query.any_of(queries).build() == "((n EQ 'a'||n EQ 'b')||n EQ 'c')"
        assert Query.any_of(queries[:1]).build() == "n EQ 'a'"
        assert Query.any_of([]) is None

    def test_equality(self):
        assert Query.field("a").equal(1) == Query.field("a").equal(1)
        assert str(Query.field("a").equal(1)) == "a EQ 1"
