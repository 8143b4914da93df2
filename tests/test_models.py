"""Tests for the Query Graph Model and its mutations."""

import pytest

from graphdash.querybuilder.models import (
    CombineMode,
    Limit,
    LimitMode,
    ModelValidationError,
    Operator,
    QueryCondition,
    QueryModel,
)
from graphdash.querybuilder.operations import (
    AddCondition,
    AddNode,
    AddRelationship,
    Clear,
    SetLimit,
    UpdateNode,
    UpdateRelationship,
    parse_operation,
)


class TestNodes:
    """Node creation, aliasing and removal."""

    def test_aliases_auto_assigned(self):
        model = QueryModel()
        a = model.add_node(label="Person")
        b = model.add_node()
        assert (a.alias, b.alias) == ("n1", "n2")
        assert b.label is None

    def test_auto_alias_skips_taken(self):
        model = QueryModel()
        model.add_node(alias="n1")
        model.add_node(alias="n3")
        assert model.add_node().alias == "n2"
        assert model.add_node().alias == "n4"

    def test_duplicate_alias_rejected(self):
        model = QueryModel()
        model.add_node(alias="p")
        with pytest.raises(ModelValidationError):
            model.add_node(alias="p")
        assert len(model.nodes) == 1

    @pytest.mark.parametrize("alias", ["1abc", "a b", "x)-[:Y]->(z", "MATCH", "return"])
    def test_invalid_alias_rejected(self, alias):
        with pytest.raises(ModelValidationError):
            QueryModel().add_node(alias=alias)

    def test_blank_label_means_any(self):
        assert QueryModel().add_node(label="  ").label is None

    def test_ids_are_unique(self):
        model = QueryModel()
        ids = {model.add_node().id for _ in range(20)}
        assert len(ids) == 20

    def test_remove_node_cascades(self):
        model = QueryModel()
        a, b, c = model.add_node(), model.add_node(), model.add_node()
        model.add_relationship(a.id, b.id)
        model.add_relationship(b.id, c.id)
        model.add_condition(b.id, property="x", value="1")
        model.set_projection([a.id, b.id, c.id])

        model.remove_node(b.id)

        assert [n.id for n in model.nodes] == [a.id, c.id]
        assert model.relationships == []
        assert model.conditions == []
        assert model.projection == [a.id, c.id]
        model.check_integrity()

    def test_remove_unknown_node(self):
        with pytest.raises(ModelValidationError):
            QueryModel().remove_node("node_missing")

    def test_reorder_nodes(self):
        model = QueryModel()
        a, b, c = model.add_node(), model.add_node(), model.add_node()
        model.reorder_nodes(2, 0)
        assert [n.id for n in model.nodes] == [c.id, a.id, b.id]

    def test_update_node_alias_and_label(self):
        model = QueryModel()
        a = model.add_node(label="Person")
        model.update_node(a.id, alias="person", label=None)
        assert a.alias == "person"
        assert a.label is None


class TestRelationships:
    """Relationship references and combine modes."""

    def test_dangling_endpoint_rejected(self):
        model = QueryModel()
        a = model.add_node()
        with pytest.raises(ModelValidationError):
            model.add_relationship(a.id, "node_nope")
        assert model.relationships == []

    def test_default_combine_modes(self):
        model = QueryModel()
        a, b, c = model.add_node(), model.add_node(), model.add_node()
        r1 = model.add_relationship(a.id, b.id)
        r2 = model.add_relationship(b.id, c.id)
        assert r1.combine_mode == CombineMode.AND
        assert r2.combine_mode == CombineMode.OPTIONAL_MATCH
        assert (r1.alias, r2.alias) == ("r1", "r2")

    def test_node_and_relationship_share_alias_space(self):
        model = QueryModel()
        a = model.add_node(alias="r1")
        b = model.add_node()
        assert model.add_relationship(a.id, b.id).alias == "r2"
        with pytest.raises(ModelValidationError):
            model.add_relationship(a.id, b.id, alias=b.alias)

    def test_changing_endpoint_clears_type(self):
        model = QueryModel()
        a, b, c = model.add_node(), model.add_node(), model.add_node()
        rel = model.add_relationship(a.id, b.id, type="KNOWS")
        model.update_relationship(rel.id, to_id=c.id)
        assert rel.to_id == c.id
        assert rel.type is None

    def test_same_endpoint_keeps_type(self):
        model = QueryModel()
        a, b = model.add_node(), model.add_node()
        rel = model.add_relationship(a.id, b.id, type="KNOWS")
        model.update_relationship(rel.id, from_id=a.id, enabled=False)
        assert rel.type == "KNOWS"
        assert rel.enabled is False

    def test_set_enabled_reports_change(self):
        model = QueryModel()
        a, b = model.add_node(), model.add_node()
        rel = model.add_relationship(a.id, b.id)
        assert model.set_relationship_enabled(rel.id, False) is True
        assert model.set_relationship_enabled(rel.id, False) is False


class TestConditionsAndProjection:
    def test_operator_spellings(self):
        assert Operator.parse("!=") is Operator.NE
        assert Operator.parse("starts   with") is Operator.STARTS_WITH
        with pytest.raises(ValueError):
            Operator.parse("LIKE")

    def test_condition_value_stored_as_text(self):
        model = QueryModel()
        a = model.add_node()
        cond = model.add_condition(a.id, property="age", operator=">", value=30)
        assert cond.value == "30"
        assert cond.operator is Operator.GT

    def test_condition_completeness(self):
        assert QueryCondition(node_id="x", property="p", value="v").is_complete()
        assert QueryCondition(node_id="x", property="p", value="0").is_complete()
        assert not QueryCondition(node_id="x", property="  ", value="v").is_complete()
        assert not QueryCondition(node_id="x", property="p").is_complete()

    def test_condition_on_missing_node(self):
        with pytest.raises(ModelValidationError):
            QueryModel().add_condition("node_x", property="p", value="v")

    def test_projection_rejects_duplicates(self):
        model = QueryModel()
        a = model.add_node()
        with pytest.raises(ModelValidationError):
            model.set_projection([a.id, a.id])
        model.add_to_projection(a.id)
        with pytest.raises(ModelValidationError):
            model.add_to_projection(a.id)

    def test_move_projection(self):
        model = QueryModel()
        a, b, c = model.add_node(), model.add_node(), model.add_node()
        model.set_projection([a.id, b.id, c.id])
        model.move_projection(0, 2)
        assert model.projection == [b.id, c.id, a.id]


class TestLimit:
    @pytest.mark.parametrize("raw", [None, "", "abc", 0, -3, "0"])
    def test_invalid_count_defaults_to_ten(self, raw):
        assert Limit(count=raw).count == 10

    def test_string_count_parsed(self):
        assert Limit(count="25", mode="NODES") == Limit(count=25, mode=LimitMode.NODES)

    def test_set_limit_keeps_other_field(self):
        model = QueryModel()
        model.set_limit(mode=LimitMode.NODES)
        model.set_limit(count=5)
        assert model.limit == Limit(count=5, mode=LimitMode.NODES)


class TestIntegrity:
    """check_integrity() guards models that did not come through mutations."""

    def test_dangling_relationship_in_payload(self):
        model = QueryModel.model_validate({
            "nodes": [{"id": "a", "alias": "n1"}],
            "relationships": [{"id": "r", "from": "a", "to": "ghost", "alias": "r1"}],
        })
        with pytest.raises(ModelValidationError):
            model.check_integrity()

    def test_duplicate_alias_in_payload(self):
        model = QueryModel.model_validate({
            "nodes": [{"id": "a", "alias": "x"}, {"id": "b", "alias": "x"}],
        })
        with pytest.raises(ModelValidationError):
            model.check_integrity()


class TestOperations:
    """Serialisable operations drive the same mutations."""

    def test_parse_and_apply(self):
        model = QueryModel()
        parse_operation({"op": "add_node", "label": "Person"}).apply(model)
        parse_operation({"op": "add_node", "label": "Company"}).apply(model)
        a, b = model.nodes
        parse_operation({"op": "add_relationship", "from": a.id, "to": b.id, "type": "WORKS_AT"}).apply(model)
        parse_operation({"op": "add_condition", "node_id": a.id, "property": "age", "operator": "!=", "value": "3"}).apply(model)
        assert model.relationships[0].type == "WORKS_AT"
        assert model.conditions[0].operator is Operator.NE

    def test_unknown_op_rejected(self):
        from pydantic import ValidationError
        with pytest.raises(ValidationError):
            parse_operation({"op": "explode"})

    def test_update_node_omitted_label_is_kept(self):
        model = QueryModel()
        AddNode(label="Person").apply(model)
        node = model.nodes[0]
        UpdateNode(node_id=node.id, alias="p").apply(model)
        assert node.label == "Person"
        UpdateNode(node_id=node.id, label=None).apply(model)
        assert node.label is None

    def test_update_relationship_type_only_when_sent(self):
        model = QueryModel()
        AddNode().apply(model)
        AddNode().apply(model)
        a, b = model.nodes
        AddRelationship(from_id=a.id, to_id=b.id, type="KNOWS").apply(model)
        rel = model.relationships[0]
        UpdateRelationship(rel_id=rel.id, enabled=False).apply(model)
        assert rel.type == "KNOWS"

    def test_clear_and_limit(self):
        model = QueryModel()
        AddNode().apply(model)
        AddCondition(node_id=model.nodes[0].id, property="p", value="v").apply(model)
        SetLimit(count=3).apply(model)
        Clear().apply(model)
        assert model.is_empty
        assert model.conditions == []
        assert model.limit.count == 10
