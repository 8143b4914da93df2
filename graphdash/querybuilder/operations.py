"""Serialisable builder operations, one per QueryModel mutation."""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from graphdash.querybuilder.models import (
    CombineMode,
    LimitMode,
    Operator,
    QueryModel,
)


def _parse_operator(cls, v):
    if v is None or isinstance(v, Operator):
        return v
    return Operator.parse(v)


class AddNode(BaseModel):
    op: Literal["add_node"] = "add_node"
    label: Optional[str] = None
    alias: Optional[str] = None

    def apply(self, model: QueryModel) -> None:
        model.add_node(label=self.label, alias=self.alias)


class RemoveNode(BaseModel):
    op: Literal["remove_node"] = "remove_node"
    node_id: str

    def apply(self, model: QueryModel) -> None:
        model.remove_node(self.node_id)


class UpdateNode(BaseModel):
    op: Literal["update_node"] = "update_node"
    node_id: str
    label: Optional[str] = None
    alias: Optional[str] = None

    def apply(self, model: QueryModel) -> None:
        kwargs = {}
        # an explicit null label clears it, an omitted one keeps it
        if "label" in self.model_fields_set:
            kwargs["label"] = self.label
        model.update_node(self.node_id, alias=self.alias, **kwargs)


class ReorderNodes(BaseModel):
    op: Literal["reorder_nodes"] = "reorder_nodes"
    from_index: int
    to_index: int

    def apply(self, model: QueryModel) -> None:
        model.reorder_nodes(self.from_index, self.to_index)


class AddRelationship(BaseModel):
    op: Literal["add_relationship"] = "add_relationship"
    from_id: str = Field(..., alias="from")
    to_id: str = Field(..., alias="to")
    type: Optional[str] = None
    alias: Optional[str] = None
    combine_mode: Optional[CombineMode] = None
    enabled: bool = True

    model_config = {"populate_by_name": True}

    def apply(self, model: QueryModel) -> None:
        model.add_relationship(
            self.from_id,
            self.to_id,
            type=self.type,
            alias=self.alias,
            combine_mode=self.combine_mode,
            enabled=self.enabled,
        )


class RemoveRelationship(BaseModel):
    op: Literal["remove_relationship"] = "remove_relationship"
    rel_id: str

    def apply(self, model: QueryModel) -> None:
        model.remove_relationship(self.rel_id)


class UpdateRelationship(BaseModel):
    op: Literal["update_relationship"] = "update_relationship"
    rel_id: str
    type: Optional[str] = None
    from_id: Optional[str] = Field(default=None, alias="from")
    to_id: Optional[str] = Field(default=None, alias="to")
    alias: Optional[str] = None
    combine_mode: Optional[CombineMode] = None
    enabled: Optional[bool] = None

    model_config = {"populate_by_name": True}

    def apply(self, model: QueryModel) -> None:
        kwargs = {}
        if "type" in self.model_fields_set:
            kwargs["type"] = self.type
        model.update_relationship(
            self.rel_id,
            from_id=self.from_id,
            to_id=self.to_id,
            alias=self.alias,
            combine_mode=self.combine_mode,
            enabled=self.enabled,
            **kwargs,
        )


class AddCondition(BaseModel):
    op: Literal["add_condition"] = "add_condition"
    node_id: str
    property: str = ""
    operator: Operator = Operator.EQ
    value: str = ""
    enabled: bool = True

    normalize_operator = field_validator("operator", mode="before")(_parse_operator)

    def apply(self, model: QueryModel) -> None:
        model.add_condition(
            self.node_id,
            property=self.property,
            operator=self.operator,
            value=self.value,
            enabled=self.enabled,
        )


class RemoveCondition(BaseModel):
    op: Literal["remove_condition"] = "remove_condition"
    cond_id: str

    def apply(self, model: QueryModel) -> None:
        model.remove_condition(self.cond_id)


class UpdateCondition(BaseModel):
    op: Literal["update_condition"] = "update_condition"
    cond_id: str
    node_id: Optional[str] = None
    property: Optional[str] = None
    operator: Optional[Operator] = None
    value: Optional[str] = None
    enabled: Optional[bool] = None

    normalize_operator = field_validator("operator", mode="before")(_parse_operator)

    def apply(self, model: QueryModel) -> None:
        model.update_condition(
            self.cond_id,
            node_id=self.node_id,
            property=self.property,
            operator=self.operator,
            value=self.value,
            enabled=self.enabled,
        )


class SetProjection(BaseModel):
    op: Literal["set_projection"] = "set_projection"
    node_ids: List[str] = Field(default_factory=list)

    def apply(self, model: QueryModel) -> None:
        model.set_projection(self.node_ids)


class AddToProjection(BaseModel):
    op: Literal["add_to_projection"] = "add_to_projection"
    node_id: str

    def apply(self, model: QueryModel) -> None:
        model.add_to_projection(self.node_id)


class RemoveFromProjection(BaseModel):
    op: Literal["remove_from_projection"] = "remove_from_projection"
    node_id: str

    def apply(self, model: QueryModel) -> None:
        model.remove_from_projection(self.node_id)


class MoveProjection(BaseModel):
    op: Literal["move_projection"] = "move_projection"
    from_index: int
    to_index: int

    def apply(self, model: QueryModel) -> None:
        model.move_projection(self.from_index, self.to_index)


class SetLimit(BaseModel):
    op: Literal["set_limit"] = "set_limit"
    count: Optional[int] = None
    mode: Optional[LimitMode] = None

    def apply(self, model: QueryModel) -> None:
        model.set_limit(count=self.count, mode=self.mode)


class Clear(BaseModel):
    op: Literal["clear"] = "clear"

    def apply(self, model: QueryModel) -> None:
        model.clear()


Operation = Annotated[
    Union[
        AddNode,
        RemoveNode,
        UpdateNode,
        ReorderNodes,
        AddRelationship,
        RemoveRelationship,
        UpdateRelationship,
        AddCondition,
        RemoveCondition,
        UpdateCondition,
        SetProjection,
        AddToProjection,
        RemoveFromProjection,
        MoveProjection,
        SetLimit,
        Clear,
    ],
    Field(discriminator="op"),
]

_operation_adapter: TypeAdapter = TypeAdapter(Operation)


def parse_operation(data: dict) -> Operation:
    """Validate a raw `{"op": ..., ...}` payload into its Operation class."""
    return _operation_adapter.validate_python(data)
