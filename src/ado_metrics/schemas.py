"""Pydantic schemas for Azure DevOps REST payloads.

Every model accepts and keeps unknown keys (``extra="allow"``) so fields the
metrics do not use yet survive validation and re-serialization unchanged.
Records are only built through :func:`validate_record` and
:func:`validate_list`, which turn schema mismatches into
:class:`~ado_metrics.errors.ResponseValidationError`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ResponseValidationError

MAX_AREA_DEPTH = 14


class OpenRecord(BaseModel):
    """Base model for open (extensible) API records."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize back to the API shape, including unrecognized keys."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class IdentityRef(OpenRecord):
    id: Optional[str] = None
    uniqueName: Optional[str] = None
    displayName: Optional[str] = None
    descriptor: Optional[str] = None
    url: Optional[str] = None
    imageUrl: Optional[str] = None
    mailAddress: Optional[str] = None


class WiqlReference(OpenRecord):
    id: int


class WiqlResponse(OpenRecord):
    workItems: List[WiqlReference]


class WorkItemFields(OpenRecord):
    """Work item field bag with the commonly used system fields called out."""

    state: Optional[str] = Field(default=None, alias="System.State")
    assigned_to: Optional[Union[IdentityRef, str]] = Field(default=None, alias="System.AssignedTo")
    title: Optional[str] = Field(default=None, alias="System.Title")
    created_date: Optional[str] = Field(default=None, alias="System.CreatedDate")
    changed_date: Optional[str] = Field(default=None, alias="System.ChangedDate")
    closed_date: Optional[str] = Field(default=None, alias="Microsoft.VSTS.Common.ClosedDate")

    def get(self, name: str, default: Any = None) -> Any:
        """Look up a field by its reference name (e.g. ``System.Title``)."""
        return self.to_payload().get(name, default)


class WorkItem(OpenRecord):
    id: int
    fields: WorkItemFields
    url: Optional[str] = None
    rev: Optional[int] = None


class FieldDelta(OpenRecord):
    oldValue: Any = None
    newValue: Any = None


class WorkItemUpdate(OpenRecord):
    id: Optional[int] = None
    rev: Optional[int] = None
    revisedDate: Optional[str] = None
    fields: Dict[str, FieldDelta] = Field(default_factory=dict)


class PullRequest(OpenRecord):
    id: int
    createdBy: IdentityRef
    creationDate: str
    status: str
    isDraft: Optional[bool] = None
    targetRefName: str
    sourceRefName: str
    closedDate: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_id_from_pull_request_id(cls, data: Any) -> Any:
        # Search endpoints return ``pullRequestId`` rather than ``id``.
        if isinstance(data, dict) and "id" not in data and "pullRequestId" in data:
            data = dict(data)
            data["id"] = data["pullRequestId"]
        return data


class PRComment(OpenRecord):
    id: Optional[int] = None
    author: Optional[IdentityRef] = None
    content: Optional[str] = None
    publishedDate: str


class PRThread(OpenRecord):
    id: int
    comments: List[PRComment]


class PRReviewer(OpenRecord):
    id: str
    uniqueName: Optional[str] = None
    displayName: str
    vote: int


class PRIteration(OpenRecord):
    id: int
    createdDate: str


class WorkItemReference(OpenRecord):
    id: Union[int, str]
    url: Optional[str] = None


class PolicyConfigurationType(OpenRecord):
    displayName: str


class PolicyConfiguration(OpenRecord):
    type: PolicyConfigurationType


class PolicyEvaluation(OpenRecord):
    configuration: PolicyConfiguration
    status: str
    startedDate: Optional[str] = None
    completedDate: Optional[str] = None

    @property
    def type_name(self) -> str:
        return self.configuration.type.displayName


class GraphUser(OpenRecord):
    id: str
    displayName: Optional[str] = None
    uniqueName: Optional[str] = None
    mailAddress: Optional[str] = None
    descriptor: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_graph_identity(cls, data: Any) -> Any:
        # Graph subjects expose principalName/originId instead of uniqueName/id.
        if not isinstance(data, dict):
            return data
        filled = dict(data)
        if "id" not in filled:
            for source in ("originId", "descriptor"):
                if isinstance(filled.get(source), str):
                    filled["id"] = filled[source]
                    break
        if "uniqueName" not in filled and isinstance(filled.get("principalName"), str):
            filled["uniqueName"] = filled["principalName"]
        return filled


class AreaNode(OpenRecord):
    id: Optional[int] = None
    path: Optional[str] = None
    name: str
    children: Optional[List["AreaNode"]] = None


AreaNode.model_rebuild()


Model = TypeVar("Model", bound=BaseModel)


def validate_record(model: Type[Model], payload: Any, context: str) -> Model:
    """Validate one payload against ``model``.

    Raises:
        ResponseValidationError: If ``payload`` does not match the schema.
    """
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ResponseValidationError(f"Invalid {context} response: {exc}") from exc


def normalize_list(payload: Any, context: str) -> List[Any]:
    """Unwrap ``{"value": [...]}`` or a bare array into a plain list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("value"), list):
        return payload["value"]
    raise ResponseValidationError(
        f"Invalid {context} response: expected a list or an object with a 'value' list."
    )


def validate_list(model: Type[Model], payload: Any, context: str) -> List[Model]:
    """Normalize a list response and validate each element against ``model``."""
    return [validate_record(model, item, context) for item in normalize_list(payload, context)]


def tree_depth(payload: Any) -> int:
    """Return the depth of a raw area tree (a lone root has depth 1)."""
    if not isinstance(payload, dict):
        return 0
    deepest = 0
    stack = [(payload, 1)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        children = node.get("children") if isinstance(node, dict) else None
        if isinstance(children, list):
            stack.extend((child, depth + 1) for child in children if isinstance(child, dict))
    return deepest


def validate_area_tree(payload: Any, max_depth: int = MAX_AREA_DEPTH) -> AreaNode:
    """Validate a classification tree, rejecting trees deeper than ``max_depth``."""
    depth = tree_depth(payload)
    if depth > max_depth:
        raise ResponseValidationError(
            f"Invalid area tree response: depth {depth} exceeds the limit of {max_depth}."
        )
    return validate_record(AreaNode, payload, "area tree")
