"""FastAPI endpoints for managing categorization rules."""

import uuid

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from budget_bridge.api.dependencies import get_rules_service
from budget_bridge.core.models import PatternType, Rule, RuleCreate, RuleUpdate
from budget_bridge.engine.rules import pattern_matches_sample
from budget_bridge.services.rules_service import RulesService

router = APIRouter(prefix="/rules", tags=["rules"])


class ReorderRequest(BaseModel):
    rule_ids: list[uuid.UUID] = Field(min_length=1)


class RuleImportRequest(BaseModel):
    rules: list[Rule]
    replace: bool = False


class RuleTestRequest(BaseModel):
    pattern: str = Field(min_length=1, max_length=500)
    pattern_type: PatternType = PatternType.CONTAINS
    sample: str


class RuleTestResponse(BaseModel):
    matches: bool


@router.get("", response_model=list[Rule], summary="List rules in priority order")
def list_rules(service: RulesService = Depends(get_rules_service)) -> list[Rule]:
    """List all rules, lowest priority value first."""
    return service.list_rules()


@router.post(
    "",
    response_model=Rule,
    status_code=201,
    summary="Create a rule",
    description="The pattern is compiled before the rule is stored; an invalid regex is rejected with 422.",
)
def create_rule(request: RuleCreate, service: RulesService = Depends(get_rules_service)) -> Rule:
    """Create a rule."""
    return service.create_rule(request)


@router.get("/export", response_model=list[Rule], summary="Export all rules")
def export_rules(service: RulesService = Depends(get_rules_service)) -> list[Rule]:
    """Export every rule as a JSON list that `POST /rules/import` accepts."""
    return service.export_rules()


@router.post(
    "/import",
    response_model=list[Rule],
    summary="Import rules",
    description=(
        "Stores an exported rule list. Every pattern is compiled first; if any fails, nothing is stored and all "
        "failures are reported. With `replace` the existing rules are removed."
    ),
)
def import_rules(request: RuleImportRequest, service: RulesService = Depends(get_rules_service)) -> list[Rule]:
    """Import a rule list."""
    return service.import_rules(request.rules, replace=request.replace)


@router.post("/reorder", response_model=list[Rule], summary="Reorder rules")
def reorder_rules(request: ReorderRequest, service: RulesService = Depends(get_rules_service)) -> list[Rule]:
    """Assign ascending priorities to the listed rules in the given order."""
    return service.reorder(request.rule_ids)


@router.post("/test", response_model=RuleTestResponse, summary="Test a pattern against sample text")
def check_pattern(request: RuleTestRequest) -> RuleTestResponse:
    """Check whether a pattern matches the sample the way classification would."""
    return RuleTestResponse(matches=pattern_matches_sample(request.pattern, request.pattern_type, request.sample))


@router.get("/{rule_id}", response_model=Rule, summary="Get a rule")
def get_rule(rule_id: uuid.UUID, service: RulesService = Depends(get_rules_service)) -> Rule:
    return service.get_rule(rule_id)


@router.patch("/{rule_id}", response_model=Rule, summary="Update a rule")
def update_rule(rule_id: uuid.UUID, request: RuleUpdate, service: RulesService = Depends(get_rules_service)) -> Rule:
    """Apply a partial update to a rule."""
    return service.update_rule(rule_id, request)


@router.delete("/{rule_id}", status_code=204, summary="Delete a rule")
def delete_rule(rule_id: uuid.UUID, service: RulesService = Depends(get_rules_service)) -> Response:
    service.delete_rule(rule_id)
    return Response(status_code=204)
