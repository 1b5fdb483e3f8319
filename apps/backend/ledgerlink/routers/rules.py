"""Category rule API router."""

from fastapi import APIRouter, status

from ledgerlink.deps import RuleEngineDep, TransactionStoreDep
from ledgerlink.logger import get_logger
from ledgerlink.schemas import (
    ApplyRulesRequest,
    BatchRuleResult,
    CategoryRule,
    CategoryRuleCreate,
    CategoryRuleUpdate,
    ListResponse,
    RuleEditRequest,
    RuleEditResult,
    RuleStats,
)
from ledgerlink.services import PersistenceError, RuleAutoGenerator, RuleNotFoundError
from ledgerlink.utils import raise_not_found, raise_service_unavailable

router = APIRouter(prefix="/rules", tags=["rules"])
logger = get_logger(__name__)


@router.get("", response_model=ListResponse[CategoryRule])
async def list_rules(engine: RuleEngineDep, active_only: bool = False) -> ListResponse[CategoryRule]:
    """List rules in evaluation order."""
    rules = engine.get_active_rules() if active_only else engine.get_all_rules()
    return ListResponse[CategoryRule](items=rules, total=len(rules))


@router.get("/stats", response_model=RuleStats)
async def rule_stats(engine: RuleEngineDep) -> RuleStats:
    return engine.get_stats()


@router.get("/{rule_id}", response_model=CategoryRule)
async def get_rule(rule_id: str, engine: RuleEngineDep) -> CategoryRule:
    rule = engine.get_rule(rule_id)
    if rule is None:
        raise_not_found("Rule")
    return rule


@router.post("", response_model=CategoryRule, status_code=status.HTTP_201_CREATED)
async def create_rule(data: CategoryRuleCreate, engine: RuleEngineDep) -> CategoryRule:
    try:
        return await engine.create_rule(data)
    except PersistenceError as e:
        raise_service_unavailable("Rule could not be saved", cause=e)


@router.put("/{rule_id}", response_model=CategoryRule)
async def update_rule(rule_id: str, data: CategoryRuleUpdate, engine: RuleEngineDep) -> CategoryRule:
    """Apply a partial update. Changing the priority moves the rule in evaluation order."""
    try:
        return await engine.update_rule(rule_id, data.model_dump(exclude_unset=True))
    except RuleNotFoundError as e:
        logger.debug("Rule not found for update", rule_id=rule_id)
        raise_not_found("Rule", cause=e)
    except PersistenceError as e:
        raise_service_unavailable("Rule could not be saved", cause=e)


@router.post("/{rule_id}/toggle", response_model=CategoryRule)
async def toggle_rule(rule_id: str, engine: RuleEngineDep) -> CategoryRule:
    try:
        return await engine.toggle_rule(rule_id)
    except RuleNotFoundError as e:
        raise_not_found("Rule", cause=e)
    except PersistenceError as e:
        raise_service_unavailable("Rule could not be saved", cause=e)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(rule_id: str, engine: RuleEngineDep) -> None:
    try:
        await engine.delete_rule(rule_id)
    except RuleNotFoundError as e:
        raise_not_found("Rule", cause=e)
    except PersistenceError as e:
        raise_service_unavailable("Rule could not be deleted", cause=e)


@router.post("/apply", response_model=BatchRuleResult)
async def apply_rules(request: ApplyRulesRequest, engine: RuleEngineDep) -> BatchRuleResult:
    """Classify a batch with the active rules without persisting anything."""
    return engine.apply_rules_to_batch(request.transactions)


@router.post("/from-edit", response_model=RuleEditResult)
async def rule_from_edit(
    request: RuleEditRequest,
    engine: RuleEngineDep,
    store: TransactionStoreDep,
) -> RuleEditResult:
    """Promote a manual category edit to an account + description rule."""
    generator = RuleAutoGenerator(engine, store)
    try:
        return await generator.create_or_update_rule_from_edit(
            request.account,
            request.description,
            request.category,
            request.subcategory,
            apply_to_existing=request.apply_to_existing,
        )
    except PersistenceError as e:
        raise_service_unavailable("Rule could not be saved", cause=e)
