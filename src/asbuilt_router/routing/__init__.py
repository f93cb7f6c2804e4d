from asbuilt_router.routing.conditions import (
    MetadataMapping,
    RuleCondition,
    apply_metadata_mapping,
    evaluate_conditions,
    has_nested_quantifier,
    safe_regex_match,
)
from asbuilt_router.routing.resolver import (
    RoutingDecision,
    RoutingRuleResolver,
    TenantContext,
    map_rule_to_destination,
)
from asbuilt_router.routing.rule_store import InMemoryRoutingRuleStore, RoutingRuleStore
from asbuilt_router.routing.rules import (
    DestinationDescriptor,
    RoutingRule,
    load_routing_rules,
    parse_routing_rule,
)

__all__ = [
    "DestinationDescriptor",
    "InMemoryRoutingRuleStore",
    "MetadataMapping",
    "RoutingDecision",
    "RoutingRule",
    "RoutingRuleResolver",
    "RoutingRuleStore",
    "RuleCondition",
    "TenantContext",
    "apply_metadata_mapping",
    "evaluate_conditions",
    "has_nested_quantifier",
    "load_routing_rules",
    "map_rule_to_destination",
    "parse_routing_rule",
    "safe_regex_match",
]
