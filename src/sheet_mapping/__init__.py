"""Public API for mapping component graphs onto sheet regions and back."""

from sheet_mapping.config import CURRENT_RULE_VERSION, DEFAULT_TRAVERSAL_CONFIG, LEGACY_RULE_VERSION, TraversalConfig
from sheet_mapping.contracts import MappedRegion, MappingRange, MappingSubject, TraversalStrategy
from sheet_mapping.entities import Component, Instance, Parameter, Slot, TablePointer, ValueTable
from sheet_mapping.rule_node import RuleNode
from sheet_mapping.tool import MappingTool
from sheet_mapping.trace import MappingTrace
from sheet_mapping.unmapping import UnmappingRule

__all__ = [
    "CURRENT_RULE_VERSION",
    "DEFAULT_TRAVERSAL_CONFIG",
    "LEGACY_RULE_VERSION",
    "Component",
    "Instance",
    "MappedRegion",
    "MappingRange",
    "MappingSubject",
    "MappingTool",
    "MappingTrace",
    "Parameter",
    "RuleNode",
    "Slot",
    "TablePointer",
    "TraversalConfig",
    "TraversalStrategy",
    "UnmappingRule",
    "ValueTable",
]
