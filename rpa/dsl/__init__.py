"""Template DSL: typed models and placeholder substitution."""

from .models import Step, Template, TemplateMetadata, TemplateVariable
from .substitution import replace_variables

__all__ = [
    "Step",
    "Template",
    "TemplateMetadata",
    "TemplateVariable",
    "replace_variables",
]
