"""Story template library."""

from storywright.c2_template_library.template_library import (
    BUILT_IN_TEMPLATES,
    TemplateService,
    apply_template_variables,
    instantiate_template,
)

__all__ = ["BUILT_IN_TEMPLATES", "TemplateService", "apply_template_variables", "instantiate_template"]
