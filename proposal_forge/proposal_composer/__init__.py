"""
Proposal composition: hook formulas, skeletons, template selection,
humanization and generation prompt assembly.
"""

from .templates import (
    HookFormula,
    Skeleton,
    TemplateLibrary,
    TemplateSelector,
    TARGET_WORDS,
    make_template_id,
    parse_template_id
)

from .humanization import (
    HumanizationIntensity,
    build_system_prompt,
    get_humanization_prompt
)

from .prompt_builder import (
    ComposedPrompt,
    build_job_context,
    compose_generation_prompt
)

__all__ = [
    'HookFormula',
    'Skeleton',
    'TemplateLibrary',
    'TemplateSelector',
    'TARGET_WORDS',
    'make_template_id',
    'parse_template_id',
    'HumanizationIntensity',
    'build_system_prompt',
    'get_humanization_prompt',
    'ComposedPrompt',
    'build_job_context',
    'compose_generation_prompt'
]
