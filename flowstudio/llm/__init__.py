"""
FlowStudio LLM Module

Text providers and prompt templating.
"""

from .providers import (
    TextProvider,
    TextResponse,
    TokenUsage,
    OpenAIProvider,
    AnthropicProvider,
    get_text_provider,
)
from .templating import (
    PromptTemplates,
    format_for_llm,
    inject_variables,
    build_scene_prompt_data,
    render_scene_prompt,
    render_system_prompt,
    resolve_style,
)

__all__ = [
    'TextProvider',
    'TextResponse',
    'TokenUsage',
    'OpenAIProvider',
    'AnthropicProvider',
    'get_text_provider',
    'PromptTemplates',
    'format_for_llm',
    'inject_variables',
    'build_scene_prompt_data',
    'render_scene_prompt',
    'render_system_prompt',
    'resolve_style',
]
