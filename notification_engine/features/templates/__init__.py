"""Template registry, compiled cache and recipient rendering."""

from __future__ import annotations

from .compiler import TemplateCompiler
from .models import CompiledTemplate, Template, TemplateVersion
from .renderer import TemplateRenderer, count_sms_segments
from .schemas import (
    CompiledTemplateView,
    RenderedContent,
    TemplateCreate,
    TemplateRead,
    TemplateVersionCreate,
    TemplateVersionRead,
)
from .service import TemplateService

__all__ = [
    "CompiledTemplate",
    "CompiledTemplateView",
    "RenderedContent",
    "Template",
    "TemplateCompiler",
    "TemplateCreate",
    "TemplateRead",
    "TemplateRenderer",
    "TemplateService",
    "TemplateVersion",
    "TemplateVersionCreate",
    "TemplateVersionRead",
    "count_sms_segments",
]
