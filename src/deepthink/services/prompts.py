"""Fixed prompt templates for the two generation stages."""

from __future__ import annotations

import textwrap
from typing import Dict, FrozenSet, Mapping

from langchain_core.prompts import PromptTemplate


DEEP_THINKING = "deep-thinking"
FINAL_RESPONSE = "final-response"


DEEP_THINKING_TEMPLATE = textwrap.dedent(
    """\
    **Deep Thinking Analysis Task**
    Analyze user's query thoroughly. Consider:
    1. Primary intent and underlying needs
    2. Potential ambiguities or missing context
    3. Required knowledge domains
    4. Response strategy

    userQuery: {query}
    Step-by-step Analysis:"""
)


FINAL_RESPONSE_TEMPLATE = textwrap.dedent(
    """\
    **Response Generation**
    Based on the analysis below, craft a comprehensive response.

    Analysis: {analysis}
    Original Query: {query}
    Response:"""
)


_TEMPLATES: Dict[str, PromptTemplate] = {
    DEEP_THINKING: PromptTemplate.from_template(DEEP_THINKING_TEMPLATE),
    FINAL_RESPONSE: PromptTemplate.from_template(FINAL_RESPONSE_TEMPLATE),
}


class UnknownTemplateError(KeyError):
    pass


class PromptFieldsError(ValueError):
    pass


def _template(template_id: str) -> PromptTemplate:
    try:
        return _TEMPLATES[template_id]
    except KeyError:
        raise UnknownTemplateError(template_id) from None


def template_fields(template_id: str) -> FrozenSet[str]:
    return frozenset(_template(template_id).input_variables)


def render(template_id: str, fields: Mapping[str, str]) -> str:
    """Substitute ``fields`` into the named template.

    The field map must name exactly the placeholders the template declares;
    anything missing or extra is rejected with :class:`PromptFieldsError`.
    """

    template = _template(template_id)
    expected = set(template.input_variables)
    given = set(fields)
    if given != expected:
        missing = sorted(expected - given)
        extra = sorted(given - expected)
        raise PromptFieldsError(
            f"Template {template_id!r} fields mismatch (missing={missing}, extra={extra})"
        )
    return template.format(**{key: str(fields[key]) for key in expected})
