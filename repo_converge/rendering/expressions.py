"""Evaluation of issue mapping expressions.

Mapping fields are small Jinja2 templates such as ``{{ release_number }}``
or ``bug,{{ release_number }}``. They are rendered in a sandboxed
environment with StrictUndefined, so a reference to an unknown variable
fails instead of silently producing an empty milestone.

Example:
    >>> mapping = IssueMapping(milestone_expression="v{{ release_number }}", labels="bug")
    >>> build_issue_filter(mapping, {"release_number": "1.2"}).to_query_string()
    '?per_page=100&milestone=v1.2&labels=bug'
"""

from typing import Any

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from repo_converge.config.settings import IssueMapping
from repo_converge.exceptions import ConfigurationError
from repo_converge.hosting.issue_filter import IssueQueryFilter

DEFAULT_MILESTONE_EXPRESSION = "{{ release_number }}"

_environment = SandboxedEnvironment(
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=False,
)


def evaluate(expression: str, context: dict[str, Any]) -> str:
    """Render one expression against ``context``.

    Raises:
        jinja2.TemplateError: If the expression is invalid or references
            an undefined variable
    """
    return _environment.from_string(expression).render(**context).strip()


def build_issue_filter(mapping: IssueMapping, context: dict[str, Any]) -> IssueQueryFilter:
    """Turn an issue mapping into the filter for one release.

    Args:
        mapping: Configured mapping expressions
        context: Variables available to the expressions

    Returns:
        A custom filter when a custom query is configured, otherwise a
        milestone (plus optional labels) filter

    Raises:
        ConfigurationError: If an expression fails to evaluate or the
            query/milestone evaluates to an empty string. The message
            includes the expression text.
    """
    if mapping.custom_filter_query:
        try:
            query = evaluate(mapping.custom_filter_query, context)
            if not query:
                raise ConfigurationError("resulting query is an empty string")
        except (TemplateError, ConfigurationError) as e:
            raise ConfigurationError(
                f'Could not parse the Issue mapping query "{mapping.custom_filter_query}": {_reason(e)}'
            ) from e
        return IssueQueryFilter.custom(query)

    milestone_expression = mapping.milestone_expression or DEFAULT_MILESTONE_EXPRESSION
    try:
        milestone = evaluate(milestone_expression, context)
        if not milestone:
            raise ConfigurationError("milestone expression is an empty string")
    except (TemplateError, ConfigurationError) as e:
        raise ConfigurationError(
            f'Could not parse the simple mapping expression "{milestone_expression}": {_reason(e)}'
        ) from e

    labels = None
    if mapping.labels:
        try:
            labels = evaluate(mapping.labels, context) or None
        except TemplateError as e:
            raise ConfigurationError(f'Could not parse the labels expression "{mapping.labels}": {_reason(e)}') from e

    return IssueQueryFilter.structured(milestone, labels)


def _reason(error: Exception) -> str:
    if isinstance(error, ConfigurationError):
        return error.message
    return str(error)
