"""
Pure checks over parsed templates.

``find_undeclared_references`` reports errors (the loader rejects such
manifests); the other ``find_*`` functions report warnings that
``lint_template`` collects.
"""

from typing import Any, Iterator, List, Set, Tuple

from expressions import ExpressionError, context_references, expressions_in

# Always available to reusable workflows without being declared
BUILTIN_SECRETS = {"github_token"}


def _walk_expressions(value: Any) -> Iterator[str]:
    """Yield every expression in a manifest dict; ``if:`` values are bare expressions."""
    if isinstance(value, dict):
        for key, item in value.items():
            if key == "if":
                yield from expressions_in(item, bare=True)
            else:
                yield from _walk_expressions(item)
    elif isinstance(value, list):
        for item in value:
            yield from _walk_expressions(item)
    elif isinstance(value, str):
        yield from expressions_in(value)


def _references(template) -> Tuple[Set[Tuple[str, str]], List[str]]:
    refs: Set[Tuple[str, str]] = set()
    errors: List[str] = []
    for expression in _walk_expressions(template.to_dict()):
        try:
            for context, name in context_references(expression):
                refs.add((context, name.lower()))
        except ExpressionError as e:
            errors.append(f"invalid expression '{expression.strip()}': {e}")
    return refs, errors


def find_undeclared_references(template) -> List[str]:
    """
    Find consumed parameters that the template does not declare.

    Args:
        template: Parsed workflow or action template

    Returns:
        List of problems (empty if every ``inputs.*``/``secrets.*`` is declared)
    """
    refs, problems = _references(template)
    inputs = {name.lower() for name in template.inputs}
    secrets = {name.lower() for name in template.secrets}

    for context, name in sorted(refs):
        if context == "inputs" and name not in inputs:
            problems.append(f"'inputs.{name}' is not a declared input")
        elif context == "secrets" and name not in secrets and name not in BUILTIN_SECRETS:
            problems.append(f"'secrets.{name}' is not a declared secret")

    return problems


def find_unused_declarations(template) -> List[str]:
    """Find declared inputs and secrets that nothing consumes."""
    refs, _ = _references(template)
    warnings = []

    for name in template.inputs:
        if ("inputs", name.lower()) not in refs:
            warnings.append(f"Input '{name}' is declared but never used")

    for name in template.secrets:
        if ("secrets", name.lower()) not in refs:
            warnings.append(f"Secret '{name}' is declared but never used")

    return warnings


def find_unpinned_actions(template) -> List[str]:
    """Find external action references without an ``@ref``."""
    warnings = []
    for job_id, step in template.iter_steps():
        uses = step.uses
        if not uses or uses.startswith(("./", "docker://")):
            continue
        if "@" not in uses:
            where = f"job '{job_id}'" if job_id else "runs"
            warnings.append(f"Action '{uses}' in {where} is not pinned to a version")
    return warnings


def find_broad_permissions(template) -> List[str]:
    """Find ``write-all`` grants at workflow or job level."""
    warnings = []
    if template.permissions == "write-all":
        warnings.append("Workflow grants write-all permissions")
    for job_id, job in getattr(template, "jobs", {}).items():
        if job.permissions == "write-all":
            warnings.append(f"Job '{job_id}' grants write-all permissions")
    return warnings


def find_undocumented_inputs(template) -> List[str]:
    return [
        f"Input '{name}' has no description"
        for name, spec in template.inputs.items()
        if not spec.description.strip()
    ]


def lint_template(template) -> List[str]:
    """
    Lint a template and return a list of warnings (not errors).

    Args:
        template: Template to lint

    Returns:
        List of warning messages (empty if no warnings)
    """
    warnings = []
    warnings.extend(find_unpinned_actions(template))
    warnings.extend(find_unused_declarations(template))
    warnings.extend(find_broad_permissions(template))
    warnings.extend(find_undocumented_inputs(template))
    return warnings
