"""
Documentation for the catalog: usage snippets and a Markdown reference.
"""

from __future__ import annotations

from typing import Any, Optional

import yaml

from expressions import to_string
from manifest_loader import ManifestDumper


def _placeholder(name: str, input_type: Optional[str]) -> Any:
    if input_type == "boolean":
        return False
    if input_type == "number":
        return 0
    return f"<{name}>"


def _secret_expression(name: str) -> str:
    return "${{ secrets." + name.upper().replace("-", "_") + " }}"


def usage_snippet(catalog, name: str, ref: Optional[str] = None, kind: Optional[str] = None) -> str:
    """
    Caller YAML invoking a template with every required input filled in.

    Workflows are called from a job (``jobs.<name>.uses``), composite
    actions from a step (``steps[].uses``). Without ``kind`` the name is
    looked up in both registries.
    """
    registry = catalog.registry(kind) if kind else catalog.registry_for(name)
    template = registry.get(name)
    reference = registry.reference(name, ref, catalog.repository)

    with_ = {
        input_name: _placeholder(input_name, spec.type)
        for input_name, spec in template.inputs.items()
        if spec.required
    }

    call: dict[str, Any] = {"uses": reference}
    if with_:
        call["with"] = with_

    if template.kind == "workflow":
        if template.secrets:
            call["secrets"] = {secret: _secret_expression(secret) for secret in template.secrets}
        data: dict[str, Any] = {"jobs": {name: call}}
    else:
        data = {"steps": [{"name": template.name, **call}]}

    return yaml.dump(data, Dumper=ManifestDumper, sort_keys=False, default_flow_style=False, width=4096)


def _cell(value: Any) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ")


def _default(value: Any) -> str:
    if value is None:
        return ""
    text = to_string(value)
    return f"`{_cell(text)}`" if text else "`''`"


def _inputs_table(template) -> list[str]:
    typed = template.kind == "workflow"
    header = "| Name | Type | Required | Default | Description |" if typed else "| Name | Required | Default | Description |"
    lines = [header, "|" + "---|" * (5 if typed else 4)]
    for name, spec in template.inputs.items():
        cells = [f"`{name}`"]
        if typed:
            cells.append(spec.type)
        cells += ["yes" if spec.required else "no", _default(spec.default), _cell(spec.description)]
        lines.append("| " + " | ".join(cells) + " |")
    return lines


def template_doc(catalog, template, ref: Optional[str] = None) -> str:
    """Markdown section documenting one template."""
    lines = [f"### {template.name} (`{template.key}`)", ""]
    description = getattr(template, "description", "")
    if description:
        lines += [description, ""]

    if template.inputs:
        lines += ["**Inputs**", ""] + _inputs_table(template) + [""]

    if template.secrets:
        lines += ["**Secrets**", "", "| Name | Required | Description |", "|---|---|---|"]
        for name, spec in template.secrets.items():
            lines.append(f"| `{name}` | {'yes' if spec.required else 'no'} | {_cell(spec.description)} |")
        lines.append("")

    if template.outputs:
        lines += ["**Outputs**", "", "| Name | Description |", "|---|---|"]
        for name, spec in template.outputs.items():
            lines.append(f"| `{name}` | {_cell(spec.description)} |")
        lines.append("")

    if template.permissions:
        if isinstance(template.permissions, str):
            grants = template.permissions
        else:
            grants = ", ".join(f"`{scope}: {level}`" for scope, level in template.permissions.items())
        lines += [f"**Permissions:** {grants}", ""]

    lines += ["**Usage**", "", "```yaml", usage_snippet(catalog, template.key, ref, template.kind).rstrip(), "```", ""]
    return "\n".join(lines)


def render_docs(catalog, ref: Optional[str] = None) -> str:
    """Markdown reference for every template in the catalog."""
    sections = ["# Template reference", ""]
    sections += ["## Reusable workflows", ""]
    sections += [template_doc(catalog, template, ref) for template in catalog.workflows]
    sections += ["## Composite actions", ""]
    sections += [template_doc(catalog, template, ref) for template in catalog.actions]
    return "\n".join(sections).rstrip() + "\n"
