"""
Manifest loader for workflow and composite action templates.

Loads, validates and re-serializes the YAML manifests that make up the
catalog.
"""

import re
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from checks import find_undeclared_references
from template_models import ActionTemplate, Template, WorkflowTemplate

ACTION_FILENAMES = ("action.yml", "action.yaml")

_BOOL_TAG = "tag:yaml.org,2002:bool"
# YAML 1.2 booleans: `on`, `yes`, `no` and friends stay strings
_BOOL_RE = re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$")


class ManifestError(ValueError):
    """A manifest is not valid YAML or breaks the template schema."""


def _yaml12_resolvers(base) -> Dict[Any, list]:
    return {
        first: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
        for first, resolvers in base.yaml_implicit_resolvers.items()
    }


class ManifestLoader(yaml.SafeLoader):
    """SafeLoader with YAML 1.2 booleans that rejects duplicate keys."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            self.flatten_mapping(node)
            seen = set()
            for key_node, _ in node.value:
                key = self.construct_object(key_node, deep=deep)
                try:
                    duplicate = key in seen
                except TypeError:
                    continue
                if duplicate:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping", node.start_mark,
                        f"found duplicate key {key!r}", key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


class ManifestDumper(yaml.SafeDumper):
    """SafeDumper that writes `on:` unquoted and multi-line strings as blocks."""


def _represent_str(dumper, data):
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


for _cls in (ManifestLoader, ManifestDumper):
    _cls.yaml_implicit_resolvers = _yaml12_resolvers(yaml.SafeLoader)
    _cls.add_implicit_resolver(_BOOL_TAG, _BOOL_RE, list("tTfF"))

ManifestDumper.add_representer(str, _represent_str)


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"])
        problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(problems)


def _check_unique_names(template: Template, source: str) -> None:
    """Input and secret names are case-insensitive on the runner."""
    for label, names in (("input", template.inputs), ("secret", template.secrets)):
        seen: Dict[str, str] = {}
        for name in names:
            lowered = name.lower()
            if lowered in seen:
                raise ManifestError(
                    f"{source}: {label} '{name}' duplicates '{seen[lowered]}' (names are case-insensitive)"
                )
            seen[lowered] = name


def template_from_dict(data: Dict[str, Any], key: str = "", source: str = "<dict>") -> Template:
    """
    Create a template from a dictionary (loaded from YAML).

    Args:
        data: Dictionary from a manifest file
        key: Registry key (file stem or action directory name)
        source: Where the data came from, for error messages

    Returns:
        WorkflowTemplate or ActionTemplate instance

    Raises:
        ManifestError: If the manifest breaks the template schema
    """
    if "runs" in data:
        model = ActionTemplate
    elif "jobs" in data:
        model = WorkflowTemplate
    else:
        raise ManifestError(
            f"{source}: not a reusable workflow ('jobs') or composite action ('runs')"
        )

    try:
        template = model.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"{source}: {_format_validation_error(e)}") from e

    template.with_key(key or _slug(template.name))
    _check_unique_names(template, source)

    problems = find_undeclared_references(template)
    if problems:
        raise ManifestError(f"{source}: " + "; ".join(problems))

    return template


def parse_manifest(text: str, key: str = "", source: str = "<string>") -> Template:
    """
    Parse manifest YAML text into a template.

    Raises:
        ManifestError: If the YAML is malformed or the manifest is invalid
    """
    try:
        data = yaml.load(text, Loader=ManifestLoader)
    except yaml.YAMLError as e:
        raise ManifestError(f"{source}: invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"{source}: manifest must contain a YAML mapping")

    return template_from_dict(data, key=key, source=source)


def template_key(path: Path) -> str:
    """Registry key for a manifest path: the action directory or the workflow file stem."""
    if path.name in ACTION_FILENAMES:
        return path.parent.name
    return path.stem


def load_manifest(file_path) -> Template:
    """
    Load a template from a YAML manifest file.

    Args:
        file_path: Path to a workflow ``.yml`` or an ``action.yml``

    Returns:
        WorkflowTemplate or ActionTemplate instance

    Raises:
        FileNotFoundError: If file doesn't exist
        ManifestError: If the manifest is invalid
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {file_path}")

    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()

    return parse_manifest(text, key=template_key(path), source=str(path))


def dump_manifest(template: Template) -> str:
    """Serialize a template back to YAML, keeping declaration order."""
    return yaml.dump(
        template.to_dict(),
        Dumper=ManifestDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=4096,
    )
