"""
Template registries.

Holds the named workflow and composite action templates of the catalog,
validates a caller's ``with:``/``secrets:`` maps against a template's
declarations, and resolves ``owner/repo/path@ref`` references.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional

import catalog_config
from expressions import to_string
from manifest_loader import ACTION_FILENAMES, dump_manifest, load_manifest
from template_engine import RenderedTemplate, render_template
from template_models import ActionTemplate, Template, WorkflowTemplate, accepts_value, is_expression

logger = logging.getLogger(__name__)


class InvocationError(ValueError):
    """A caller's invocation does not satisfy the template's declarations."""

    def __init__(self, template: str, message: str, names: Iterable[str] = ()):
        super().__init__(f"{template}: {message}")
        self.template = template
        self.names = list(names)


class UnknownTemplateError(InvocationError):
    pass


class UnresolvableReferenceError(InvocationError):
    pass


class UnknownInputError(InvocationError):
    pass


class MissingInputError(InvocationError):
    pass


class InputTypeError(InvocationError):
    pass


class UnknownSecretError(InvocationError):
    pass


class MissingSecretError(InvocationError):
    pass


@dataclass
class Invocation:
    """A validated call: the effective inputs and secrets passed to a template."""

    template: Template
    inputs: dict[str, Any]
    secrets: dict[str, str]
    ref: Optional[str] = None
    # Omitted inputs whose declared default is an expression, e.g. ${{ github.token }}
    expression_defaults: list[str] = field(default_factory=list)

    def render(self, context: Optional[Mapping[str, Any]] = None) -> RenderedTemplate:
        return render_template(
            self.template, self.inputs, self.secrets, dict(context or {}), self.ref,
            expression_defaults=self.expression_defaults,
        )


def _names(names: Iterable[str]) -> str:
    return ", ".join(f"'{name}'" for name in names)


def _match_declared(declared: Iterable[str], supplied: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Match supplied keys to declared names case-insensitively."""
    by_lower = {name.lower(): name for name in declared}
    matched: dict[str, Any] = {}
    unknown: list[str] = []
    for key, value in supplied.items():
        name = by_lower.get(str(key).lower())
        if name is None:
            unknown.append(key)
        else:
            matched[name] = value
    return matched, unknown


class TemplateRegistry(ABC):
    """Named, parameterized templates of one kind; see WorkflowRegistry and ActionRegistry."""

    kind = ""
    template_class: type = object

    def __init__(self, templates: Iterable[Template] = ()):
        self._templates: dict[str, Template] = {}
        for template in templates:
            self.add(template)

    def add(self, template: Template) -> None:
        if not isinstance(template, self.template_class):
            raise TypeError(f"{type(self).__name__} only holds {self.kind} templates")
        if template.key in self._templates:
            raise ValueError(f"Duplicate {self.kind} template: {template.key}")
        self._templates[template.key] = template

    def get(self, name: str) -> Template:
        try:
            return self._templates[name]
        except KeyError:
            raise UnknownTemplateError(name, f"no {self.kind} template named '{name}'") from None

    def names(self) -> list[str]:
        return list(self._templates)

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __iter__(self) -> Iterator[Template]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    # --- Invocation contract ---

    def _convert(self, template: Template, name: str, value: Any) -> Any:
        input_type = template.inputs[name].type
        if not accepts_value(input_type, value):
            expected = input_type or "string, number or boolean"
            raise InputTypeError(
                template.key,
                f"input '{name}' expects {expected}, got {type(value).__name__} {value!r}",
                [name],
            )
        if input_type in (None, "string"):
            return to_string(value)
        return value

    def resolve_inputs(self, name: str, supplied: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """
        Validate a ``with:`` map and return the effective value of every input.

        Raises:
            UnknownInputError: If an input is not declared by the template
            MissingInputError: If a required input has no value
            InputTypeError: If a value does not match the declared type
        """
        template = self.get(name)
        matched, unknown = _match_declared(template.inputs, supplied or {})
        if unknown:
            raise UnknownInputError(template.key, f"unknown input(s) {_names(unknown)}", unknown)

        missing = [
            input_name for input_name, spec in template.inputs.items()
            if spec.required and matched.get(input_name) is None
        ]
        if missing:
            raise MissingInputError(template.key, f"missing required input(s) {_names(missing)}", missing)

        resolved: dict[str, Any] = {}
        for input_name, spec in template.inputs.items():
            value = matched.get(input_name)
            if value is None:
                value = spec.effective_default()
                # Expression defaults are rendered later, against the run's contexts
                if is_expression(value):
                    resolved[input_name] = value
                    continue
            resolved[input_name] = self._convert(template, input_name, value)
        return resolved

    def expression_defaults(self, name: str, supplied: Optional[Mapping[str, Any]] = None) -> list[str]:
        """Inputs the caller omitted whose declared default is a ``${{ }}`` expression."""
        template = self.get(name)
        matched, _ = _match_declared(template.inputs, supplied or {})
        return [
            input_name for input_name, spec in template.inputs.items()
            if matched.get(input_name) is None and is_expression(spec.default)
        ]

    def resolve_secrets(
        self,
        name: str,
        supplied: Optional[Mapping[str, Any]] = None,
        inherit: bool = False,
    ) -> dict[str, str]:
        """
        Validate a ``secrets:`` map.

        With ``inherit`` the map is the caller's whole secret store: keys the
        template does not declare are ignored instead of rejected.

        Raises:
            UnknownSecretError: If a secret is not declared by the template
            MissingSecretError: If a required secret has no value
            InputTypeError: If a secret value is not a string
        """
        template = self.get(name)
        matched, unknown = _match_declared(template.secrets, supplied or {})
        if unknown and not inherit:
            raise UnknownSecretError(template.key, f"unknown secret(s) {_names(unknown)}", unknown)

        missing = [
            secret_name for secret_name, spec in template.secrets.items()
            if spec.required and not matched.get(secret_name)
        ]
        if missing:
            raise MissingSecretError(template.key, f"missing required secret(s) {_names(missing)}", missing)

        for secret_name, value in matched.items():
            if not isinstance(value, str):
                raise InputTypeError(
                    template.key, f"secret '{secret_name}' must be a string", [secret_name]
                )
        return matched

    def validate(
        self,
        name: str,
        with_: Optional[Mapping[str, Any]] = None,
        secrets: Optional[Mapping[str, Any]] = None,
        inherit_secrets: bool = False,
        ref: Optional[str] = None,
    ) -> Invocation:
        """Validate a caller's parameters; raises an InvocationError subclass on failure."""
        template = self.get(name)
        inputs = self.resolve_inputs(name, with_)
        resolved_secrets = self.resolve_secrets(name, secrets, inherit=inherit_secrets)
        return Invocation(
            template=template,
            inputs=inputs,
            secrets=resolved_secrets,
            ref=ref,
            expression_defaults=self.expression_defaults(name, with_),
        )

    def render(
        self,
        name: str,
        with_: Optional[Mapping[str, Any]] = None,
        secrets: Optional[Mapping[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
        inherit_secrets: bool = False,
        ref: Optional[str] = None,
    ) -> RenderedTemplate:
        """Validate, then resolve the template into its step sequence."""
        invocation = self.validate(name, with_, secrets, inherit_secrets=inherit_secrets, ref=ref)
        return invocation.render(context)

    # --- References ---

    @abstractmethod
    def reference_path(self, name: str) -> str:
        """Path of the template inside the published repository."""

    def reference(self, name: str, ref: Optional[str] = None, repository: Optional[str] = None) -> str:
        """The ``uses:`` value a consumer writes to call this template."""
        self.get(name)
        repository = repository or catalog_config.REPOSITORY
        return f"{repository}/{self.reference_path(name)}@{ref or catalog_config.DEFAULT_REF}"


class WorkflowRegistry(TemplateRegistry):
    """Reusable workflows, stored as ``<dir>/<name>.yml``."""

    kind = "workflow"
    template_class = WorkflowTemplate

    def reference_path(self, name: str) -> str:
        return f"{catalog_config.WORKFLOWS_PATH}/{name}.yml"

    @classmethod
    def from_directory(cls, directory) -> "WorkflowRegistry":
        registry = cls()
        for path in sorted(Path(directory).glob("*.y*ml")):
            registry.add(load_manifest(path))
        logger.info(f"Loaded {len(registry)} workflow templates from {directory}")
        return registry


class ActionRegistry(TemplateRegistry):
    """Composite actions, stored as ``<dir>/<name>/action.yml``."""

    kind = "action"
    template_class = ActionTemplate

    def reference_path(self, name: str) -> str:
        return f"{catalog_config.ACTIONS_PATH}/{name}"

    @classmethod
    def from_directory(cls, directory) -> "ActionRegistry":
        registry = cls()
        for action_dir in sorted(p for p in Path(directory).iterdir() if p.is_dir()):
            for filename in ACTION_FILENAMES:
                path = action_dir / filename
                if path.exists():
                    registry.add(load_manifest(path))
                    break
        logger.info(f"Loaded {len(registry)} composite actions from {directory}")
        return registry


@dataclass
class TemplateReference:
    """A ``uses:`` value: ``owner/repo/path@ref`` or a local ``./path``."""

    path: str
    repository: Optional[str] = None
    ref: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.repository is None

    @classmethod
    def parse(cls, text: str) -> "TemplateReference":
        text = text.strip()
        if text.startswith("./"):
            if "@" in text:
                raise UnresolvableReferenceError(text, "local references cannot pin a ref")
            return cls(path=text[2:].rstrip("/"))

        head, sep, ref = text.partition("@")
        if not sep or not ref:
            raise UnresolvableReferenceError(text, "remote references need an @ref (tag, branch or commit)")

        parts = head.strip("/").split("/")
        if len(parts) < 3:
            raise UnresolvableReferenceError(text, "expected owner/repo/path@ref")
        return cls(path="/".join(parts[2:]), repository="/".join(parts[:2]), ref=ref)

    def __str__(self) -> str:
        if self.is_local:
            return f"./{self.path}"
        return f"{self.repository}/{self.path}@{self.ref}"


class Catalog:
    """Both registries, addressed by name or by reference."""

    def __init__(self, workflows: WorkflowRegistry, actions: ActionRegistry, repository: Optional[str] = None):
        self.workflows = workflows
        self.actions = actions
        self.repository = repository or catalog_config.REPOSITORY

    @classmethod
    def load(cls, directory=None) -> "Catalog":
        root = Path(directory or catalog_config.CATALOG_DIR)
        workflows = WorkflowRegistry.from_directory(root / "workflows")
        actions = ActionRegistry.from_directory(root / "actions")
        return cls(workflows, actions)

    def registry(self, kind: str) -> TemplateRegistry:
        if kind == "workflow":
            return self.workflows
        if kind == "action":
            return self.actions
        raise ValueError(f"Unknown template kind: {kind}")

    def registry_for(self, name: str) -> TemplateRegistry:
        """Registry holding ``name``; workflows win if both kinds use the name."""
        if name in self.workflows:
            return self.workflows
        if name in self.actions:
            return self.actions
        raise UnknownTemplateError(name, f"no template named '{name}'")

    def get(self, name: str) -> Template:
        return self.registry_for(name).get(name)

    def __iter__(self) -> Iterator[Template]:
        yield from self.workflows
        yield from self.actions

    def __len__(self) -> int:
        return len(self.workflows) + len(self.actions)

    def resolve(self, reference: str | TemplateReference) -> tuple[TemplateRegistry, str, Optional[str]]:
        """
        Resolve a ``uses:`` reference to (registry, template name, ref).

        Raises:
            UnresolvableReferenceError: If the reference names no template of this catalog
        """
        if isinstance(reference, str):
            reference = TemplateReference.parse(reference)

        if not reference.is_local and reference.repository.lower() != self.repository.lower():
            raise UnresolvableReferenceError(
                str(reference), f"repository '{reference.repository}' is not {self.repository}"
            )

        path = reference.path
        workflows_prefix = catalog_config.WORKFLOWS_PATH.strip("/") + "/"
        actions_prefix = catalog_config.ACTIONS_PATH.strip("/") + "/"

        if path.startswith(workflows_prefix):
            filename = path[len(workflows_prefix):]
            name, dot, ext = filename.rpartition(".")
            if dot and ext in ("yml", "yaml") and "/" not in name and name in self.workflows:
                return self.workflows, name, reference.ref
        elif path.startswith(actions_prefix):
            name = path[len(actions_prefix):].rstrip("/")
            for filename in ACTION_FILENAMES:
                if name.endswith("/" + filename):
                    name = name[: -len(filename) - 1]
            if name in self.actions:
                return self.actions, name, reference.ref

        raise UnresolvableReferenceError(str(reference), f"no template at '{path}'")

    def export(self, destination) -> list[Path]:
        """
        Write the catalog in the layout consumers reference it by.

        Workflows go to ``<destination>/<WORKFLOWS_PATH>/<name>.yml`` and
        actions to ``<destination>/<ACTIONS_PATH>/<name>/action.yml``.
        """
        root = Path(destination)
        written = []
        for template in self:
            registry = self.registry(template.kind)
            path = root / registry.reference_path(template.key)
            if template.kind == "action":
                path = path / "action.yml"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(dump_manifest(template), encoding="utf-8")
            logger.info(f"Wrote {path}")
            written.append(path)
        return written

    def invoke(
        self,
        reference: str,
        with_: Optional[Mapping[str, Any]] = None,
        secrets: Optional[Mapping[str, Any]] = None,
        inherit_secrets: bool = False,
    ) -> Invocation:
        """Validate an invocation made the way consumers make it: by reference."""
        registry, name, ref = self.resolve(reference)
        return registry.validate(name, with_, secrets, inherit_secrets=inherit_secrets, ref=ref)
