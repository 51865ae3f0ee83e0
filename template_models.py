"""
Template data models.

Defines the structure of reusable workflow manifests
(``.github/workflows/*.yml`` with a ``workflow_call`` trigger) and
composite action manifests (``action.yml``).
"""

from __future__ import annotations

from typing import Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

INPUT_TYPES = ("string", "boolean", "number")

PERMISSION_SCOPES = {
    "actions", "attestations", "checks", "contents", "deployments",
    "discussions", "id-token", "issues", "models", "packages", "pages",
    "pull-requests", "repository-projects", "security-events", "statuses",
}
PERMISSION_LEVELS = {"read", "write", "none"}
PERMISSION_SHORTHANDS = {"read-all", "write-all"}


def is_expression(value: Any) -> bool:
    return isinstance(value, str) and "${{" in value


def accepts_value(input_type: Optional[str], value: Any) -> bool:
    """
    Check whether ``value`` is acceptable for an input of ``input_type``.

    ``None`` means an untyped composite action input, which takes any
    scalar. Booleans are never numbers or strings.
    """
    if input_type is None:
        return isinstance(value, (str, bool, int, float))
    if input_type == "boolean":
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if input_type == "number":
        return isinstance(value, (int, float))
    return isinstance(value, (str, int, float))


def empty_value(input_type: Optional[str]) -> Any:
    """Value an omitted input takes when it declares no default."""
    if input_type == "boolean":
        return False
    if input_type == "number":
        return 0
    return ""


def check_permissions(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, str):
        if value not in PERMISSION_SHORTHANDS:
            raise ValueError(f"Invalid permissions shorthand: {value}")
        return value
    for scope, level in value.items():
        if scope not in PERMISSION_SCOPES:
            raise ValueError(f"Unknown permission scope: {scope}")
        if level not in PERMISSION_LEVELS:
            raise ValueError(f"Invalid permission level for {scope}: {level}")
    return value


def job_order(jobs: dict[str, "Job"]) -> list[str]:
    """Order jobs so dependencies come first; ties keep declaration order."""
    ordered: list[str] = []
    remaining = list(jobs)
    while remaining:
        ready = [job_id for job_id in remaining if all(dep in ordered for dep in jobs[job_id].dependencies)]
        if not ready:
            raise ValueError(f"job dependency cycle between: {', '.join(remaining)}")
        ordered.extend(ready)
        remaining = [job_id for job_id in remaining if job_id not in ready]
    return ordered


class ManifestModel(BaseModel):
    """Base for manifest nodes: keeps unknown keys and accepts YAML key names."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class TemplateModel(ManifestModel):
    """Base for top-level manifests, which are registered under a key (file stem)."""

    kind: ClassVar[str] = ""
    _key: str = PrivateAttr(default="")

    @property
    def key(self) -> str:
        return self._key

    def with_key(self, key: str) -> "TemplateModel":
        self._key = key
        return self


class InputSpec(ManifestModel):
    description: str = ""
    type: Optional[Literal["string", "boolean", "number"]] = None
    required: bool = False
    default: Any = None

    @model_validator(mode="after")
    def default_matches_type(self) -> "InputSpec":
        if self.default is None or is_expression(self.default):
            return self
        if not accepts_value(self.type, self.default):
            raise ValueError(
                f"default {self.default!r} is not a valid {self.type or 'scalar'} value"
            )
        return self

    def effective_default(self) -> Any:
        if self.default is not None:
            return self.default
        return empty_value(self.type)


class SecretSpec(ManifestModel):
    description: str = ""
    required: bool = False


class OutputSpec(ManifestModel):
    description: str = ""
    value: Optional[str] = None


class Step(ManifestModel):
    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: dict[str, Any] = Field(default_factory=dict, alias="with")
    env: dict[str, Any] = Field(default_factory=dict)
    if_: Optional[Union[bool, str]] = Field(default=None, alias="if")
    shell: Optional[str] = None
    working_directory: Optional[str] = Field(default=None, alias="working-directory")

    @model_validator(mode="after")
    def uses_or_run(self) -> "Step":
        if bool(self.uses) == bool(self.run):
            raise ValueError(f"{self.id or self.name or 'step'}: a step needs exactly one of 'uses' or 'run'")
        return self

    @property
    def label(self) -> str:
        return self.name or self.id or self.uses or self.run.strip().splitlines()[0]


class Job(ManifestModel):
    name: Optional[str] = None
    runs_on: Any = Field(default=None, alias="runs-on")
    needs: Union[str, list[str], None] = None
    if_: Optional[Union[bool, str]] = Field(default=None, alias="if")
    permissions: Union[str, dict[str, str], None] = None
    strategy: Optional[dict[str, Any]] = None
    env: dict[str, Any] = Field(default_factory=dict)
    defaults: Optional[dict[str, Any]] = None
    outputs: dict[str, str] = Field(default_factory=dict)
    steps: list[Step]

    @field_validator("permissions")
    @classmethod
    def valid_permissions(cls, value: Any) -> Any:
        return check_permissions(value)

    @field_validator("steps")
    @classmethod
    def has_steps(cls, steps: list[Step]) -> list[Step]:
        if not steps:
            raise ValueError("a job needs at least one step")
        return steps

    @property
    def dependencies(self) -> list[str]:
        if self.needs is None:
            return []
        if isinstance(self.needs, str):
            return [self.needs]
        return list(self.needs)


class WorkflowCall(ManifestModel):
    inputs: dict[str, InputSpec] = Field(default_factory=dict)
    secrets: dict[str, SecretSpec] = Field(default_factory=dict)
    outputs: dict[str, OutputSpec] = Field(default_factory=dict)

    @field_validator("inputs")
    @classmethod
    def inputs_are_typed(cls, inputs: dict[str, InputSpec]) -> dict[str, InputSpec]:
        for name, spec in inputs.items():
            if spec.type is None:
                raise ValueError(f"input '{name}' must declare a type ({', '.join(INPUT_TYPES)})")
        return inputs


class Triggers(ManifestModel):
    """The ``on:`` block. Other triggers (workflow_dispatch, ...) are kept as extras."""

    workflow_call: WorkflowCall

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, value: Any) -> Any:
        # `on: workflow_call` and `on: [workflow_call, ...]` are shorthands
        if isinstance(value, str):
            value = {value: None}
        elif isinstance(value, list):
            value = {trigger: None for trigger in value}
        if isinstance(value, dict) and "workflow_call" in value and value["workflow_call"] is None:
            value = {**value, "workflow_call": {}}
        return value


class WorkflowTemplate(TemplateModel):
    """A reusable workflow, invoked from a caller job with ``uses:``."""

    name: str
    on: Triggers
    permissions: Union[str, dict[str, str], None] = None
    env: dict[str, Any] = Field(default_factory=dict)
    concurrency: Any = None
    defaults: Optional[dict[str, Any]] = None
    jobs: dict[str, Job]

    kind: ClassVar[str] = "workflow"

    @field_validator("permissions")
    @classmethod
    def valid_permissions(cls, value: Any) -> Any:
        return check_permissions(value)

    @field_validator("jobs")
    @classmethod
    def valid_jobs(cls, jobs: dict[str, Job]) -> dict[str, Job]:
        if not jobs:
            raise ValueError("a workflow needs at least one job")
        for job_id, job in jobs.items():
            for dep in job.dependencies:
                if dep not in jobs:
                    raise ValueError(f"job '{job_id}' needs unknown job '{dep}'")
        job_order(jobs)
        return jobs

    @property
    def inputs(self) -> dict[str, InputSpec]:
        return self.on.workflow_call.inputs

    @property
    def secrets(self) -> dict[str, SecretSpec]:
        return self.on.workflow_call.secrets

    @property
    def outputs(self) -> dict[str, OutputSpec]:
        return self.on.workflow_call.outputs

    def iter_steps(self):
        for job_id, job in self.jobs.items():
            for step in job.steps:
                yield job_id, step


class CompositeRuns(ManifestModel):
    using: Literal["composite"]
    steps: list[Step]

    @field_validator("steps")
    @classmethod
    def run_steps_have_shell(cls, steps: list[Step]) -> list[Step]:
        if not steps:
            raise ValueError("a composite action needs at least one step")
        for step in steps:
            if step.run and not step.shell:
                raise ValueError(f"{step.label}: composite 'run' steps must set 'shell'")
        return steps


class ActionTemplate(TemplateModel):
    """A composite action, invoked as a single step with ``uses:``."""

    name: str
    description: str = ""
    author: Optional[str] = None
    inputs: dict[str, InputSpec] = Field(default_factory=dict)
    outputs: dict[str, OutputSpec] = Field(default_factory=dict)
    runs: CompositeRuns

    kind: ClassVar[str] = "action"

    @property
    def secrets(self) -> dict[str, SecretSpec]:
        return {}

    @property
    def permissions(self) -> None:
        return None

    def iter_steps(self):
        for step in self.runs.steps:
            yield None, step


Template = Union[WorkflowTemplate, ActionTemplate]
