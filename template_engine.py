"""
Template Render Engine: resolves an invocation into the plan the runner executes.

No runner needed: walks the jobs and steps of a template, substitutes the
caller's inputs and secrets into every parameter, expands matrices and
evaluates ``if:`` conditions that can be decided up front.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from expressions import PartialContext, evaluate_condition, render_value, to_string
from template_models import ActionTemplate, Job, Step, WorkflowTemplate, job_order

logger = logging.getLogger(__name__)

SECRET_MASK = "***"

# Caller-supplied contexts; anything else is runner-only
CALLER_CONTEXTS = ("github", "vars", "runner")


@dataclass
class RenderedStep:
    index: int
    label: str
    id: Optional[str] = None
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: dict[str, Any] = field(default_factory=dict)
    env: dict[str, Any] = field(default_factory=dict)
    shell: Optional[str] = None
    working_directory: Optional[str] = None
    condition: Optional[str] = None  # left for the runner to decide
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"index": self.index, "name": self.label}
        for key, value in (
            ("id", self.id),
            ("uses", self.uses),
            ("run", self.run),
            ("with", self.with_),
            ("env", self.env),
            ("shell", self.shell),
            ("working-directory", self.working_directory),
            ("if", self.condition),
        ):
            if value not in (None, {}):
                data[key] = value
        data["skipped"] = self.skipped
        return data


@dataclass
class RenderedJob:
    job_id: str
    name: str
    runs_on: Any = None
    matrix: Optional[dict[str, Any]] = None
    needs: list[str] = field(default_factory=list)
    permissions: Any = None
    condition: Optional[str] = None
    skipped: bool = False
    steps: list[RenderedStep] = field(default_factory=list)

    @property
    def executed_steps(self) -> list[RenderedStep]:
        if self.skipped:
            return []
        return [step for step in self.steps if not step.skipped]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.job_id, "name": self.name}
        if self.runs_on is not None:
            data["runs-on"] = self.runs_on
        if self.matrix is not None:
            data["matrix"] = self.matrix
        if self.needs:
            data["needs"] = self.needs
        if self.permissions is not None:
            data["permissions"] = self.permissions
        if self.condition is not None:
            data["if"] = self.condition
        data["skipped"] = self.skipped
        data["steps"] = [step.to_dict() for step in self.steps]
        return data


@dataclass
class RenderedTemplate:
    key: str
    name: str
    kind: str
    inputs: dict[str, Any]
    jobs: list[RenderedJob]
    ref: Optional[str] = None
    secret_values: list[str] = field(default_factory=list, repr=False)

    @property
    def steps(self) -> list[RenderedStep]:
        """All steps that will run, in execution order."""
        return [step for job in self.jobs for step in job.executed_steps]

    def job(self, job_id: str) -> list[RenderedJob]:
        """All instances of a job (one per matrix combination)."""
        return [job for job in self.jobs if job.job_id == job_id]

    def to_dict(self, mask_secrets: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "template": self.key,
            "name": self.name,
            "kind": self.kind,
        }
        if self.ref:
            data["ref"] = self.ref
        data["inputs"] = self.inputs
        data["jobs"] = [job.to_dict() for job in self.jobs]
        if mask_secrets:
            return _mask(data, [s for s in self.secret_values if s])
        return data


def _mask(value: Any, secrets: list[str]) -> Any:
    if isinstance(value, str):
        for secret in secrets:
            value = value.replace(secret, SECRET_MASK)
        return value
    if isinstance(value, dict):
        return {k: _mask(v, secrets) for k, v in value.items()}
    if isinstance(value, list):
        return [_mask(item, secrets) for item in value]
    return value


def _condition_text(condition: Any) -> str:
    return condition if isinstance(condition, str) else to_string(condition)


def _matches(combo: dict[str, Any], entry: dict[str, Any]) -> bool:
    return all(combo.get(k) == v for k, v in entry.items())


def expand_matrix(strategy: Optional[dict[str, Any]], contexts: dict[str, Any]) -> list[Optional[dict[str, Any]]]:
    """
    Expand ``strategy.matrix`` into its combinations, in declaration order.

    Returns ``[None]`` when the job has no matrix or the matrix depends on
    information only the runner has.
    """
    if not strategy or "matrix" not in strategy:
        return [None]

    matrix = render_value(strategy["matrix"], contexts)
    if not isinstance(matrix, dict):
        logger.debug(f"Matrix is not resolvable before the run: {matrix!r}")
        return [None]

    include = matrix.get("include") or []
    exclude = matrix.get("exclude") or []
    axes = {k: v for k, v in matrix.items() if k not in ("include", "exclude")}

    for name, values in axes.items():
        if isinstance(values, str) and "${{" in values:
            logger.debug(f"Matrix axis '{name}' is not resolvable before the run")
            return [None]
        if not isinstance(values, list):
            raise ValueError(f"Matrix axis '{name}' must be a list, got {values!r}")

    combos = [dict(zip(axes, values)) for values in itertools.product(*axes.values())] if axes else []
    combos = [combo for combo in combos if not any(_matches(combo, entry) for entry in exclude)]

    originals = list(combos)
    for entry in include:
        extended = False
        for combo in originals:
            if all(combo.get(k) == v for k, v in entry.items() if k in axes):
                combo.update(entry)
                extended = True
        if not extended:
            combos.append(dict(entry))

    if not combos:
        logger.warning("Matrix produced no combinations")
    return combos


class TemplateRenderer:
    """
    Renders one validated invocation of a template.

    ``expression_defaults`` names the inputs that took a ``${{ }}`` default;
    only those are evaluated. Caller values are used as given.
    """

    def __init__(
        self,
        template: WorkflowTemplate | ActionTemplate,
        inputs: dict[str, Any],
        secrets: dict[str, str] | None = None,
        context: dict[str, Any] | None = None,
        ref: str | None = None,
        expression_defaults: Iterable[str] = (),
    ):
        self.template = template
        self.secrets = secrets or {}
        self.context = context or {}
        self.ref = ref
        self.expression_defaults = set(expression_defaults)
        self.contexts = self._base_contexts(inputs)

    def _base_contexts(self, inputs: dict[str, Any]) -> dict[str, Any]:
        contexts: dict[str, Any] = {}
        for name in CALLER_CONTEXTS:
            if name in self.context:
                contexts[name] = PartialContext(self.context[name])

        # Declared-but-unset secrets are empty; undeclared ones are runner-only
        secrets = PartialContext({name: "" for name in self.template.secrets})
        secrets.update(self.secrets)
        contexts["secrets"] = secrets

        # Input defaults may be expressions themselves, e.g. ${{ github.token }}
        contexts["inputs"] = {
            name: render_value(value, contexts) if name in self.expression_defaults else value
            for name, value in inputs.items()
        }

        env = render_value(getattr(self.template, "env", {}) or {}, contexts)
        contexts["env"] = PartialContext(env)
        return contexts

    def render(self) -> RenderedTemplate:
        if isinstance(self.template, ActionTemplate):
            jobs = [self._render_composite()]
        else:
            jobs = self._render_workflow()

        return RenderedTemplate(
            key=self.template.key,
            name=self.template.name,
            kind=self.template.kind,
            inputs=self.contexts["inputs"],
            jobs=jobs,
            ref=self.ref,
            secret_values=list(self.secrets.values()),
        )

    def _render_composite(self) -> RenderedJob:
        job = RenderedJob(job_id=self.template.key, name=self.template.name)
        job.steps = self._render_steps(self.template.runs.steps, self.contexts, None)
        return job

    def _render_workflow(self) -> list[RenderedJob]:
        rendered: list[RenderedJob] = []
        skipped_jobs: set[str] = set()

        for job_id in job_order(self.template.jobs):
            job = self.template.jobs[job_id]
            logger.debug(f"Rendering job {job_id}")

            if any(dep in skipped_jobs for dep in job.dependencies):
                skipped_jobs.add(job_id)
                rendered.append(self._skipped_job(job_id, job, reason="a needed job is skipped"))
                continue

            outcome = evaluate_condition(job.if_, self.contexts)
            if outcome is False:
                skipped_jobs.add(job_id)
                rendered.append(self._skipped_job(job_id, job, reason=f"if: {job.if_}"))
                continue

            for combo in expand_matrix(job.strategy, self.contexts):
                rendered.append(self._render_job(job_id, job, combo, outcome))

        return rendered

    def _skipped_job(self, job_id: str, job: Job, reason: str) -> RenderedJob:
        logger.debug(f"Skipping job {job_id} ({reason})")
        return RenderedJob(
            job_id=job_id,
            name=job.name or job_id,
            needs=job.dependencies,
            skipped=True,
            steps=[
                RenderedStep(index=i, label=step.label, id=step.id, uses=step.uses, run=step.run, skipped=True)
                for i, step in enumerate(job.steps, start=1)
            ],
        )

    def _render_job(self, job_id: str, job: Job, combo: Optional[dict[str, Any]], outcome: Optional[bool]) -> RenderedJob:
        contexts = dict(self.contexts)
        if combo is not None:
            contexts["matrix"] = combo

        env = PartialContext(contexts["env"])
        env.update(render_value(job.env, contexts))
        contexts["env"] = env

        name = render_value(job.name, contexts) if job.name else job_id
        defaults = render_value(job.defaults or self.template.defaults or {}, contexts)
        working_directory = (defaults.get("run") or {}).get("working-directory")

        return RenderedJob(
            job_id=job_id,
            name=to_string(name),
            runs_on=render_value(job.runs_on, contexts),
            matrix=combo,
            needs=job.dependencies,
            permissions=job.permissions if job.permissions is not None else self.template.permissions,
            condition=_condition_text(job.if_) if outcome is None else None,
            steps=self._render_steps(job.steps, contexts, working_directory),
        )

    def _render_steps(self, steps: list[Step], contexts: dict[str, Any], working_directory: Optional[str]) -> list[RenderedStep]:
        rendered = []
        for index, step in enumerate(steps, start=1):
            step_contexts = dict(contexts)
            env = PartialContext(contexts.get("env", {}))
            env.update(render_value(step.env, step_contexts))
            step_contexts["env"] = env

            outcome = evaluate_condition(step.if_, step_contexts)
            if outcome is False:
                logger.debug(f"[Step {index}] {step.label}: skipped (if: {step.if_})")
            elif outcome is None:
                logger.debug(f"[Step {index}] {step.label}: deferred to the runner (if: {step.if_})")

            run = render_value(step.run, step_contexts) if step.run else None
            step_dir = step.working_directory or (working_directory if step.run else None)

            rendered.append(RenderedStep(
                index=index,
                label=to_string(render_value(step.label, step_contexts)),
                id=step.id,
                uses=step.uses,
                run=to_string(run) if run is not None else None,
                with_=render_value(step.with_, step_contexts),
                env=render_value(step.env, step_contexts),
                shell=step.shell,
                working_directory=to_string(render_value(step_dir, step_contexts)) if step_dir else None,
                condition=_condition_text(step.if_) if outcome is None else None,
                skipped=outcome is False,
            ))
        return rendered


def render_template(
    template: WorkflowTemplate | ActionTemplate,
    inputs: dict[str, Any],
    secrets: dict[str, str] | None = None,
    context: dict[str, Any] | None = None,
    ref: str | None = None,
    expression_defaults: Iterable[str] = (),
) -> RenderedTemplate:
    """Render a template whose inputs and secrets were already validated."""
    return TemplateRenderer(template, inputs, secrets, context, ref, expression_defaults).render()
