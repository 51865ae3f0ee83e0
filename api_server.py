"""
Template Catalog API Server

FastAPI server exposing the workflow and composite action catalog over
HTTP: browse templates, fetch manifests and usage snippets, validate a
caller's parameters and preview the rendered step sequence.

Usage:
    python -m uvicorn api_server:app --host 0.0.0.0 --port 8080
    # or: python catalog.py serve
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

import catalog_config
from checks import lint_template
from expressions import ExpressionError
from manifest_loader import dump_manifest
from template_docs import usage_snippet
from template_registry import (
    Catalog,
    InvocationError,
    UnknownTemplateError,
    UnresolvableReferenceError,
)

app = FastAPI(
    title="Template Catalog API",
    description="Reusable GitHub Actions workflows and composite actions",
    version="1.0.0",
)


# --- Request models ---


class InvocationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    with_: dict[str, Any] = Field(default_factory=dict, alias="with")
    secrets: dict[str, Any] = Field(default_factory=dict)
    inherit_secrets: bool = False


class RenderRequest(InvocationRequest):
    context: dict[str, Any] = Field(default_factory=dict)


class ResolveRequest(BaseModel):
    reference: str


# --- Helpers ---


@lru_cache(maxsize=1)
def get_catalog() -> Catalog:
    return Catalog.load(catalog_config.CATALOG_DIR)


def _registry(kind: str):
    try:
        return get_catalog().registry(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown template kind: {kind}")


def _template(kind: str, name: str):
    try:
        return _registry(kind).get(name)
    except UnknownTemplateError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _error(e: Exception) -> HTTPException:
    if isinstance(e, (UnknownTemplateError, UnresolvableReferenceError)):
        return HTTPException(status_code=404, detail=str(e))
    detail: Any = str(e)
    if isinstance(e, InvocationError):
        detail = {"error": type(e).__name__, "message": str(e), "names": e.names}
    return HTTPException(status_code=422, detail=detail)


def _summary(template) -> dict:
    return {
        "name": template.key,
        "title": template.name,
        "kind": template.kind,
        "reference": get_catalog().registry(template.kind).reference(template.key),
        "required_inputs": [name for name, spec in template.inputs.items() if spec.required],
    }


# --- Endpoints ---


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "templates": len(get_catalog()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/templates")
async def list_templates(kind: Optional[str] = None):
    """List all templates, optionally of one kind."""
    templates = get_catalog() if kind is None else _registry(kind)
    return [_summary(template) for template in templates]


@app.get("/api/templates/{kind}/{name}")
async def get_template(kind: str, name: str):
    """Template declarations plus lint warnings."""
    template = _template(kind, name)
    return _summary(template) | {
        "manifest": template.to_dict(),
        "warnings": lint_template(template),
    }


@app.get("/api/templates/{kind}/{name}/manifest", response_class=PlainTextResponse)
async def get_manifest(kind: str, name: str):
    """Manifest as YAML, the way it is published."""
    return dump_manifest(_template(kind, name))


@app.get("/api/templates/{kind}/{name}/usage", response_class=PlainTextResponse)
async def get_usage(kind: str, name: str, ref: Optional[str] = None):
    """Caller snippet with every required input filled in."""
    _template(kind, name)
    return usage_snippet(get_catalog(), name, ref, kind)


@app.post("/api/templates/{kind}/{name}/validate")
async def validate_invocation(kind: str, name: str, req: InvocationRequest):
    """Validate a caller's with/secrets maps against the template's declarations."""
    registry = _registry(kind)
    try:
        invocation = registry.validate(name, req.with_, req.secrets, inherit_secrets=req.inherit_secrets)
    except InvocationError as e:
        raise _error(e)
    return {"valid": True, "template": name, "inputs": invocation.inputs}


@app.post("/api/templates/{kind}/{name}/render")
async def render_invocation(kind: str, name: str, req: RenderRequest):
    """Render the step sequence an invocation resolves to; secrets are masked."""
    registry = _registry(kind)
    try:
        rendered = registry.render(
            name, req.with_, req.secrets, context=req.context, inherit_secrets=req.inherit_secrets
        )
    except (InvocationError, ExpressionError, ValueError) as e:
        raise _error(e)
    return rendered.to_dict(mask_secrets=True)


@app.post("/api/resolve")
async def resolve_reference(req: ResolveRequest):
    """Resolve a uses: reference to the template it names."""
    try:
        registry, name, ref = get_catalog().resolve(req.reference)
    except InvocationError as e:
        raise _error(e)
    return _summary(registry.get(name)) | {"ref": ref}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=catalog_config.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')
    uvicorn.run(app, host=catalog_config.API_HOST, port=catalog_config.API_PORT)
