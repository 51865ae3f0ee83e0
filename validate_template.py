"""
Simple script to validate a template manifest.

Usage:
    python validate_template.py manifests/workflows/docker-build.yml
    python validate_template.py manifests/actions/checkout-with-cache/action.yml
"""

import sys
import logging

from checks import lint_template
from manifest_loader import ManifestError, load_manifest

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def main():
    if len(sys.argv) < 2:
        print("Usage: python validate_template.py <manifest_file>")
        sys.exit(1)

    manifest_file = sys.argv[1]

    try:
        logger.info(f"Loading manifest: {manifest_file}")
        template = load_manifest(manifest_file)

        logger.info(f"✓ {template.kind.capitalize()} '{template.key}' loaded successfully")
        logger.info(f"  Name: {template.name}")

        logger.info(f"  Inputs: {len(template.inputs)}")
        for name, spec in template.inputs.items():
            detail = "required" if spec.required else f"default {spec.default!r}"
            type_label = f"{spec.type}, " if spec.type else ""
            logger.info(f"    - {name} ({type_label}{detail})")

        if template.secrets:
            logger.info(f"  Secrets: {len(template.secrets)}")
            for name, spec in template.secrets.items():
                logger.info(f"    - {name} ({'required' if spec.required else 'optional'})")

        if template.kind == "workflow":
            for job_id, job in template.jobs.items():
                matrix = " (matrix)" if job.strategy and "matrix" in job.strategy else ""
                logger.info(f"  Job {job_id}{matrix}: {len(job.steps)} steps")
        else:
            logger.info(f"  Steps: {len(template.runs.steps)}")

        warnings = lint_template(template)
        if warnings:
            logger.warning("Validation warnings:")
            for warning in warnings:
                logger.warning(f"  - {warning}")
        else:
            logger.info("✓ No validation warnings")

        logger.info("")
        logger.info("Manifest is valid and ready to publish!")
        logger.info(f"Render with: python catalog.py render {template.key}")

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        sys.exit(1)
    except ManifestError as e:
        logger.error(f"Invalid manifest: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
