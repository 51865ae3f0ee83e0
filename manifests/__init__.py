"""
Template manifests shipped with the catalog.

``workflows/`` holds reusable workflows, ``actions/<name>/action.yml``
holds composite actions.
"""

from pathlib import Path

MANIFESTS_DIR = Path(__file__).parent
