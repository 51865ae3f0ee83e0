"""
Configuration settings for the template catalog.

Every setting can be overridden with the environment variable named in
its comment.
"""

import os
from pathlib import Path

from manifests import MANIFESTS_DIR

# Directory holding the manifests: workflows/*.yml and actions/<name>/action.yml
# Override: CATALOG_DIR
CATALOG_DIR = Path(os.environ.get("CATALOG_DIR", MANIFESTS_DIR))

# Repository consumers reference the templates from (owner/repo)
# Override: CATALOG_REPOSITORY
REPOSITORY = os.environ.get("CATALOG_REPOSITORY", "reusable-workflows/templates")

# Version ref used in generated usage snippets and docs
# Override: CATALOG_DEFAULT_REF
DEFAULT_REF = os.environ.get("CATALOG_DEFAULT_REF", "v1")

# Where templates live inside the published repository
# Override: CATALOG_WORKFLOWS_PATH, CATALOG_ACTIONS_PATH
WORKFLOWS_PATH = os.environ.get("CATALOG_WORKFLOWS_PATH", ".github/workflows")
ACTIONS_PATH = os.environ.get("CATALOG_ACTIONS_PATH", ".github/actions")

# HTTP API bind address
# Override: CATALOG_API_HOST, CATALOG_API_PORT
API_HOST = os.environ.get("CATALOG_API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("CATALOG_API_PORT", "8080"))

# Log level for the command line tools
# Override: CATALOG_LOG_LEVEL
LOG_LEVEL = os.environ.get("CATALOG_LOG_LEVEL", "INFO")
