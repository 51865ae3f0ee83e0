"""
Unit tests for manifest loading and serialization.
"""

import unittest
from pathlib import Path

import yaml

from manifest_loader import (
    ManifestError,
    ManifestLoader,
    dump_manifest,
    load_manifest,
    parse_manifest,
    template_key,
)
from manifests import MANIFESTS_DIR
from template_models import ActionTemplate, WorkflowTemplate

FIXTURES = Path(__file__).parent / "fixtures"

MINIMAL_WORKFLOW = """
name: Minimal
on:
  workflow_call:
    inputs:
      greeting:
        type: string
        default: hello
jobs:
  say:
    runs-on: ubuntu-latest
    steps:
      - run: echo ${{ inputs.greeting }}
"""


class TestYamlLoading(unittest.TestCase):
    """Test the YAML dialect manifests are read with."""

    def test_on_key_stays_a_string(self):
        data = yaml.load("on: push\nflag: yes\nreal: true", Loader=ManifestLoader)
        self.assertEqual(data, {"on": "push", "flag": "yes", "real": True})

    def test_duplicate_keys_are_rejected(self):
        with self.assertRaises(ManifestError) as cm:
            load_manifest(FIXTURES / "duplicate_key.yml")
        self.assertIn("duplicate key", str(cm.exception))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_manifest(FIXTURES / "does_not_exist.yml")

    def test_not_a_mapping(self):
        with self.assertRaises(ManifestError):
            parse_manifest("- just\n- a list\n")


class TestManifestValidation(unittest.TestCase):
    """Test schema errors surface as ManifestError."""

    def test_minimal_workflow(self):
        template = parse_manifest(MINIMAL_WORKFLOW, key="minimal")
        self.assertIsInstance(template, WorkflowTemplate)
        self.assertEqual(template.key, "minimal")
        self.assertEqual(template.inputs["greeting"].default, "hello")

    def test_key_defaults_to_slug_of_name(self):
        template = parse_manifest(MINIMAL_WORKFLOW.replace("name: Minimal", "name: My Minimal Flow"))
        self.assertEqual(template.key, "my-minimal-flow")

    def test_undeclared_input_reference(self):
        with self.assertRaises(ManifestError) as cm:
            load_manifest(FIXTURES / "undeclared_input.yml")
        self.assertIn("'inputs.region' is not a declared input", str(cm.exception))

    def test_undeclared_secret_reference(self):
        text = MINIMAL_WORKFLOW.replace("${{ inputs.greeting }}", "${{ secrets.api-key }}")
        with self.assertRaises(ManifestError) as cm:
            parse_manifest(text)
        self.assertIn("secrets.api-key", str(cm.exception))

    def test_github_token_needs_no_declaration(self):
        text = MINIMAL_WORKFLOW.replace("${{ inputs.greeting }}", "${{ secrets.GITHUB_TOKEN }}")
        parse_manifest(text)

    def test_default_must_match_type(self):
        with self.assertRaises(ManifestError) as cm:
            load_manifest(FIXTURES / "bad_default.yml")
        self.assertIn("not a valid boolean", str(cm.exception))

    def test_workflow_inputs_need_a_type(self):
        text = MINIMAL_WORKFLOW.replace("        type: string\n", "")
        with self.assertRaises(ManifestError) as cm:
            parse_manifest(text)
        self.assertIn("must declare a type", str(cm.exception))

    def test_input_names_are_case_insensitive(self):
        text = MINIMAL_WORKFLOW.replace(
            "        default: hello\n",
            "        default: hello\n      Greeting:\n        type: string\n",
        )
        with self.assertRaises(ManifestError) as cm:
            parse_manifest(text)
        self.assertIn("case-insensitive", str(cm.exception))

    def test_step_needs_uses_or_run(self):
        text = MINIMAL_WORKFLOW.replace("      - run: echo ${{ inputs.greeting }}", "      - name: nothing")
        with self.assertRaises(ManifestError):
            parse_manifest(text)

    def test_job_needs_known_job(self):
        text = MINIMAL_WORKFLOW.replace("    runs-on: ubuntu-latest", "    needs: build\n    runs-on: ubuntu-latest")
        with self.assertRaises(ManifestError) as cm:
            parse_manifest(text)
        self.assertIn("unknown job 'build'", str(cm.exception))

    def test_job_needs_cycle(self):
        text = """
name: Cycle
on: workflow_call
jobs:
  a:
    needs: b
    runs-on: ubuntu-latest
    steps:
      - run: echo a
  b:
    needs: a
    runs-on: ubuntu-latest
    steps:
      - run: echo b
"""
        with self.assertRaises(ManifestError) as cm:
            parse_manifest(text)
        self.assertIn("cycle", str(cm.exception))

    def test_invalid_permissions(self):
        text = MINIMAL_WORKFLOW.replace("jobs:", "permissions:\n  contents: admin\njobs:")
        with self.assertRaises(ManifestError):
            parse_manifest(text)

    def test_workflow_without_workflow_call(self):
        text = MINIMAL_WORKFLOW.replace("  workflow_call:\n", "  push:\n").replace("    inputs:", "    branches:")
        with self.assertRaises(ManifestError):
            parse_manifest(text)

    def test_composite_run_steps_need_shell(self):
        text = """
name: No Shell
runs:
  using: composite
  steps:
    - run: echo hi
"""
        with self.assertRaises(ManifestError) as cm:
            parse_manifest(text)
        self.assertIn("shell", str(cm.exception))


class TestShippedManifests(unittest.TestCase):
    """Every manifest in the catalog loads and survives serialization."""

    def manifest_paths(self):
        return sorted((MANIFESTS_DIR / "workflows").glob("*.yml")) + sorted(
            (MANIFESTS_DIR / "actions").glob("*/action.yml")
        )

    def test_all_manifests_load(self):
        paths = self.manifest_paths()
        self.assertEqual(len(paths), 9)
        for path in paths:
            with self.subTest(path=path.name):
                template = load_manifest(path)
                self.assertEqual(template.key, template_key(path))

    def test_dump_reloads_to_same_template(self):
        for path in self.manifest_paths():
            with self.subTest(path=str(path)):
                template = load_manifest(path)
                reloaded = parse_manifest(dump_manifest(template), key=template.key)
                self.assertEqual(reloaded.to_dict(), template.to_dict())
                # dict equality ignores order; declaration order is part of the manifest
                self.assertEqual(list(reloaded.inputs), list(template.inputs))
                self.assertEqual(list(reloaded.secrets), list(template.secrets))
                self.assertEqual(list(reloaded.outputs), list(template.outputs))
                self.assertEqual(
                    [(job_id, step.label) for job_id, step in reloaded.iter_steps()],
                    [(job_id, step.label) for job_id, step in template.iter_steps()],
                )
                self.assertEqual(list(reloaded.to_dict()), list(template.to_dict()))

    def test_dump_keeps_on_key_unquoted(self):
        text = dump_manifest(load_manifest(MANIFESTS_DIR / "workflows" / "codeql.yml"))
        self.assertIn("\non:\n", text)
        self.assertNotIn("'on'", text)

    def test_action_kind(self):
        template = load_manifest(MANIFESTS_DIR / "actions" / "checkout-with-cache" / "action.yml")
        self.assertIsInstance(template, ActionTemplate)
        self.assertEqual(template.key, "checkout-with-cache")
        self.assertEqual(template.secrets, {})


if __name__ == '__main__':
    unittest.main()
