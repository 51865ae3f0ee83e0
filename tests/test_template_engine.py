"""
Unit tests for rendering invocations into step sequences.

Renders the shipped templates and the fixture catalog without a runner.
"""

import unittest
from pathlib import Path

from template_engine import SECRET_MASK, expand_matrix
from template_models import Job, job_order
from template_registry import Catalog

FIXTURES = Path(__file__).parent / "fixtures"


class TestShippedTemplates(unittest.TestCase):
    """Scenarios over the catalog's own workflows and actions."""

    @classmethod
    def setUpClass(cls):
        cls.catalog = Catalog.load()

    def render(self, name, with_=None, secrets=None, context=None):
        return self.catalog.registry_for(name).render(name, with_ or {}, secrets or {}, context=context)

    def test_test_suite_with_only_a_test_command(self):
        rendered = self.render("test-suite", {"test-command": "npm test"})
        labels = [step.label for step in rendered.steps]
        self.assertEqual(labels, ["Checkout code", "Run tests"])

        run_steps = [step for step in rendered.steps if step.run]
        self.assertEqual(len(run_steps), 1)
        self.assertEqual(run_steps[0].run, "npm test")
        self.assertEqual(run_steps[0].working_directory, ".")

        job = rendered.jobs[0]
        self.assertEqual(job.runs_on, "ubuntu-latest")
        skipped = [step.label for step in job.steps if step.skipped]
        self.assertEqual(skipped, ["Set up Node.js", "Set up Python", "Install dependencies"])

    def test_test_suite_with_node_and_install(self):
        rendered = self.render(
            "test-suite",
            {"test-command": "npm test", "node-version": "20", "install-command": "npm ci", "working-directory": "web"},
        )
        labels = [step.label for step in rendered.steps]
        self.assertEqual(labels, ["Checkout code", "Set up Node.js", "Install dependencies", "Run tests"])
        setup_node = rendered.steps[1]
        self.assertEqual(setup_node.with_, {"node-version": "20"})
        self.assertIsNone(setup_node.working_directory)
        self.assertEqual(rendered.steps[2].working_directory, "web")

    def test_docker_build_without_push_skips_login(self):
        rendered = self.render("docker-build", {"image-name": "my-org/app"})
        labels = [step.label for step in rendered.steps]
        self.assertNotIn("Log in to registry", labels)
        self.assertNotIn("Set up QEMU", labels)

        build = rendered.steps[-1]
        self.assertEqual(build.uses, "docker/build-push-action@v6")
        self.assertIs(build.with_["push"], False)
        self.assertEqual(build.with_["file"], "./Dockerfile")
        self.assertEqual(build.with_["tags"], "${{ steps.meta.outputs.tags }}")
        self.assertEqual(rendered.jobs[0].name, "Build my-org/app")

    def test_docker_build_push_logs_in_and_masks_secrets(self):
        rendered = self.render(
            "docker-build",
            {"image-name": "my-org/app", "push": True, "platforms": "linux/amd64,linux/arm64"},
            {"registry-username": "bot", "registry-password": "s3cr3t"},
        )
        labels = [step.label for step in rendered.steps]
        self.assertIn("Set up QEMU", labels)
        login = next(step for step in rendered.steps if step.label == "Log in to registry")
        self.assertEqual(login.with_["password"], "s3cr3t")

        data = rendered.to_dict()
        self.assertNotIn("s3cr3t", repr(data))
        self.assertIn(SECRET_MASK, repr(data))
        self.assertIn("s3cr3t", repr(rendered.to_dict(mask_secrets=False)))

    def test_codeql_matrix_over_languages(self):
        rendered = self.render("codeql", {"languages": '["javascript", "python"]'})
        jobs = rendered.job("analyze")
        self.assertEqual([job.matrix for job in jobs], [{"language": "javascript"}, {"language": "python"}])
        self.assertEqual([job.name for job in jobs], ["Analyze (javascript)", "Analyze (python)"])

        init = jobs[1].steps[1]
        self.assertEqual(init.with_["languages"], "python")
        self.assertEqual(jobs[1].steps[-1].with_["category"], "/language:python")
        self.assertEqual(len(rendered.steps), 8)

    def test_release_depends_on_the_ref(self):
        deferred = self.render("release")
        self.assertEqual(deferred.jobs[0].condition, "startsWith(github.ref, 'refs/tags/')")
        self.assertFalse(deferred.jobs[0].skipped)

        branch = self.render("release", context={"github": {"ref": "refs/heads/main"}})
        self.assertTrue(branch.jobs[0].skipped)
        self.assertEqual(branch.steps, [])

        tag = self.render("release", context={"github": {"ref": "refs/tags/v1.0.0"}})
        self.assertIsNone(tag.jobs[0].condition)
        publish = tag.steps[-1]
        self.assertEqual(publish.with_["generate_release_notes"], False)
        self.assertEqual(publish.with_["body_path"], "${{ inputs.release-notes-file != '' && inputs.release-notes-file || steps.changelog.outputs.path }}")

    def test_release_with_notes_file(self):
        rendered = self.render(
            "release",
            {"release-notes-file": "NOTES.md"},
            context={"github": {"ref": "refs/tags/v2.0.0"}},
        )
        labels = [step.label for step in rendered.steps]
        self.assertNotIn("Generate changelog", labels)
        self.assertEqual(rendered.steps[-1].with_["body_path"], "NOTES.md")

    def test_super_linter_env(self):
        rendered = self.render("super-linter", {"validate-all-codebase": True})
        env = rendered.steps[-1].env
        self.assertIs(env["VALIDATE_ALL_CODEBASE"], True)
        self.assertEqual(env["DEFAULT_BRANCH"], "main")
        self.assertEqual(env["GITHUB_TOKEN"], "${{ secrets.GITHUB_TOKEN }}")

    def test_dependency_review_license_conflict_step(self):
        ok = self.render("dependency-review", {"deny-licenses": "GPL-3.0"})
        self.assertNotIn("Reject conflicting license lists", [step.label for step in ok.steps])

        conflict = self.render("dependency-review", {"deny-licenses": "GPL-3.0", "allow-licenses": "MIT"})
        self.assertEqual(conflict.steps[0].label, "Reject conflicting license lists")

    def test_composite_action(self):
        rendered = self.render("checkout-with-cache", {"lfs": "true", "fetch-depth": 0})
        self.assertEqual(rendered.kind, "action")
        self.assertEqual(len(rendered.jobs), 1)
        self.assertEqual(rendered.steps[0].with_["fetch-depth"], "0")
        self.assertEqual(rendered.steps[0].with_["token"], "${{ github.token }}")
        self.assertEqual(rendered.steps[2].with_["key"], "lfs-${{ hashFiles('.lfs-assets-id') }}")

        without_lfs = self.render("checkout-with-cache")
        self.assertEqual([step.label for step in without_lfs.steps], ["Checkout repository"])

    def test_github_token_default_resolves_with_context(self):
        rendered = self.render("checkout-with-cache", context={"github": {"token": "ghs_abc"}})
        self.assertEqual(rendered.steps[0].with_["token"], "ghs_abc")

    def test_caller_values_are_not_evaluated(self):
        """An input value containing ${{ is passed through as text."""
        command = "echo '${{ not valid ( }}'"
        rendered = self.render("test-suite", {"test-command": command})
        self.assertEqual(rendered.inputs["test-command"], command)
        self.assertEqual(rendered.steps[-1].run, command)

        token = "${{ github.token }}"
        passed = self.render("checkout-with-cache", {"token": token}, context={"github": {"token": "ghs_abc"}})
        self.assertEqual(passed.steps[0].with_["token"], token)


class TestFixtureCatalog(unittest.TestCase):
    """Matrix include/exclude, job dependencies and deferred conditions."""

    @classmethod
    def setUpClass(cls):
        cls.catalog = Catalog.load(FIXTURES / "catalog")

    def test_matrix_include_exclude(self):
        rendered = self.catalog.workflows.render("build-matrix")
        builds = rendered.job("build")
        self.assertEqual(
            [job.matrix for job in builds],
            [
                {"os": "ubuntu-latest", "variant": "debug"},
                {"os": "ubuntu-latest", "variant": "release", "coverage": True},
                {"os": "windows-latest", "variant": "release"},
                {"os": "macos-latest", "variant": "release"},
            ],
        )
        self.assertEqual(builds[0].runs_on, "ubuntu-latest")
        self.assertEqual(builds[0].steps[0].label, "Build debug")
        self.assertEqual(builds[0].steps[0].run, "make debug NODE=20")

    def test_skipped_job_skips_dependents(self):
        rendered = self.catalog.workflows.render("build-matrix")
        deploy, = rendered.job("deploy")
        notify, = rendered.job("notify")
        self.assertTrue(deploy.skipped)
        self.assertTrue(notify.skipped)
        self.assertEqual(len(rendered.steps), 4)

    def test_enabled_job_runs_after_its_dependencies(self):
        rendered = self.catalog.workflows.render(
            "build-matrix", {"deploy": True}, {"deploy-token": "tok"}
        )
        self.assertEqual([job.job_id for job in rendered.jobs][-2:], ["deploy", "notify"])
        deploy, = rendered.job("deploy")
        self.assertEqual(deploy.steps[0].env, {"TOKEN": "tok"})
        self.assertEqual(deploy.to_dict()["steps"][0]["env"], {"TOKEN": "tok"})
        self.assertEqual(rendered.to_dict()["jobs"][-2]["steps"][0]["env"], {"TOKEN": SECRET_MASK})

    def test_unset_optional_secret_renders_empty(self):
        rendered = self.catalog.workflows.render("build-matrix", {"deploy": True})
        deploy, = rendered.job("deploy")
        self.assertEqual(deploy.steps[0].env, {"TOKEN": ""})

    def test_deferred_step_condition_is_kept(self):
        rendered = self.catalog.actions.render("greet", {"who": "world"})
        labels = [step.label for step in rendered.steps]
        self.assertEqual(labels, ["Greet", "Cache"])
        self.assertEqual(rendered.steps[0].run, 'echo "Hello, world"')
        self.assertEqual(rendered.steps[1].condition, "${{ hashFiles('greeting.lock') != '' }}")

    def test_composite_input_case(self):
        rendered = self.catalog.actions.render("greet", {"WHO": "you", "shout": True})
        self.assertEqual([step.label for step in rendered.steps], ["Greet", "Shout", "Cache"])


class TestMatrixExpansion(unittest.TestCase):

    def test_no_matrix(self):
        self.assertEqual(expand_matrix(None, {}), [None])
        self.assertEqual(expand_matrix({"fail-fast": False}, {}), [None])

    def test_cartesian_product_in_order(self):
        combos = expand_matrix({"matrix": {"a": [1, 2], "b": ["x", "y"]}}, {})
        self.assertEqual(combos, [
            {"a": 1, "b": "x"}, {"a": 1, "b": "y"},
            {"a": 2, "b": "x"}, {"a": 2, "b": "y"},
        ])

    def test_include_only(self):
        combos = expand_matrix({"matrix": {"include": [{"os": "linux"}, {"os": "mac"}]}}, {})
        self.assertEqual(combos, [{"os": "linux"}, {"os": "mac"}])

    def test_runtime_matrix_is_not_expanded(self):
        strategy = {"matrix": {"os": "${{ fromJSON(needs.setup.outputs.os) }}"}}
        self.assertEqual(expand_matrix(strategy, {}), [None])

    def test_axis_must_be_a_list(self):
        with self.assertRaises(ValueError):
            expand_matrix({"matrix": {"os": "linux"}}, {})

    def test_everything_excluded(self):
        with self.assertLogs("template_engine", level="WARNING"):
            combos = expand_matrix({"matrix": {"a": [1], "exclude": [{"a": 1}]}}, {})
        self.assertEqual(combos, [])


class TestJobOrder(unittest.TestCase):

    def job(self, needs=None):
        return Job.model_validate({"runs-on": "ubuntu-latest", "needs": needs, "steps": [{"run": "true"}]})

    def test_dependencies_first(self):
        jobs = {"deploy": self.job(["build", "test"]), "test": self.job("build"), "build": self.job()}
        self.assertEqual(job_order(jobs), ["build", "test", "deploy"])

    def test_cycle(self):
        with self.assertRaises(ValueError):
            job_order({"a": self.job("b"), "b": self.job("a")})


if __name__ == '__main__':
    unittest.main()
