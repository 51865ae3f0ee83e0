"""
Template catalog command line.

Lists, documents, validates and renders the reusable workflows and
composite actions of the catalog, and exports them in the layout
consumers reference.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

import catalog_config
from checks import lint_template
from expressions import ExpressionError
from manifest_loader import ManifestDumper, ManifestError, ManifestLoader, dump_manifest
from template_docs import render_docs, usage_snippet
from template_registry import Catalog, InvocationError

logger = logging.getLogger(__name__)


def parse_assignments(pairs, nested=False):
    """
    Parse ``key=value`` arguments into a dict.

    Values are read as YAML scalars, so ``push=false`` is a boolean and
    ``retries=3`` a number. Anything that reads as a list or mapping, such
    as ``languages=["go"]``, stays the raw string. With ``nested`` dotted
    keys build sub-mappings.
    """
    result = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got '{pair}'")
        try:
            value = yaml.load(raw, Loader=ManifestLoader) if raw else ""
        except yaml.YAMLError:
            value = raw
        if value is None:
            value = ""
        elif isinstance(value, (list, dict)):
            value = raw
        target = result
        if nested:
            *parents, key = key.split(".")
            for parent in parents:
                target = target.setdefault(parent, {})
        target[key] = value
    return result


def _print_yaml(data):
    print(yaml.dump(data, Dumper=ManifestDumper, sort_keys=False, default_flow_style=False, width=4096), end="")


def _cmd_list(catalog, args):
    for template in catalog:
        if args.kind and template.kind != args.kind:
            continue
        required = [name for name, spec in template.inputs.items() if spec.required]
        suffix = f"  (required: {', '.join(required)})" if required else ""
        print(f"{template.kind:<9} {template.key:<26} {template.name}{suffix}")


def _cmd_show(catalog, args):
    print(dump_manifest(catalog.get(args.name)), end="")


def _cmd_validate(catalog, args):
    if not args.name:
        warnings_total = 0
        for template in catalog:
            warnings = lint_template(template)
            warnings_total += len(warnings)
            logger.info(f"✓ {template.kind} {template.key}")
            for warning in warnings:
                logger.warning(f"  - {warning}")
        logger.info(f"{len(catalog)} templates valid, {warnings_total} warning(s)")
        return

    invocation = _invoke(catalog, args)
    logger.info(f"✓ Invocation of {invocation.template.key} is valid")
    _print_yaml({"inputs": invocation.inputs})


def _invoke(catalog, args):
    with_ = parse_assignments(args.with_)
    secrets = parse_assignments(args.secret)
    if "/" in args.name:
        return catalog.invoke(args.name, with_, secrets, inherit_secrets=args.inherit_secrets)
    registry = catalog.registry_for(args.name)
    return registry.validate(args.name, with_, secrets, inherit_secrets=args.inherit_secrets)


def _cmd_render(catalog, args):
    invocation = _invoke(catalog, args)
    context = parse_assignments(args.context, nested=True)
    rendered = invocation.render(context)
    data = rendered.to_dict(mask_secrets=not args.show_secrets)
    if args.json:
        print(json.dumps(data, indent=2))
    else:
        _print_yaml(data)


def _cmd_usage(catalog, args):
    print(usage_snippet(catalog, args.name, args.ref), end="")


def _cmd_docs(catalog, args):
    text = render_docs(catalog, args.ref)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        logger.info(f"Documentation written to: {output}")
    else:
        print(text, end="")


def _cmd_export(catalog, args):
    written = catalog.export(args.destination)
    logger.info(f"Exported {len(written)} templates to {args.destination}")


def _cmd_serve(catalog, args):
    import uvicorn

    uvicorn.run("api_server:app", host=args.host, port=args.port)


def _add_invocation_args(parser):
    parser.add_argument('name', help='Template name, or a reference like owner/repo/.github/workflows/x.yml@v1')
    parser.add_argument('--with', dest='with_', action='append', metavar='KEY=VALUE',
                        help='Input value (repeatable)')
    parser.add_argument('--secret', action='append', metavar='KEY=VALUE',
                        help='Secret value (repeatable)')
    parser.add_argument('--inherit-secrets', action='store_true',
                        help='Treat --secret values as the caller\'s whole secret store')


def build_parser():
    parser = argparse.ArgumentParser(
        prog='catalog',
        description='Reusable workflow and composite action catalog',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  catalog list
  catalog validate
  catalog validate docker-build --with image-name=my-org/app --with push=false
  catalog render test-suite --with "test-command=npm test"
  catalog render codeql --with 'languages=["javascript","python"]'
  catalog render release --context github.ref=refs/tags/v1.2.0
  catalog docs --output docs/TEMPLATES.md
  catalog export build/
        """
    )
    parser.add_argument('--catalog-dir', default=None,
                        help=f'Manifest directory (default: {catalog_config.CATALOG_DIR})')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('list', help='List templates')
    p.add_argument('--kind', choices=['workflow', 'action'])
    p.set_defaults(func=_cmd_list)

    p = sub.add_parser('show', help='Print a template manifest')
    p.add_argument('name')
    p.set_defaults(func=_cmd_show)

    p = sub.add_parser('validate', help='Lint the catalog, or validate one invocation')
    p.add_argument('name', nargs='?')
    p.add_argument('--with', dest='with_', action='append', metavar='KEY=VALUE')
    p.add_argument('--secret', action='append', metavar='KEY=VALUE')
    p.add_argument('--inherit-secrets', action='store_true')
    p.set_defaults(func=_cmd_validate)

    p = sub.add_parser('render', help='Resolve an invocation into its step sequence')
    _add_invocation_args(p)
    p.add_argument('--context', action='append', metavar='KEY=VALUE',
                   help='Runner context value, e.g. github.ref=refs/heads/main (repeatable)')
    p.add_argument('--json', action='store_true', help='Print JSON instead of YAML')
    p.add_argument('--show-secrets', action='store_true', help='Do not mask secret values')
    p.set_defaults(func=_cmd_render)

    p = sub.add_parser('usage', help='Print a caller snippet for a template')
    p.add_argument('name')
    p.add_argument('--ref', default=None, help=f'Version ref (default: {catalog_config.DEFAULT_REF})')
    p.set_defaults(func=_cmd_usage)

    p = sub.add_parser('docs', help='Generate the Markdown template reference')
    p.add_argument('--output', help='Write to this file instead of stdout')
    p.add_argument('--ref', default=None)
    p.set_defaults(func=_cmd_docs)

    p = sub.add_parser('export', help='Write .github/workflows and .github/actions layout')
    p.add_argument('destination')
    p.set_defaults(func=_cmd_export)

    p = sub.add_parser('serve', help='Run the HTTP API')
    p.add_argument('--host', default=catalog_config.API_HOST)
    p.add_argument('--port', type=int, default=catalog_config.API_PORT)
    p.set_defaults(func=_cmd_serve)

    return parser


def main(argv=None):
    """Main entry point with argument parsing."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else catalog_config.LOG_LEVEL,
        format='%(levelname)s: %(message)s'
    )

    try:
        catalog = Catalog.load(args.catalog_dir)
        args.func(catalog, args)
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        sys.exit(1)
    except ManifestError as e:
        logger.error(f"Invalid manifest: {e}")
        sys.exit(1)
    except InvocationError as e:
        logger.error(f"Invalid invocation: {e}")
        sys.exit(1)
    except (ExpressionError, ValueError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
