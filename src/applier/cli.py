"""CLI entry point for the manifest applier.

Usage:
    applier render -d <dir> [asset ...] [--values values.yaml] [--header h.yaml]
    applier apply  -d <dir> [asset ...] [--values values.yaml] [--crds] [--dry-run]
                   [--owner Kind/name] [--controller] [--block-owner-deletion]
                   [--json-output] [--verbose]

Assets are names relative to <dir>; a directory prefix selects every asset
under it. With --dry-run the rendered resources are printed and validated
against the cluster's API surface, never applied.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

from applier.apply.applier import ApplierConfig, render_assets
from applier.asset import DirFS
from applier.clients import connect
from applier.common import ApplierError
from applier.config import MERGE_STRATEGIES, ON_ERROR_POLICIES, load_flags
from applier.ownership import OwnerSpec

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _add_render_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--dir', '-d',
        required=True,
        help='Root directory of the manifest templates',
    )
    parser.add_argument(
        'assets',
        nargs='*',
        help='Asset names or directory prefixes (default: all assets)',
    )
    parser.add_argument(
        '--values',
        help='YAML file with template values',
    )
    parser.add_argument(
        '--header',
        help='Asset prepended to every template (shared definitions)',
    )
    parser.add_argument(
        '--exclude',
        action='append',
        default=[],
        help='Asset name to skip (repeatable)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='applier',
        description='Render manifest templates and apply them to a cluster',
    )
    sub = parser.add_subparsers(dest='command')

    render = sub.add_parser('render', help='Render templates to stdout')
    _add_render_args(render)

    apply = sub.add_parser('apply', help='Render and apply templates')
    _add_render_args(apply)
    apply.add_argument(
        '--config',
        help='Applier config file (default: $APPLIER_CONFIG)',
    )
    apply.add_argument(
        '--crds',
        action='store_true',
        help='Wait for CustomResourceDefinitions to be established before later documents',
    )
    apply.add_argument(
        '--dry-run',
        action='store_true',
        default=None,
        help='Print and validate resources without applying them',
    )
    apply.add_argument(
        '--timeout',
        type=int,
        help='Seconds per remote call and per CRD wait',
    )
    apply.add_argument(
        '--kubeconfig',
        help='Path to kubeconfig',
    )
    apply.add_argument(
        '--context',
        help='kubeconfig context',
    )
    apply.add_argument(
        '--on-error',
        choices=ON_ERROR_POLICIES,
        help='Continue with remaining resources or stop after a failure',
    )
    apply.add_argument(
        '--merge',
        choices=MERGE_STRATEGIES,
        help='Update strategy for existing resources',
    )
    apply.add_argument(
        '--owner',
        help='Owner as Kind/name; stamped on every applied resource',
    )
    apply.add_argument(
        '--owner-api-version',
        default='v1',
        help='apiVersion of the owner (default: v1)',
    )
    apply.add_argument(
        '--owner-namespace',
        help='Namespace of the owner (namespaced owners only)',
    )
    apply.add_argument(
        '--controller',
        action='store_true',
        help='Mark the owner reference as controller',
    )
    apply.add_argument(
        '--block-owner-deletion',
        action='store_true',
        help='Set blockOwnerDeletion on the owner reference',
    )
    apply.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _load_values(path: Optional[str]):
    if not path:
        return None
    with open(path, encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def _parse_owner(value: str) -> tuple[str, str]:
    if '/' not in value:
        raise ValueError(f"--owner must be Kind/name, got '{value}'")
    kind, name = value.split('/', 1)
    if not kind or not name:
        raise ValueError(f"--owner must be Kind/name, got '{value}'")
    return kind, name


def render_main(args) -> int:
    reader = DirFS(Path(args.dir))
    try:
        values = _load_values(args.values)
        rendered = render_assets(reader, values, args.assets, args.header, args.exclude)
    except (ApplierError, OSError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for doc in rendered:
        text = doc.decode('utf-8')
        print('---')
        print(text.rstrip('\n'))
    return 0


def apply_main(args) -> int:
    try:
        flags = load_flags(Path(args.config) if args.config else None)
        if args.dry_run is not None:
            flags.dry_run = args.dry_run
        if args.timeout is not None:
            flags.timeout = args.timeout
        if args.kubeconfig:
            flags.kubeconfig = args.kubeconfig
        if args.context:
            flags.context = args.context
        if args.on_error:
            flags.on_error = args.on_error
        if args.merge:
            flags.merge = args.merge
        flags.validate()

        values = _load_values(args.values)
        client = connect(flags)

        owner = None
        if args.owner:
            kind, name = _parse_owner(args.owner)
            owner_obj = client.get(args.owner_api_version, kind, name,
                                   args.owner_namespace, timeout=flags.timeout or None)
            owner = OwnerSpec(
                obj=owner_obj,
                controller=args.controller,
                block_owner_deletion=args.block_owner_deletion,
            )

        applier = ApplierConfig.from_flags(client, flags, owner=owner).build()
        reader = DirFS(Path(args.dir))
        apply_fn = applier.apply_custom_resources if args.crds else applier.apply_directly
        result = apply_fn(reader, values, args.assets, header=args.header, excluded=args.exclude)
    except (ApplierError, OSError, ValueError, yaml.YAMLError) as e:
        if args.json_output:
            print(json.dumps({'success': False, 'error': str(e),
                              'code': getattr(e, 'code', None)}, indent=2))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        if result.dry_run:
            for doc in result.rendered:
                print('---')
                print(doc.rstrip('\n'))
        for outcome in result.outcomes:
            line = f"{outcome.identity}: {outcome.action}"
            if outcome.error is not None:
                line += f" ({outcome.error})"
            print(line)
        error = result.error()
        if error is not None:
            print(f"\n{error}", file=sys.stderr)
    return 0 if result.success else 1


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    _setup_logging(args.verbose, getattr(args, 'json_output', False))

    if args.command == 'render':
        return render_main(args)
    return apply_main(args)


if __name__ == '__main__':
    sys.exit(main())
