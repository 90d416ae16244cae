#!/usr/bin/env python3
"""
swarmlock - Swarm Leadership & Bootstrap Control CLI

Commands:
    leader          Claim, renew or follow swarm leadership (scheduled)
    worker          Join the swarm as a worker if not a member (scheduled)
    lock show       Print the cluster lock row
    deploy HOOK     Run a deployment hook (before-install,
                    application-start, validate-service)

Usage:
    swarmlock leader
    swarmlock -v worker
    swarmlock lock show --json
    swarmlock deploy application-start

Exit codes:
    0    success
    1    invocation failure (join timeout, identity, lock store, engine, deploy)
    2    configuration error
    130  interrupted

Environment:
    SWARMLOCK_CONFIG     Path to a YAML settings file
    SWARMLOCK_ENV_FILE   Path to the shell-style env file
                         (default /etc/leader-manager.env)
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from ..config.settings import CoordinatorConfig, load_config
from ..constants import ExitCodes, LockAttributes
from ..deploy.hooks import (
    APPLICATION_START_VARS,
    BEFORE_INSTALL_VARS,
    VALIDATE_SERVICE_VARS,
    DeploymentContext,
    DeploymentHooks,
)
from ..distributed.leader_manager import LeaderManager
from ..distributed.lock_store import create_lock_store
from ..distributed.worker_manager import WorkerManager
from ..engine.swarm_engine import DockerSwarmEngine
from ..identity import create_identity_source
from ..logging_config import configure_from_environment, get_logging_state
from ..utils.error_handling import ConfigurationError, SwarmLockError, handle_error

logger = logging.getLogger(__name__)

HOOK_VARS = {
    'before-install': BEFORE_INSTALL_VARS,
    'application-start': APPLICATION_START_VARS,
    'validate-service': VALIDATE_SERVICE_VARS,
}

SECRET_ATTRIBUTES = (LockAttributes.JOIN_TOKEN_MANAGER, LockAttributes.JOIN_TOKEN_WORKER)


def _load(args) -> CoordinatorConfig:
    return load_config(config_path=args.config, env_file=args.env_file)


def _engine(config: CoordinatorConfig) -> DockerSwarmEngine:
    return DockerSwarmEngine(timeout=config.engine_timeout_seconds)


def cmd_leader(args):
    """Run one leadership reconciliation."""
    config = _load(args)
    manager = LeaderManager(
        config,
        create_lock_store(config),
        _engine(config),
        create_identity_source(config),
    )
    result = manager.run()
    logger.info(f"Leader run finished: {result.outcome.value}",
                extra={'extra_data': result.to_dict()})
    return ExitCodes.OK


def cmd_worker(args):
    """Join the swarm as a worker if needed."""
    config = _load(args)
    WorkerManager(config, create_lock_store(config), _engine(config)).run()
    return ExitCodes.OK


def _mask(value: str) -> str:
    if not value:
        return value
    return value[:12] + '...' if len(value) > 12 else '***'


def cmd_lock_show(args):
    """Print the cluster lock row."""
    config = _load(args)
    lock = create_lock_store(config).get_lock(config.cluster_name)
    if lock is None:
        print(f"No lock row for cluster '{config.cluster_name}'", file=sys.stderr)
        return ExitCodes.FAILURE

    row = lock.to_dict()
    if not args.show_tokens:
        for attribute in SECRET_ATTRIBUTES:
            row[attribute] = _mask(row[attribute])

    if args.json:
        print(json.dumps(row, indent=2, sort_keys=True))
    else:
        width = max(len(key) for key in row)
        for key, value in row.items():
            print(f"{key:<{width}}  {value or '-'}")
    return ExitCodes.OK


def cmd_deploy(args):
    """Run one deployment hook."""
    config = _load(args)
    context = DeploymentContext.from_environment(required=HOOK_VARS[args.hook])
    hooks = DeploymentHooks(context, create_lock_store(config), _engine(config),
                            cluster_name=config.cluster_name,
                            cert_dir=config.cert_dir)

    if args.hook == 'before-install':
        hooks.before_install()
    elif args.hook == 'application-start':
        hooks.application_start()
    else:
        hooks.validate_service()
    return ExitCodes.OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='swarmlock',
        description='Swarm Leadership & Bootstrap Control CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config', help='YAML settings file')
    parser.add_argument('--env-file', help='Shell-style env file (default /etc/leader-manager.env)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    parser.add_argument('--trace', action='store_true', help='Trace logging')
    parser.add_argument('--log-json', action='store_true', help='JSON log lines')
    parser.add_argument('--log-file', help='Also log to this file')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # leader
    leader_parser = subparsers.add_parser('leader', help='Claim, renew or follow swarm leadership')
    leader_parser.set_defaults(func=cmd_leader)

    # worker
    worker_parser = subparsers.add_parser('worker', help='Join the swarm as a worker')
    worker_parser.set_defaults(func=cmd_worker)

    # lock
    lock_parser = subparsers.add_parser('lock', help='Inspect the cluster lock row')
    lock_sub = lock_parser.add_subparsers(dest='lock_cmd')

    show_parser = lock_sub.add_parser('show', help='Print the lock row')
    show_parser.add_argument('--json', action='store_true', help='JSON output')
    show_parser.add_argument('--show-tokens', action='store_true', help='Do not mask join tokens')
    show_parser.set_defaults(func=cmd_lock_show)

    # deploy
    deploy_parser = subparsers.add_parser('deploy', help='Run a deployment hook')
    deploy_parser.add_argument('hook', choices=sorted(HOOK_VARS))
    deploy_parser.set_defaults(func=cmd_deploy)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, 'func'):
        parser.print_help()
        return ExitCodes.OK

    configure_from_environment(
        verbose=args.verbose,
        trace=args.trace,
        log_file=args.log_file,
        json_format=args.log_json,
    )
    logger.debug("Logging configured", extra={'extra_data': get_logging_state()})

    try:
        result = args.func(args)
        return result if result else ExitCodes.OK
    except ConfigurationError as e:
        handle_error(e, f"swarmlock {args.command}")
        return ExitCodes.CONFIG_ERROR
    except SwarmLockError as e:
        handle_error(e, f"swarmlock {args.command}")
        return ExitCodes.FAILURE
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return ExitCodes.INTERRUPTED


def leader_main() -> int:
    """Entry point of the scheduled leader routine (takes no arguments)."""
    return main(['leader'])


if __name__ == "__main__":
    sys.exit(main())
