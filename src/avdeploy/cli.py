"""
Command Line Interface Module

Provides CLI commands for AVD deployment and configuration.
"""

import sys
import argparse
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .azure_cli import AzureCli, INSTALL_URL
from .conditional_access import ConditionalAccessExcluder, ExclusionReport
from .config_loader import ConfigLoader
from .deploy_log import configure_logging, DEFAULT_LOG_FILE
from .exceptions import AvdDeployError, AzureCliError
from .groups import GroupManager
from .orchestrator import Orchestrator
from .prompts import Prompter
from .roles import RoleAssigner, build_role_plan, build_scopes
from .service_principals import find_storage_service_principal, manual_consent_instructions
from .session import AzureSession
from .state import DeploymentState, DEFAULT_STATE_FILE
from .storage_name import StorageAccountName, normalize_storage_account
from .template_builder import InfraTemplateBuilder, SessionHostTemplateBuilder
from .validator import ConfigValidator

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Inputs resolved for one command."""

    loader: ConfigLoader
    state: DeploymentState
    subscription_id: Optional[str] = None

    @property
    def config(self) -> Dict[str, Any]:
        return self.loader.config


class AvdDeployCLI:
    """Command-line interface for avdeploy."""

    def __init__(self, cli: Optional[AzureCli] = None, prompter: Optional[Prompter] = None,
                 session_factory: Optional[Callable[..., AzureSession]] = None):
        """
        Initialize the CLI.

        Args:
            cli: Azure CLI wrapper
            prompter: Interactive prompt helper
            session_factory: Builds the AzureSession from (subscription_id, tenant_id, interactive)
        """
        self.cli = cli or AzureCli()
        self.prompter = prompter or Prompter()
        self.session_factory = session_factory or self._default_session
        self.parser = self._create_parser()

    def _default_session(self, subscription_id, tenant_id=None, interactive=False) -> AzureSession:
        return AzureSession(subscription_id, tenant_id=tenant_id, interactive=interactive, cli=self.cli)

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser."""
        parser = argparse.ArgumentParser(
            prog='avdeploy',
            description='avdeploy - Azure Virtual Desktop provisioning and configuration',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Validate configuration
  avdeploy validate --config config/examples/avd-enterprise.yaml

  # Deploy storage, private endpoint, host pool, application group and workspace
  avdeploy deploy-infra --config config/examples/avd-enterprise.yaml

  # Deploy and register the session hosts
  avdeploy deploy-hosts --config config/examples/avd-enterprise.yaml

  # Create groups, assign roles and exclude the storage app from Conditional Access
  avdeploy configure --config config/examples/avd-enterprise.yaml

  # Only update Conditional Access exclusions, showing what would change
  avdeploy exclude-ca --storage-account stavdprofiles --dry-run
            """
        )

        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            '--state-file',
            help=f'JSON file remembering earlier answers (default: {DEFAULT_STATE_FILE})'
        )
        common.add_argument(
            '--log-file',
            help=f'Deployment log, appended to (default: {DEFAULT_LOG_FILE})'
        )
        common.add_argument(
            '--subscription-id',
            help='Azure subscription ID'
        )
        common.add_argument(
            '--tenant-id',
            help='Entra ID tenant ID'
        )
        common.add_argument(
            '--interactive',
            action='store_true',
            help='Sign in through the browser instead of reusing the Azure CLI session'
        )
        common.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Enable verbose output'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # Validate command
        validate_parser = subparsers.add_parser(
            'validate',
            help='Validate configuration file'
        )
        validate_parser.add_argument(
            '--config', '-c',
            required=True,
            help='Path to YAML configuration file'
        )

        # Generate command
        generate_parser = subparsers.add_parser(
            'generate',
            help='Generate an ARM template from configuration'
        )
        generate_parser.add_argument(
            'template',
            choices=['infra', 'hosts'],
            help='Which template to generate'
        )
        generate_parser.add_argument(
            '--config', '-c',
            required=True,
            help='Path to YAML configuration file'
        )
        generate_parser.add_argument(
            '--output', '-o',
            required=True,
            help='Output path for generated ARM template'
        )
        generate_parser.add_argument(
            '--format',
            choices=['json', 'yaml'],
            default='json',
            help='Output format (default: json)'
        )

        # Deploy infrastructure command
        infra_parser = subparsers.add_parser(
            'deploy-infra',
            parents=[common],
            help='Deploy storage, private endpoint and AVD control plane'
        )
        infra_parser.add_argument('--config', '-c', required=True, help='Path to YAML configuration file')
        infra_parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Validate and generate template without deploying'
        )

        # Deploy session hosts command
        hosts_parser = subparsers.add_parser(
            'deploy-hosts',
            parents=[common],
            help='Deploy Entra-joined session hosts and register them'
        )
        hosts_parser.add_argument('--config', '-c', required=True, help='Path to YAML configuration file')
        hosts_parser.add_argument(
            '--registration-token',
            help='Host pool registration token (default: from the infra deployment)'
        )
        hosts_parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Validate and generate template without deploying'
        )

        # Configure command
        configure_parser = subparsers.add_parser(
            'configure',
            parents=[common],
            help='Create groups, assign roles and update Conditional Access'
        )
        configure_parser.add_argument('--config', '-c', required=True, help='Path to YAML configuration file')
        configure_parser.add_argument(
            '--skip-conditional-access',
            action='store_true',
            help='Do not touch Conditional Access policies'
        )

        # Conditional Access command
        ca_parser = subparsers.add_parser(
            'exclude-ca',
            parents=[common],
            help='Exclude the storage application from Conditional Access policies'
        )
        ca_parser.add_argument('--config', '-c', help='Path to YAML configuration file')
        ca_parser.add_argument(
            '--storage-account',
            help='Storage account name or <name>.file.core.windows.net'
        )
        ca_parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show which policies would change without updating them'
        )

        # Tag command
        tag_parser = subparsers.add_parser(
            'tag-vms',
            parents=[common],
            help='Apply tags to the session host VMs'
        )
        tag_parser.add_argument('--config', '-c', required=True, help='Path to YAML configuration file')
        tag_parser.add_argument(
            '--tag',
            action='append',
            default=[],
            metavar='KEY=VALUE',
            help='Tag to apply (repeatable, overrides configuration tags)'
        )

        # Version command
        subparsers.add_parser('version', help='Show version information')

        return parser

    def run(self, args: Optional[list] = None):
        """
        Run the CLI with the given arguments.

        Args:
            args: Command-line arguments (defaults to sys.argv[1:])
        """
        parsed_args = self.parser.parse_args(args)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        handlers = {
            'validate': self._validate,
            'generate': self._generate,
            'deploy-infra': self._deploy_infra,
            'deploy-hosts': self._deploy_hosts,
            'configure': self._configure,
            'exclude-ca': self._exclude_ca,
            'tag-vms': self._tag_vms,
            'version': self._version,
        }

        try:
            return handlers[parsed_args.command](parsed_args)
        except AvdDeployError as e:
            logger.error("%s", e)
            print(f"\n❌ {e}", file=sys.stderr)
            return 1
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            if getattr(parsed_args, 'verbose', False):
                import traceback
                traceback.print_exc()
            return 1

    def _load_and_validate(self, config_path: str) -> Optional[ConfigLoader]:
        """Load configuration and print validation results; None when invalid."""
        print(f"Loading configuration from {config_path}...")
        loader = ConfigLoader(config_path)
        config = loader.load()

        print("Validating configuration...")
        validator = ConfigValidator()
        is_valid, errors, warnings = validator.validate(config)

        if warnings:
            print("\nWarnings:")
            for warning in warnings:
                print(f"  ⚠️  {warning}")

        if not is_valid:
            print("\nValidation failed:")
            for error in errors:
                print(f"  ❌ {error}")
            return None

        print("✅ Configuration is valid")
        return loader

    def _prepare(self, args, require_config: bool = True) -> Optional[RunContext]:
        """Load config and state, start logging, resolve the subscription."""
        if args.config:
            loader = self._load_and_validate(args.config)
            if loader is None:
                return None
        elif require_config:
            raise AvdDeployError("--config is required")
        else:
            loader = ConfigLoader.from_dict({})

        log_file = args.log_file or loader.get('logging.file', DEFAULT_LOG_FILE)
        configure_logging(log_file, verbose=args.verbose)
        logger.info("avdeploy %s started", args.command)

        state = DeploymentState(args.state_file or loader.get('logging.state_file', DEFAULT_STATE_FILE))
        state.load()

        return RunContext(loader=loader, state=state)

    def _connect(self, ctx: RunContext, args) -> None:
        """Check the Azure CLI, sign in and select the subscription."""
        if not self.cli.is_installed():
            raise AzureCliError(f"Azure CLI is not installed or not in PATH. Install from: {INSTALL_URL}")

        tenant_id = self._tenant_id(ctx, args)
        account = self.cli.ensure_login(tenant_id)

        subscription_id = (
            args.subscription_id
            or ctx.loader.get('subscription_id')
            or ctx.state.get('subscription_id')
        )
        if not subscription_id:
            subscription_id = self._choose_subscription()
        if subscription_id != account.get('id'):
            self.cli.set_subscription(subscription_id)

        ctx.subscription_id = subscription_id
        ctx.state.set('subscription_id', subscription_id)
        ctx.state.set('tenant_id', tenant_id or account.get('tenantId'))

    def _tenant_id(self, ctx: RunContext, args) -> Optional[str]:
        return args.tenant_id or ctx.loader.get('tenant_id') or ctx.state.get('tenant_id')

    def _choose_subscription(self) -> str:
        subscriptions = self.cli.list_subscriptions()
        if not subscriptions:
            raise AvdDeployError("No subscriptions available to this account")
        index = self.prompter.choose(
            "Subscriptions",
            [f"{s.get('name')} ({s.get('id')})" for s in subscriptions],
        )
        return subscriptions[index]['id']

    def _session(self, ctx: RunContext, args) -> AzureSession:
        return self.session_factory(ctx.subscription_id, self._tenant_id(ctx, args), args.interactive)

    def _storage_account(self, ctx: RunContext, override: Optional[str] = None) -> StorageAccountName:
        """Storage account from the command line, configuration, state or a prompt."""
        value = (
            override
            or ctx.loader.get('storage.account_name')
            or ctx.state.get('storage_account')
        )
        if not value:
            value = self.prompter.ask("Storage account name or FQDN")
        account = normalize_storage_account(value)
        ctx.state.set('storage_account', account.name)
        return account

    def _validate(self, args) -> int:
        """Handle validate command."""
        loader = self._load_and_validate(args.config)
        return 0 if loader is not None else 1

    def _generate(self, args) -> int:
        """Handle generate command."""
        loader = self._load_and_validate(args.config)
        if loader is None:
            return 1

        print("Generating ARM template...")
        if args.template == 'infra':
            builder = InfraTemplateBuilder(loader.config)
        else:
            builder = SessionHostTemplateBuilder(loader.config)
        template = builder.build()

        output_path = Path(args.output)

        if args.format == 'json':
            builder.save_template(str(output_path))
        else:  # yaml
            import yaml
            with open(output_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(template, f, default_flow_style=False, sort_keys=False)

        print(f"\n✅ Template generated: {output_path}")
        return 0

    def _deploy_infra(self, args) -> int:
        """Handle deploy-infra command."""
        ctx = self._prepare(args)
        if ctx is None:
            return 1

        account = self._storage_account(ctx)
        ctx.loader.set('storage.account_name', account.name)

        print("\nGenerating ARM template...")
        template = InfraTemplateBuilder(ctx.config).build()

        if args.dry_run:
            print("\n✅ Dry run completed successfully")
            print(f"Template would deploy {len(template['resources'])} resources")
            return 0

        self._connect(ctx, args)
        orchestrator = Orchestrator(ctx.config, cli=self.cli)
        orchestrator.ensure_resource_group(create=True)

        print("\nDeploying to Azure...")
        outputs = orchestrator.deploy(template, {}, f"{orchestrator.name}-infra")
        expires = datetime.now(timezone.utc) + timedelta(
            hours=ctx.loader.get('host_pool.registration_hours', 8)
        )

        ctx.state.update({
            'resource_group': orchestrator.resource_group,
            'host_pool': ctx.loader.get('host_pool.name', 'hp-avd'),
            'application_group': ctx.loader.get_application_group_name(),
            'registration_token': outputs.get('registrationToken'),
            'registration_token_expires': expires.isoformat(timespec='seconds'),
            'private_endpoint_ip': outputs.get('privateEndpointIp'),
        })
        ctx.state.save()

        print("\n✅ Infrastructure deployment completed successfully")
        orchestrator.print_follow_up(
            account.fqdn,
            ctx.loader.get('storage.share_name', 'profiles'),
            outputs.get('privateEndpointIp'),
            {key: value['name'] for key, value in ctx.loader.get_groups_config().items()},
        )
        return 0

    def _deploy_hosts(self, args) -> int:
        """Handle deploy-hosts command."""
        ctx = self._prepare(args)
        if ctx is None:
            return 1

        account = self._storage_account(ctx)
        ctx.loader.set('storage.account_name', account.name)

        print("\nGenerating ARM template...")
        builder = SessionHostTemplateBuilder(ctx.config)
        template = builder.build()
        names = builder.session_host_names()

        if args.dry_run:
            print("\n✅ Dry run completed successfully")
            print(f"Template would deploy {len(names)} session hosts: {', '.join(names)}")
            return 0

        admin_username = (
            ctx.loader.get('session_hosts.admin_username')
            or ctx.state.get('admin_username')
            or self.prompter.ask("Local admin username", default="avdadmin")
        )
        admin_password = self.prompter.ask_secret("Local admin password")
        ctx.state.set('admin_username', admin_username)

        self._connect(ctx, args)
        orchestrator = Orchestrator(ctx.config, cli=self.cli)
        orchestrator.ensure_resource_group()
        token = self._registration_token(ctx, args, orchestrator)

        print("\nDeploying to Azure...")
        orchestrator.deploy(template, {
            'adminUsername': admin_username,
            'adminPassword': admin_password,
            'registrationToken': token,
        }, f"{orchestrator.name}-hosts")

        ctx.state.set('session_hosts', names)
        ctx.state.save()
        print("\n✅ Session host deployment completed successfully")

        tags = ctx.loader.get_tags()
        if tags:
            session = self._session(ctx, args)
            orchestrator.resources = session.resources
            tagged, failed = orchestrator.tag_session_hosts(
                ctx.loader.get('session_hosts.prefix', 'avd'), tags
            )
            print(f"Tagged {len(tagged)} VMs")
            if failed:
                print(f"❌ Failed to tag: {', '.join(failed)}")
                return 1
        return 0

    def _registration_token(self, ctx: RunContext, args, orchestrator: Orchestrator) -> str:
        """
        Host pool registration token from the command line, saved state, the
        infra deployment outputs or a prompt.

        A saved token past its recorded expiry is not reused.
        """
        if args.registration_token:
            return args.registration_token

        token = ctx.state.get('registration_token')
        expires = ctx.state.get('registration_token_expires')
        if token and _has_expired(expires):
            logger.warning("Saved registration token expired at %s", expires)
            print(f"⚠️  Saved registration token expired at {expires}; "
                  "re-run deploy-infra or enter a new token")
            return self.prompter.ask_secret("Host pool registration token")

        if not token:
            try:
                outputs = orchestrator.get_deployment_outputs(f"{orchestrator.name}-infra")
            except AzureCliError as e:
                logger.warning("Could not read deployment %s-infra: %s", orchestrator.name, e)
                outputs = {}
            token = outputs.get('registrationToken')
            if token:
                logger.info("Using registration token from deployment %s-infra", orchestrator.name)

        return token or self.prompter.ask_secret("Host pool registration token")

    def _configure(self, args) -> int:
        """Handle configure command."""
        ctx = self._prepare(args)
        if ctx is None:
            return 1

        account = self._storage_account(ctx)
        self._connect(ctx, args)
        session = self._session(ctx, args)

        orchestrator = Orchestrator(ctx.config, cli=self.cli)
        orchestrator.ensure_resource_group()

        print("\nResolving Entra ID groups...")
        group_ids = self._resolve_groups(ctx, GroupManager(session.graph))
        ctx.state.set('groups', group_ids)
        ctx.state.save()

        print("\nAssigning roles...")
        scopes = build_scopes(
            ctx.subscription_id,
            orchestrator.resource_group,
            storage_account=account.name,
            application_group=ctx.loader.get_application_group_name(),
        )
        plan = build_role_plan(group_ids, scopes, ctx.loader.get_role_assignments())
        results = RoleAssigner(session.authorization).assign_many(plan)
        created = sum(1 for _, was_created in results if was_created)
        print(f"✅ {created} role assignments created, {len(results) - created} already present")

        exit_code = 0
        ca_config = ctx.loader.get_conditional_access_config()
        if args.skip_conditional_access or not ca_config.get('enabled', True):
            print("\nSkipping Conditional Access")
        else:
            principal = find_storage_service_principal(session.graph, account)
            excluder = ConditionalAccessExcluder(session.graph, ca_config.get('managed_policy_patterns'))
            report = excluder.exclude(principal.app_id)
            self._print_exclusion_report(report)
            if not report.succeeded:
                exit_code = 1
            print("\n" + manual_consent_instructions(principal))

        ctx.state.save()
        return exit_code

    def _resolve_groups(self, ctx: RunContext, manager: GroupManager) -> Dict[str, str]:
        """Find or create every configured group; returns key to object id."""
        saved = ctx.state.get('groups') or {}
        group_ids = {}
        for key, settings in ctx.loader.get_groups_config().items():
            search = settings.get('search')
            group = None
            if search:
                group = manager.resolve_group(search, self.prompter.choose)
            if group is None:
                group = manager.ensure_group(settings['name'], settings.get('description', ''))
            if saved.get(key) and saved[key] != group.object_id:
                logger.warning("Group '%s' changed from %s to %s", key, saved[key], group.object_id)
            print(f"  {key}: {group.display_name} ({group.object_id})")
            group_ids[key] = group.object_id
        return group_ids

    def _print_exclusion_report(self, report: ExclusionReport):
        print(f"\nConditional Access exclusions for app {report.app_id}:")
        for outcome in report.outcomes:
            line = f"  {outcome.action:17s} {outcome.display_name}"
            if outcome.error:
                line += f" ({outcome.error})"
            print(line)
        if report.succeeded:
            print("✅ Conditional Access policies are up to date")
        else:
            print(f"❌ {len(report.failed)} policies could not be updated; re-run to retry")

    def _exclude_ca(self, args) -> int:
        """Handle exclude-ca command."""
        ctx = self._prepare(args, require_config=False)
        if ctx is None:
            return 1

        account = self._storage_account(ctx, args.storage_account)
        self._connect(ctx, args)
        session = self._session(ctx, args)

        principal = find_storage_service_principal(session.graph, account)
        ca_config = ctx.loader.get_conditional_access_config()
        excluder = ConditionalAccessExcluder(session.graph, ca_config.get('managed_policy_patterns'))
        report = excluder.exclude(principal.app_id, dry_run=args.dry_run)
        self._print_exclusion_report(report)

        ctx.state.save()
        return 0 if report.succeeded else 1

    def _tag_vms(self, args) -> int:
        """Handle tag-vms command."""
        ctx = self._prepare(args)
        if ctx is None:
            return 1

        tags = dict(ctx.loader.get_tags())
        for item in args.tag:
            key, sep, value = item.partition('=')
            if not sep or not key:
                raise AvdDeployError(f"Invalid tag '{item}', expected KEY=VALUE")
            tags[key] = value
        if not tags:
            raise AvdDeployError("No tags configured or given with --tag")

        self._connect(ctx, args)
        session = self._session(ctx, args)
        orchestrator = Orchestrator(ctx.config, cli=self.cli, resources=session.resources)

        tagged, failed = orchestrator.tag_session_hosts(
            ctx.loader.get('session_hosts.prefix', 'avd'), tags
        )
        ctx.state.save()

        print(f"\n✅ Tagged {len(tagged)} VMs with {json.dumps(tags)}")
        if failed:
            print(f"❌ Failed to tag: {', '.join(failed)}")
            return 1
        return 0

    def _version(self, args) -> int:
        """Handle version command."""
        from . import __version__
        print(f"avdeploy version {__version__}")
        return 0


def _has_expired(expires: Optional[str]) -> bool:
    if not expires:
        return False
    try:
        moment = datetime.fromisoformat(expires)
    except ValueError:
        logger.warning("Ignoring unreadable token expiry '%s'", expires)
        return False
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment <= datetime.now(timezone.utc)


def main():
    """Main entry point for the CLI."""
    cli = AvdDeployCLI()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
