"""Command-line interface for keyward."""

from __future__ import annotations

import argparse
import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import AppConfig, load_config
from .errors import ConfigurationError, Lockout, ProvisioningError, format_failure
from .interaction import (
    AutoDecisions,
    AutoResponseHandler,
    CLIInteractionHandler,
    InteractiveDecisions,
    UserInteractionHandler,
)
from .orchestrator import EXIT_CODES, DecisionSource, SessionResult, SessionStatus
from .security import AuditReport, HardeningWorkflow
from .utils.logging import get_logger, set_verbose
from .wizard import WizardWorkflow, resolve_project_path

logger = get_logger(__name__)

CONFIGURATION_EXIT_CODE = 2


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    interaction: UserInteractionHandler
    decisions: DecisionSource


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="Resumable setup and SSH hardening of freshly provisioned hosts.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Answer prompts with defaults; retry while allowed, then save and exit",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    new_parser = subparsers.add_parser("new", help="Start a new setup wizard session")
    new_parser.add_argument("project_name", help="Name of the project")
    new_parser.add_argument(
        "--path", type=str, default=None,
        help="Directory to create the project in (default: current directory)",
    )
    new_parser.add_argument(
        "--here", action="store_true",
        help="Use --path (or the current directory) itself as the project directory",
    )

    resume_parser = subparsers.add_parser("resume", help="Resume a wizard session")
    resume_parser.add_argument(
        "session_id", nargs="?", default=None,
        help="Session to resume (default: the most recently updated one)",
    )
    resume_parser.add_argument(
        "--path", type=str, default=None,
        help="Project directory holding the session (default: current directory)",
    )

    sessions_parser = subparsers.add_parser("sessions", help="List wizard sessions")
    sessions_parser.add_argument(
        "--path", type=str, default=None,
        help="Project directory to look in (default: current directory)",
    )

    security_parser = subparsers.add_parser("security", help="SSH hardening of one host")
    security_sub = security_parser.add_subparsers(dest="security_command", required=True)
    for name, help_text in (
        ("setup", "Run or resume the hardening workflow"),
        ("status", "Show recorded hardening progress"),
        ("audit", "Check the live host and score its security"),
        ("reset", "Discard recorded hardening progress"),
    ):
        sub = security_sub.add_parser(name, help=help_text)
        sub.add_argument("--host", help="Target host (default: ssh.host from config)")
        if name == "reset":
            sub.add_argument(
                "--confirm", action="store_true",
                help="Required: confirm that all recorded progress is discarded",
            )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    if args.yes or config.interaction.mode == "auto":
        interaction: UserInteractionHandler = AutoResponseHandler()
        decisions: DecisionSource = AutoDecisions()
    else:
        interaction = CLIInteractionHandler(use_rich=config.interaction.use_rich)
        decisions = InteractiveDecisions(interaction)
    return CLIContext(config=config, interaction=interaction, decisions=decisions)


def _report(result: SessionResult) -> int:
    print(f"\n{result.message}")
    if result.resume_hint and result.exit_code != 0:
        print(f"💡 Resume with: {result.resume_hint}")
    return result.exit_code


def handle_new_command(args: argparse.Namespace, context: CLIContext) -> int:
    project_path = resolve_project_path(args.project_name, path=args.path, here=args.here)
    workflow = WizardWorkflow(context.config, context.interaction, context.decisions)
    session = workflow.create_session(args.project_name, project_path)
    print(f"🆔 Session: {session.id}")
    print(f"📁 Project: {session.project_path}")
    return _report(workflow.run(session))


def handle_resume_command(args: argparse.Namespace, context: CLIContext) -> int:
    workflow = WizardWorkflow(context.config, context.interaction, context.decisions)
    session = workflow.find_session(args.path or Path.cwd(), args.session_id)
    if session.finished:
        print(f"✅ Session {session.id} has already been completed")
        return 0
    progress = workflow.registry.progress(session)
    print(f"📋 Resuming session {session.id} ({session.project_name})")
    print(f"📊 Progress: {progress.describe()}")
    if progress.next_step:
        print(f"🎯 Next step: {progress.next_step}")
    return _report(workflow.run(session))


def handle_sessions_command(args: argparse.Namespace, context: CLIContext) -> int:
    workflow = WizardWorkflow(context.config, context.interaction, context.decisions)
    root = Path(args.path) if args.path else Path.cwd()
    sessions = workflow.store_for(root).list()
    if not sessions:
        print("📁 No wizard sessions found. Start one with 'keyward new <project-name>'.")
        return 0

    print(f"{'ID':<14} {'Project':<24} {'Progress':<22} {'Updated':<28}")
    print("-" * 90)
    for session in sessions:
        progress = workflow.registry.progress(session)
        status = "✅ done" if session.finished else progress.describe()
        print(f"{session.id:<14} {session.project_name:<24} {status:<22} {session.updated_at:<28}")
    return 0


def _hardening_workflow(
    args: argparse.Namespace, context: CLIContext, *, validate: bool = False
) -> HardeningWorkflow:
    config = context.config
    if args.host:
        config = dataclasses.replace(config, ssh=dataclasses.replace(config.ssh, host=args.host))
    if validate:
        config.validate()
    return HardeningWorkflow(config, context.interaction, context.decisions, host=config.ssh.host)


def _print_status(workflow: HardeningWorkflow) -> None:
    summary = workflow.status()
    connection = summary["connection"]
    print(f"\n{'='*60}")
    print(f"🔐 Security hardening: {summary['host']}")
    print(f"{'='*60}")
    print(f"📊 Progress:  {summary['progress']}")
    print(f"📍 Phase:     {summary['current_phase']}")
    print(f"🎯 Next step: {summary['next_step'] or '-'}")
    print(f"🔗 Access:    {connection['current_username'] or '?'}@port {connection['current_port'] or '?'}")
    print(f"🛡️  Hardened:  {'yes' if connection['hardening_applied'] else 'no'}")
    if summary["errors"]:
        print(f"⚠️  Errors:    {summary['errors']} recorded")
    if summary["connect"]:
        print(f"💻 Connect:   {summary['connect']}")
    print(f"📄 State:     {summary['state_file']}")
    print(f"{'='*60}\n")


def _print_audit(report: AuditReport, saved_to: Path) -> None:
    print(f"\n{'='*60}")
    print(f"🔍 Security audit: {report.host} ({report.username}@port {report.port})")
    print(f"{'='*60}")
    for check in report.checks:
        mark = "✅" if check.passed else "❌"
        print(f"{mark} {check.name:<13} {check.description}")
    if report.pending_updates:
        print(f"📦 {report.pending_updates} package updates pending")
    print(f"\n📊 Score: {report.score}/100  {report.risk_level}")
    for index, check in enumerate(report.failed, 1):
        print(f"  {index}. {check.severity.upper()}: {check.recommendation}")
    print(f"📄 Report:  {saved_to}")
    print(f"{'='*60}\n")


def _audit(workflow: HardeningWorkflow) -> int:
    try:
        report = workflow.audit()
    except Lockout as exc:
        print(format_failure(exc))
        return EXIT_CODES[SessionStatus.LOCKED_OUT]
    except ConfigurationError:
        raise
    except ProvisioningError as exc:
        print(format_failure(exc))
        return EXIT_CODES[SessionStatus.CANCELLED]
    _print_audit(report, workflow.audit_path)
    return 0


def handle_security_command(args: argparse.Namespace, context: CLIContext) -> int:
    if args.security_command == "setup":
        workflow = _hardening_workflow(args, context, validate=True)
        if workflow.registry.can_resume(workflow.tracker):
            print(f"📋 Resuming hardening of {workflow.host}")
        return _report(workflow.run())

    workflow = _hardening_workflow(args, context)
    if args.security_command == "status":
        _print_status(workflow)
        return 0

    if args.security_command == "audit":
        return _audit(workflow)

    if args.security_command == "reset":
        if not args.confirm:
            print("❌ Refusing to reset without --confirm")
            return CONFIGURATION_EXIT_CODE
        workflow.reset()
        print(f"✅ Hardening state for {workflow.host} reset")
        return 0

    raise ValueError(f"Unsupported security command: {args.security_command}")


def dispatch_command(args: argparse.Namespace) -> int:
    set_verbose(args.verbose)
    context = _build_context(args)

    if args.command == "new":
        return handle_new_command(args, context)
    if args.command == "resume":
        return handle_resume_command(args, context)
    if args.command == "sessions":
        return handle_sessions_command(args, context)
    if args.command == "security":
        return handle_security_command(args, context)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args)
    except ConfigurationError as exc:
        print(format_failure(exc))
        return CONFIGURATION_EXIT_CODE
