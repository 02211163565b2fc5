"""
Intune Device Compliance Report — Main Orchestrator

Usage:
    python -m intune_compliance_report report.csv                      # default profile
    python -m intune_compliance_report report.csv --profile contoso-prod
    python -m intune_compliance_report report.csv --config config.json
    python -m intune_compliance_report report.csv --delegated          # device-code auth flow
    python -m intune_compliance_report report.csv --filter "operatingSystem eq 'Windows'"

Profile management:
    python -m intune_compliance_report profile add <name> --tenant-id ... --client-id ...
    python -m intune_compliance_report profile list
    python -m intune_compliance_report profile remove <name>
    python -m intune_compliance_report profile set-default <name>

This tool is STRICTLY READ-ONLY. It never modifies devices or policies.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import (
    AUTH_MODES,
    AuthConfig,
    CertificateAuth,
    ClientSecretAuth,
    DelegatedAuth,
    EngineConfig,
    OutputConfig,
)
from .safety.guardian import SafetyGuardian
from .auth.authenticator import AuthenticationError, Authenticator
from .graph.client import GraphClient
from .collectors import IntuneComplianceSource
from .report import ComplianceReport, ReportAbortedError, generate_report
from .reporting import ExportError, export_csv, export_json
from .profiles import ProfileStore, TenantProfile, resolve_profile

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_EXPORT_FAILED = 2


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m intune_compliance_report profile {add|list|remove|set-default}")
    return EXIT_OK


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m intune_compliance_report profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return EXIT_OK

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Client ID':<38s} {'Auth':<12s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*12} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        print(f"  {p.name:<20s} {p.tenant_id:<38s} {p.client_id:<38s} {p.auth_mode:<12s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        auth_mode=args.auth_mode,
        cert_path=args.cert_path,
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return EXIT_OK


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
    else:
        print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_OK


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
    else:
        print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _profile_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intune_compliance_report profile",
        description="Manage tenant profiles",
    )
    prof_sub = parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--auth-mode", choices=AUTH_MODES, default="certificate", help="Authentication mode")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")
    return parser


def _report_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intune_compliance_report",
        description="Intune device compliance setting report (READ-ONLY)",
        epilog="Run 'intune_compliance_report profile --help' to manage tenant profiles.",
    )
    parser.add_argument("export_path", type=Path, help="CSV file to write")
    parser.add_argument(
        "--profile", "-p",
        default=None,
        help="Tenant profile name to use (run 'profile list' to see available)",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--delegated",
        action="store_true",
        help="Use delegated (device-code) authentication",
    )
    mode.add_argument(
        "--secret",
        action="store_true",
        help="Use client-secret authentication (secret from config or INTUNE_REPORT_CLIENT_SECRET)",
    )

    parser.add_argument("--cert-path", type=Path, help="Path to base64-encoded certificate file (overrides profile)")
    parser.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    parser.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    parser.add_argument(
        "--filter",
        dest="device_filter",
        default=None,
        help="OData $filter applied when listing managed devices",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Devices scanned concurrently in each pass (default: 4)",
    )
    parser.add_argument("--json", action="store_true", help="Also write the report as JSON next to the CSV")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    argv = sys.argv[1:] if argv is None else list(argv)
    if argv and argv[0] == "profile":
        args = _profile_parser().parse_args(argv[1:])
        args.command = "profile"
        return args
    args = _report_parser().parse_args(argv)
    args.command = "report"
    return args


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _ids_from_config(auth: AuthConfig) -> Optional[tuple[str, str, str]]:
    if auth.certificate:
        c = auth.certificate
        return c.tenant_id, c.client_id, c.certificate_path
    for section in (auth.secret, auth.delegated):
        if section:
            return section.tenant_id, section.client_id, "./base64.txt"
    return None


def _fail(message: str):
    print(f"\n❌ {message}")
    sys.exit(EXIT_ABORTED)


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build run configuration from config file, profile, and CLI flags (in rising precedence)."""
    if args.config:
        if not args.config.exists():
            _fail(f"Config file not found: {args.config}")
        config = EngineConfig.from_file(args.config)
    else:
        config = EngineConfig()

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            _fail(f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles.")
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    if args.delegated:
        mode = "delegated"
    elif args.secret:
        mode = "secret"
    elif profile:
        mode = profile.auth_mode
    else:
        mode = config.auth.mode
    if mode not in AUTH_MODES:
        _fail(f"Unknown auth mode '{mode}'. Expected one of: {', '.join(AUTH_MODES)}")
    config.auth.mode = mode

    if profile:
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = str(args.cert_path) if args.cert_path else profile.resolve_cert_path()
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
    else:
        ids = _ids_from_config(config.auth)
        if ids is None:
            print("\n❌ No tenant credentials found. Use one of:")
            print("   • --profile <name>             (from saved profiles)")
            print("   • --tenant-id X --client-id Y  (ad-hoc)")
            print("   • --config config.json         (JSON config file)")
            sys.exit(EXIT_ABORTED)
        tenant_id, client_id, cert_path = ids
        if args.cert_path:
            cert_path = str(args.cert_path)

    if mode == "certificate":
        password = config.auth.certificate.certificate_password if config.auth.certificate else ""
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=password,
        )
    elif mode == "secret":
        secret = config.auth.secret.client_secret if config.auth.secret else ""
        config.auth.secret = ClientSecretAuth(tenant_id=tenant_id, client_id=client_id, client_secret=secret)
    else:
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)

    if args.device_filter:
        config.collection.device_filter = args.device_filter
    if args.concurrency is not None:
        config.collection.device_concurrency = max(1, args.concurrency)
    config.output.export_path = str(args.export_path)
    config.output.write_json = args.json or config.output.write_json
    config.verbose = args.verbose or config.verbose
    return config


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def generate_reports(report: ComplianceReport, output: OutputConfig) -> list[Path]:
    """Write the CSV and, when requested, the JSON copy."""
    created = []

    path = export_csv(report, output.csv_path)
    created.append(path)
    print(f"  📊 CSV:   {path}")

    if output.write_json:
        path = export_json(report, output.json_path)
        created.append(path)
        print(f"  📄 JSON:  {path}")

    return created


def _print_summary(report: ComplianceReport):
    meta = report.metadata
    print(f"  Devices:              {meta['device_count']}")
    print(f"  Setting columns:      {meta['column_count']}")
    print(f"  Discovery failures:   {meta['discovery_failures']}")
    print(f"  Row failures:         {meta['row_failures']}")
    for w in meta["warnings"]:
        print(f"      ⚠  [{w['stage']}] {w['message']}")
    graph = meta.get("graph")
    if graph:
        print(f"  Graph requests:       {graph['total_requests']} "
              f"({graph['throttle_events']} throttled)")


async def main_async(argv: Optional[list[str]] = None) -> int:
    """Async entry point. Returns the process exit code."""
    args = parse_args(argv)

    if args.command == "profile":
        return _cmd_profile(args)

    config = build_config(args)
    configure_logging(config.verbose)

    guardian = SafetyGuardian()
    guardian.print_banner()

    print(f"\n📂 Export:  {config.output.csv_path.resolve()}")
    if config.collection.device_filter:
        print(f"🔎 Filter:  {config.collection.device_filter}")

    # --- Authentication ---
    print("\n🔐 Authenticating...")
    authenticator = Authenticator(config.auth)
    try:
        token = await authenticator.acquire_token()
    except AuthenticationError as e:
        print(f"❌ Authentication failed: {e}")
        return EXIT_ABORTED
    print("✅ Authentication successful.")

    # --- Collection: device listing, column discovery, rows ---
    print("\n" + "=" * 70)
    print(" COLLECTING DEVICE COMPLIANCE STATES")
    print("=" * 70 + "\n")
    async with GraphClient(access_token=token, guardian=guardian) as client:
        source = IntuneComplianceSource(client, config.collection)
        try:
            report = await generate_report(
                source,
                device_filter=config.collection.device_filter,
                concurrency=config.collection.device_concurrency,
            )
        except ReportAbortedError as e:
            print(f"  ❌ {e}")
            if e.authorization:
                print("     The app registration needs these Graph application permissions:")
                for perm, why in Authenticator.list_required_permissions().items():
                    print(f"       • {perm}: {why}")
            return EXIT_ABORTED
        report.metadata["graph"] = client.get_stats()
    report.metadata["safety"] = guardian.get_audit_record()

    _print_summary(report)

    # --- Export ---
    print("\n" + "=" * 70)
    print(" EXPORT")
    print("=" * 70 + "\n")
    try:
        created = generate_reports(report, config.output)
    except ExportError as e:
        print(f"  ❌ {e}")
        if e.path == config.output.csv_path:
            print(f"     {len(e.report.rows)} rows were built but not saved.")
        else:
            print(f"     CSV saved to {config.output.csv_path}; {e.path} was not written.")
        return EXIT_EXPORT_FAILED

    print(f"\n  ✅ {len(report.rows)} devices × {len(report.columns)} settings "
          f"written to {len(created)} file(s).\n")
    return EXIT_OK


def main():
    """Synchronous entry point for `python -m intune_compliance_report`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
