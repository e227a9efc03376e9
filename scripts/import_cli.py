#!/usr/bin/env python3
"""
A tiny CLI to drive the document import API locally.

Usage examples:
  python scripts/import_cli.py --org org_1 --user user_1 integrations
  python scripts/import_cli.py --org org_1 --user user_1 auth start --provider dropbox
  python scripts/import_cli.py --org org_1 --user user_1 files --provider dropbox --path /Contracts
  python scripts/import_cli.py --org org_1 --user user_1 import --provider notion --file-id <page-id> --no-create
  python scripts/import_cli.py --org org_1 --user user_1 export --provider dropbox --document-id <doc-id> --folder /Contracts
  python scripts/import_cli.py --org org_1 --user user_1 sync --provider dropbox

Notes:
- This CLI calls the local FastAPI server at http://localhost:8000 (override with --api-base).
- --org/--user stand in for the identity headers the upstream identity provider normally sets.
"""
from __future__ import annotations

import argparse
import json
import sys
import requests

API_BASE = "http://localhost:8000"


def _headers(args: argparse.Namespace) -> dict[str, str]:
    return {"X-Organization-Id": args.org, "X-User-Id": args.user}


def cmd_integrations(args: argparse.Namespace) -> int:
    r = requests.get(f"{args.api_base}/integrations", headers=_headers(args), timeout=15)
    r.raise_for_status()
    for item in r.json()["integrations"]:
        print(f"{item['provider']:<14} {item['status']:<12} synced={item['syncedItemsCount']}")
    return 0


def cmd_auth_start(args: argparse.Namespace) -> int:
    params = {}
    if args.desired_return_url:
        params["desired_return_url"] = args.desired_return_url
    r = requests.get(
        f"{args.api_base}/auth/{args.provider}/start", headers=_headers(args), params=params, timeout=15
    )
    r.raise_for_status()
    print(r.json()["redirect_url"])  # the authorization URL to open in browser
    return 0


def cmd_files(args: argparse.Namespace) -> int:
    params = {"provider": args.provider, "path": args.path}
    r = requests.get(f"{args.api_base}/integrations/import", headers=_headers(args), params=params, timeout=60)
    r.raise_for_status()
    print(json.dumps(r.json(), indent=2))
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    payload = {
        "provider": args.provider,
        "fileId": args.file_id,
        "filePath": args.file_path,
        "documentType": args.document_type,
        "createDocument": args.create,
    }
    r = requests.post(f"{args.api_base}/integrations/import", headers=_headers(args), json=payload, timeout=120)
    r.raise_for_status()
    print(json.dumps(r.json(), indent=2))
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    payload = {"documentId": args.document_id, "databaseId": args.database_id}
    # the API reads the destination from the field that fits the provider
    payload.update({"folderPath": args.folder, "folderId": args.folder, "parentPageId": args.folder})
    r = requests.post(
        f"{args.api_base}/integrations/{args.provider}/export", headers=_headers(args), json=payload, timeout=120
    )
    r.raise_for_status()
    print(json.dumps(r.json(), indent=2))
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    r = requests.get(f"{args.api_base}/integrations/{args.provider}/sync", headers=_headers(args), timeout=15)
    r.raise_for_status()
    print(json.dumps(r.json(), indent=2))
    return 0


def cmd_disconnect(args: argparse.Namespace) -> int:
    r = requests.delete(f"{args.api_base}/integrations/{args.provider}", headers=_headers(args), timeout=15)
    r.raise_for_status()
    print(json.dumps(r.json(), indent=2))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(prog="docimport")
    parser.add_argument("--api-base", default=API_BASE)
    parser.add_argument("--org", required=True)
    parser.add_argument("--user", required=True)
    sub = parser.add_subparsers(dest="cmd")

    p_int = sub.add_parser("integrations")
    p_int.set_defaults(func=cmd_integrations)

    p_auth = sub.add_parser("auth")
    sub_auth = p_auth.add_subparsers(dest="auth_cmd")
    p_auth_start = sub_auth.add_parser("start")
    p_auth_start.add_argument("--provider", required=True)
    p_auth_start.add_argument("--desired-return-url", dest="desired_return_url")
    p_auth_start.set_defaults(func=cmd_auth_start)

    p_files = sub.add_parser("files")
    p_files.add_argument("--provider", required=True)
    p_files.add_argument("--path", default="")
    p_files.set_defaults(func=cmd_files)

    p_import = sub.add_parser("import")
    p_import.add_argument("--provider", required=True)
    p_import.add_argument("--file-id", dest="file_id")
    p_import.add_argument("--file-path", dest="file_path")
    p_import.add_argument("--document-type", dest="document_type", default="OTHER")
    p_import.add_argument("--no-create", dest="create", action="store_false")
    p_import.set_defaults(func=cmd_import)

    p_export = sub.add_parser("export")
    p_export.add_argument("--provider", required=True)
    p_export.add_argument("--document-id", dest="document_id", required=True)
    p_export.add_argument("--folder", help="Dropbox path, Drive folder id or Notion parent page id")
    p_export.add_argument("--database-id", dest="database_id", help="Notion database to add the page to")
    p_export.set_defaults(func=cmd_export)

    p_sync = sub.add_parser("sync")
    p_sync.add_argument("--provider", required=True)
    p_sync.set_defaults(func=cmd_sync)

    p_disc = sub.add_parser("disconnect")
    p_disc.add_argument("--provider", required=True)
    p_disc.set_defaults(func=cmd_disconnect)

    args = parser.parse_args()
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    if args.cmd == "import" and not (args.file_id or args.file_path):
        print("import needs --file-id or --file-path", file=sys.stderr)
        return 2
    try:
        return args.func(args)
    except requests.HTTPError as e:
        print(f"HTTP error: {e}\n{e.response.text if e.response is not None else ''}", file=sys.stderr)
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
