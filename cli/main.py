#!/usr/bin/env python3
"""
pooltx - command line interface for pool video transcoding.

Talks to the admin API (api/admin.py); it does not touch the database or
MediaConvert directly.
"""

import argparse
import os
import sys

import httpx

from api.errors import truncate_error
from config import ADMIN_PORT, ERROR_DETAIL_MAX_LENGTH, ERROR_SUMMARY_MAX_LENGTH

# Default timeout for quick API requests (30 seconds)
DEFAULT_API_TIMEOUT = int(os.getenv("POOLTX_API_TIMEOUT", "30"))

# A batch run blocks until its jobs resolve or the poll budget is spent
# (60 checks x 15s per window by default), so allow well over an hour
TRANSCODE_TIMEOUT = int(os.getenv("POOLTX_TRANSCODE_TIMEOUT", "7200"))

_default_api_url = f"http://localhost:{ADMIN_PORT}"
API_BASE = os.getenv("POOLTX_ADMIN_API_URL", _default_api_url).rstrip("/") + "/api"


class CLIError(Exception):
    """Custom exception for CLI errors."""

    pass


def safe_json_response(response, default_error="Request failed"):
    """
    Safely parse JSON response with proper error handling.

    Args:
        response: httpx.Response object
        default_error: Default error message if response has no detail

    Returns:
        Parsed JSON data if successful

    Raises:
        CLIError: If response status is not successful or JSON parsing fails
    """
    if not response.is_success:
        try:
            detail = response.json().get("detail", response.text)
        except (ValueError, httpx.ResponseNotRead):
            detail = truncate_error(response.text, ERROR_DETAIL_MAX_LENGTH) if response.text else default_error
        raise CLIError(f"API error ({response.status_code}): {detail}")

    try:
        return response.json()
    except (ValueError, httpx.ResponseNotRead):
        raise CLIError(f"Invalid JSON response: {truncate_error(response.text, ERROR_SUMMARY_MAX_LENGTH)}")


def _project_params(args) -> dict:
    return {"project_id": args.project} if getattr(args, "project", None) else {}


def _run(func, args):
    """Run a command, turning transport and API errors into exit code 1."""
    try:
        func(args)
    except httpx.ConnectError:
        print(f"Error: Could not connect to admin API at {API_BASE}")
        sys.exit(1)
    except httpx.TimeoutException:
        print(f"Error: Request timed out while connecting to {API_BASE}")
        sys.exit(1)
    except CLIError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}")
        sys.exit(1)


def _transcode(args):
    response = httpx.post(f"{API_BASE}/pool/transcode", params=_project_params(args), timeout=TRANSCODE_TIMEOUT)
    result = safe_json_response(response)

    print(result.get("message", "Done"))
    results = result.get("results")
    if not results:
        return

    for item in results.get("successful", []):
        print(f"  OK    {item['poolVideoId']}  {item.get('transcodedUrl', '')}")
    for item in results.get("failed", []):
        print(f"  FAIL  {item['poolVideoId']}  {item.get('error', '')}")


def _check(args):
    response = httpx.post(f"{API_BASE}/pool/check", params=_project_params(args), timeout=DEFAULT_API_TIMEOUT * 10)
    result = safe_json_response(response)

    print(result.get("message", "Done"))
    details = result.get("details") or {}
    if details.get("checked"):
        print(
            f"  checked={details.get('checked', 0)} updated={details.get('updated', 0)} "
            f"failed={details.get('failed', 0)} possibly_stuck={details.get('possiblyStuck', 0)} "
            f"orphaned={details.get('orphaned', 0)}"
        )


def _status(args):
    response = httpx.get(f"{API_BASE}/pool/{args.project_id}/status", timeout=DEFAULT_API_TIMEOUT)
    stats = safe_json_response(response).get("stats") or {}

    print(f"Pool transcoding status for project {args.project_id}:")
    print(f"{'Total':<20} {stats.get('total', 0)}")
    print(f"{'Ready':<20} {stats.get('ready', 0)}")
    print(f"{'Processing':<20} {stats.get('processing', 0)}")
    print(f"{'Error':<20} {stats.get('error', 0)}")
    print(f"{'Needs transcoding':<20} {stats.get('needsTranscoding', 0)}")
    print(f"{'Possibly stuck':<20} {stats.get('possiblyStuck', 0)}")
    print(f"{'Recently completed':<20} {stats.get('recentlyCompleted', 0)}")


def cmd_transcode(args):
    """Run one batch transcoding pass."""
    _run(_transcode, args)


def cmd_check(args):
    """Reconcile videos stuck in processing."""
    _run(_check, args)


def cmd_status(args):
    """Show transcoding counts for a project."""
    _run(_status, args)


def main():
    parser = argparse.ArgumentParser(prog="pooltx", description="Pool video transcoding")
    subparsers = parser.add_subparsers(dest="command", required=True)

    transcode_parser = subparsers.add_parser("transcode", help="Transcode a batch of pool videos")
    transcode_parser.add_argument("-p", "--project", help="Only process videos of this project")
    transcode_parser.set_defaults(func=cmd_transcode)

    check_parser = subparsers.add_parser("check", help="Re-check videos left in processing")
    check_parser.add_argument("-p", "--project", help="Only check videos of this project")
    check_parser.set_defaults(func=cmd_check)

    status_parser = subparsers.add_parser("status", help="Show transcoding status of a project")
    status_parser.add_argument("project_id", help="Project ID")
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
