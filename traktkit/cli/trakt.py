"""Command line access to the Trakt client."""

from __future__ import annotations

import argparse
import threading
from typing import Any, Callable, Dict, Optional, Sequence, get_args

from traktkit.backend.common.logging import init_logging
from traktkit.backend.common.tasks import RequestHandle
from traktkit.backend.common.types import Completion, Failure, LogLevel, Result
from traktkit.backend.information_handlers.trakt_manager import TraktManager

from ._utils import (
    build_subparser,
    exit_with_error,
    print_json,
    require_subcommand,
    to_serializable,
)

_DEFAULT_TIMEOUT = 60.0


def _await(start: Callable[[Completion], RequestHandle], timeout: float) -> Any:
    box: Dict[str, Result] = {}
    received = threading.Event()

    def _receive(result: Result) -> None:
        box["result"] = result
        received.set()

    handle = start(_receive)
    if not received.wait(timeout):
        handle.cancel()
        exit_with_error(f"Timed out after {timeout:.0f}s waiting for Trakt")
    result = box["result"]
    if isinstance(result, Failure):
        exit_with_error(result.error.describe())
    return result.value


def _status_payload(manager: TraktManager) -> Dict[str, Any]:
    credential = manager.credential()
    return {
        "state": manager.auth_state().value,
        "signed_in": credential.signed_in,
        "has_refresh_token": credential.refresh_token is not None,
        "expires_at": to_serializable(credential.expires_at),
    }


def _handle_auth_url(manager: TraktManager, _: argparse.Namespace) -> None:
    if manager.oauth_url is None:
        exit_with_error("Set TRAKT_CLIENT_ID, TRAKT_CLIENT_SECRET and TRAKT_REDIRECT_URI first")
    print_json({"oauth_url": manager.oauth_url})


def _handle_auth_exchange(manager: TraktManager, args: argparse.Namespace) -> None:
    _await(lambda done: manager.exchange_authorization_code(args.code, done), args.timeout)
    print_json(_status_payload(manager))


def _handle_auth_refresh(manager: TraktManager, args: argparse.Namespace) -> None:
    if args.force:
        _await(manager.exchange_refresh_token, args.timeout)
    else:
        _await(manager.refresh_if_needed, args.timeout)
    print_json(_status_payload(manager))


def _handle_auth_status(manager: TraktManager, _: argparse.Namespace) -> None:
    print_json(_status_payload(manager))


def _handle_auth_clear(manager: TraktManager, _: argparse.Namespace) -> None:
    manager.sign_out()
    print_json(_status_payload(manager))


def _handle_show(manager: TraktManager, args: argparse.Namespace) -> None:
    show = _await(lambda done: manager.get_show(args.id, done, extended=args.extended), args.timeout)
    print_json(to_serializable(show))


def _handle_movie(manager: TraktManager, args: argparse.Namespace) -> None:
    movie = _await(lambda done: manager.get_movie(args.id, done, extended=args.extended), args.timeout)
    print_json(to_serializable(movie))


def _handle_people(manager: TraktManager, args: argparse.Namespace) -> None:
    if args.media_type == "show":
        people = _await(lambda done: manager.get_show_people(args.id, done), args.timeout)
    else:
        people = _await(lambda done: manager.get_movie_people(args.id, done), args.timeout)
    print_json(to_serializable(people))


def _handle_comments(manager: TraktManager, args: argparse.Namespace) -> None:
    comments = _await(lambda done: manager.get_show_comments(args.id, done), args.timeout)
    print_json(to_serializable(comments))


def _handle_search(manager: TraktManager, args: argparse.Namespace) -> None:
    results = _await(
        lambda done: manager.search(args.query, done, media_type=args.media_type, year=args.year),
        args.timeout,
    )
    print_json(to_serializable(results))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="traktkit",
        description="Authenticate against Trakt and query catalog endpoints.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        type=str.upper,
        choices=get_args(LogLevel),
        help="Logging level.",
    )
    parser.add_argument("--timeout", type=float, default=_DEFAULT_TIMEOUT, help="Seconds to wait for each call.")
    subparsers = parser.add_subparsers(dest="command")
    require_subcommand(subparsers)

    # Auth ---------------------------------------------------------------
    auth = build_subparser(subparsers, "auth", help="OAuth authorization-code flow.")
    auth_sub = auth.add_subparsers(dest="auth_command")
    require_subcommand(auth_sub)

    auth_url = build_subparser(auth_sub, "url", help="Print the URL the user must open to authorize.")
    auth_url.set_defaults(func=_handle_auth_url)

    auth_exchange = build_subparser(auth_sub, "exchange", help="Exchange an authorization code for tokens.")
    auth_exchange.add_argument("code", help="Code shown by Trakt after authorization.")
    auth_exchange.set_defaults(func=_handle_auth_exchange)

    auth_refresh = build_subparser(auth_sub, "refresh", help="Refresh the access token when it has expired.")
    auth_refresh.add_argument("--force", action="store_true", help="Refresh even if the token is still valid.")
    auth_refresh.set_defaults(func=_handle_auth_refresh)

    auth_status = build_subparser(auth_sub, "status", help="Show the current authentication state.")
    auth_status.set_defaults(func=_handle_auth_status)

    auth_clear = build_subparser(auth_sub, "clear", help="Delete stored credentials.")
    auth_clear.set_defaults(func=_handle_auth_clear)

    # Catalog ------------------------------------------------------------
    show = build_subparser(subparsers, "show", help="Show summary.")
    show.add_argument("id", help="Trakt id, slug or IMDb id.")
    show.add_argument("--extended", help="Extended info level, e.g. 'full'.")
    show.set_defaults(func=_handle_show)

    movie = build_subparser(subparsers, "movie", help="Movie summary.")
    movie.add_argument("id", help="Trakt id, slug or IMDb id.")
    movie.add_argument("--extended", help="Extended info level, e.g. 'full'.")
    movie.set_defaults(func=_handle_movie)

    people = build_subparser(subparsers, "people", help="Cast and crew for a show or movie.")
    people.add_argument("media_type", choices=["show", "movie"])
    people.add_argument("id", help="Trakt id, slug or IMDb id.")
    people.set_defaults(func=_handle_people)

    comments = build_subparser(subparsers, "comments", help="Comments posted on a show.")
    comments.add_argument("id", help="Trakt id, slug or IMDb id.")
    comments.set_defaults(func=_handle_comments)

    search = build_subparser(subparsers, "search", help="Text search.")
    search.add_argument("query", help="Text to search for.")
    search.add_argument("--media-type", choices=["movie", "show", "episode", "person", "list"])
    search.add_argument("--year", type=int)
    search.set_defaults(func=_handle_search)

    return parser


def main(argv: Optional[Sequence[str]] = None, *, manager: Optional[TraktManager] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    init_logging(args.log_level)

    owned = manager is None
    manager = manager or TraktManager()
    try:
        args.func(manager, args)
    finally:
        if owned:
            manager.close()


if __name__ == "__main__":  # pragma: no cover
    main()
