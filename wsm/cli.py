#!/usr/bin/env python3
"""
CLI entry point for the wsm Wi-Fi signal mapper.

Defines the following commands:
  wsm survey NAME (--lat LAT --lon LON | --fix-file PATH) [--quick]
  wsm sample NAME (--lat LAT --lon LON | --fix-file PATH) [--samples N] [--label TEXT]
  wsm results NAME [--json]
  wsm clear NAME
  wsm rename NAME AP_ID NEW_NAME --location KEY
  wsm serve NAME (--lat LAT --lon LON | --fix-file PATH) [--port 8000]
  wsm version
"""

import asyncio
import json
import sys
from argparse import ArgumentParser, Namespace
from dataclasses import replace
from importlib.metadata import PackageNotFoundError, version as _get_version

import uvicorn
from rich.console import Console

from wsm.analysis.config import SurveyConfig
from wsm.analysis.results import ResultsAggregator, render_results
from wsm.analysis.status import render_status
from wsm.sampling.campaign import CampaignState
from wsm.sampling.coordinator import SurveyCoordinator
from wsm.server import create_app
from wsm.sources.labels import FixedLabelResolver, PendingLabelResolver
from wsm.sources.nmcli import NmcliRadioSource
from wsm.sources.position import FixFilePositionSource, FixedPositionSource
from wsm.storage.dao import DAO
from wsm.utils.log import get_logger
from wsm.utils.validate import Status

logger = get_logger(__name__)
console = Console()


def _db_path(survey: str, override: str | None = None) -> str:
    return override or f"wsm_{survey}.sqlite"


def _position_source(args: Namespace):
    if args.fix_file:
        return FixFilePositionSource(args.fix_file)
    return FixedPositionSource(args.lat, args.lon)


def _config(args: Namespace) -> SurveyConfig:
    cfg = SurveyConfig.quick() if getattr(args, "quick", False) else SurveyConfig.default()
    if getattr(args, "samples", None):
        cfg = replace(cfg, samples_per_campaign=args.samples)
    return cfg


def survey(args: Namespace) -> None:
    """
    Run live location tracking and AP detection.

    Each line read from stdin answers a pending location-name request if
    there is one, otherwise it starts or stops a sampling campaign.
    EOF or Ctrl-C quits.
    """
    logger.info("Survey: name=%s", args.name)
    dao = DAO(_db_path(args.name, args.db))
    prompts = PendingLabelResolver(
        on_request=lambda key: console.print(f"Enter Location Name for [bold]{key}[/bold]:")
    )
    coordinator = SurveyCoordinator(
        NmcliRadioSource(args.interface),
        _position_source(args),
        dao,
        resolver=FixedLabelResolver(args.label) if args.label else prompts,
        cfg=_config(args),
    )

    def show(status: Status) -> None:
        console.rule()
        console.print(render_status(status), highlight=False)

    async def _run() -> None:
        coordinator.subscribe(show)
        await coordinator.start()
        try:
            while True:
                line = await asyncio.to_thread(sys.stdin.readline)
                if not line:
                    break
                if prompts.pending:
                    prompts.answer(prompts.pending[0], line)
                elif coordinator.campaign is None:
                    await coordinator.start_campaign()
                else:
                    await coordinator.stop_campaign()
        finally:
            prompts.cancel_all()
            await coordinator.shutdown()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Survey stopped")
    finally:
        dao.close()


def sample(args: Namespace) -> None:
    """
    Run exactly one sampling campaign at the current position and exit.
    """
    logger.info("Sample: name=%s, samples=%s", args.name, args.samples)
    dao = DAO(_db_path(args.name, args.db))
    coordinator = SurveyCoordinator(
        NmcliRadioSource(args.interface),
        _position_source(args),
        dao,
        resolver=FixedLabelResolver(args.label),
        cfg=_config(args),
    )

    async def _run():
        await coordinator.start()
        try:
            await coordinator.start_campaign()
            return await coordinator.wait_campaign()
        finally:
            await coordinator.shutdown()

    try:
        result = asyncio.run(_run())
    finally:
        dao.close()
    if result is None or result.state is not CampaignState.DONE:
        logger.error("Campaign did not complete: %s", result.message if result else "no result")
        sys.exit(1)
    logger.info(result.message)


def results(args: Namespace) -> None:
    """
    Print per-location, per-AP statistics.
    """
    dao = DAO(_db_path(args.name, args.db))
    try:
        summaries = ResultsAggregator(dao).summarize()
    finally:
        dao.close()
    if args.json:
        print(json.dumps([s.model_dump() for s in summaries], indent=2))
        return
    for line in render_results(summaries):
        console.print(line, highlight=False)


def clear(args: Namespace) -> None:
    """
    Delete every stored observation for the survey.
    """
    dao = DAO(_db_path(args.name, args.db))
    try:
        dao.clear_all()
    finally:
        dao.close()


def rename(args: Namespace) -> None:
    """
    Give an access point a display name at one location.
    """
    dao = DAO(_db_path(args.name, args.db))
    try:
        rows = dao.rename_access_point(args.ap_id, args.new_name, args.location)
    finally:
        dao.close()
    logger.info("Renamed %s at %s (%d rows)", args.ap_id, args.location, rows)


def serve(args: Namespace) -> None:
    """
    Spin up FastAPI+Uvicorn with the survey loops running behind it.
    """
    logger.info("Serve: name=%s, port=%d", args.name, args.port)
    dao = DAO(_db_path(args.name, args.db))
    coordinator = SurveyCoordinator(
        NmcliRadioSource(args.interface),
        _position_source(args),
        dao,
        resolver=PendingLabelResolver(),
        cfg=_config(args),
    )
    app = create_app(args.name, coordinator)
    try:
        uvicorn.run(app, host=args.host, port=args.port)
    finally:
        dao.close()


def version() -> None:
    """
    Print the installed wsm package version.
    """
    try:
        ver = _get_version("wifi-signal-mapper")
    except PackageNotFoundError:
        ver = "unknown"
    logger.info("wsm version %s", ver)


def _add_common(p: ArgumentParser) -> None:
    p.add_argument("name", type=str, help="Survey name.")
    p.add_argument("--db", type=str, help="SQLite file (default wsm_NAME.sqlite).")


def _add_live(p: ArgumentParser) -> None:
    pos = p.add_mutually_exclusive_group(required=True)
    pos.add_argument("--lat", type=float, help="Fixed latitude.")
    pos.add_argument("--fix-file", type=str, help="JSON file with the latest GPS fix.")
    p.add_argument("--lon", type=float, help="Fixed longitude (with --lat).")
    p.add_argument("--interface", type=str, help="Wi-Fi interface passed to nmcli.")
    p.add_argument("--label", type=str, help="Use this label instead of prompting.")
    p.add_argument("--samples", type=int, help="Rounds per campaign.")
    p.add_argument("--quick", action="store_true", help="Use the quick timing preset.")


def parse_args(argv: list[str] | None = None) -> Namespace:
    """
    Parse command-line arguments and return the populated namespace.
    """
    parser = ArgumentParser(prog="wsm")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # wsm survey
    p = subparsers.add_parser("survey", help="Track location and detect APs live.")
    _add_common(p)
    _add_live(p)

    # wsm sample
    p = subparsers.add_parser("sample", help="Run one sampling campaign.")
    _add_common(p)
    _add_live(p)

    # wsm results
    p = subparsers.add_parser("results", help="Show per-location statistics.")
    _add_common(p)
    p.add_argument("--json", action="store_true", help="Emit JSON.")

    # wsm clear
    p = subparsers.add_parser("clear", help="Delete all observations.")
    _add_common(p)

    # wsm rename
    p = subparsers.add_parser("rename", help="Rename an AP at a location.")
    _add_common(p)
    p.add_argument("ap_id", type=str, help="Access point id (BSSID).")
    p.add_argument("new_name", type=str, help="New display name.")
    p.add_argument("--location", type=str, required=True, help="Location key.")

    # wsm serve
    p = subparsers.add_parser("serve", help="Serve via FastAPI + Uvicorn.")
    _add_common(p)
    _add_live(p)
    p.add_argument("--host", type=str, default="127.0.0.1", help="Bind address.")
    p.add_argument("--port", type=int, default=8000, help="Port number to serve on.")

    # wsm version
    subparsers.add_parser("version", help="Show wsm version and exit.")

    args = parser.parse_args(argv)
    if getattr(args, "lat", None) is not None and args.lon is None:
        parser.error("--lat requires --lon")
    return args


def main() -> None:
    """
    Entry point: dispatch to the selected subcommand.
    """
    args = parse_args()
    match args.command:
        case "survey":
            survey(args)
        case "sample":
            sample(args)
        case "results":
            results(args)
        case "clear":
            clear(args)
        case "rename":
            rename(args)
        case "serve":
            serve(args)
        case "version":
            version()
        case _:
            sys.exit(1)


if __name__ == "__main__":
    main()
