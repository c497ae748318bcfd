"""CLI entry point for the scanner module."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from pathlib import Path

from dotenv import load_dotenv

from .camera import CameraManager, OpenCVFrameSource
from .config import ScannerConfig, load_config
from .errors import ScannerError
from .models import (
    AnalysisFailed,
    AnalysisSuccess,
    CapturedImage,
    LimitReached,
    LookupHit,
    LookupMiss,
    MealEntry,
    ResolvedProduct,
    normalize_code,
)
from .resolution import CodeResolutionClient, create_product_service
from .sinks import JsonlMealLog, WorkflowObserver
from .vision import LabelAnalysisClient, create_analyzer


def main(argv: list[str] | None = None) -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="goodfood-scan",
        description="Scan a product barcode, look up its nutrition, and log the meal",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="path to a TOML configuration file",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="enable debug logging"
    )

    sub = parser.add_subparsers(dest="command")

    # cameras
    sub.add_parser("cameras", help="list available cameras")

    # lookup
    lookup_parser = sub.add_parser("lookup", help="resolve a product code")
    lookup_parser.add_argument("code", type=str, help="barcode digits")
    lookup_parser.add_argument("--json", action="store_true", help="print JSON")

    # analyze
    analyze_parser = sub.add_parser(
        "analyze", help="estimate nutrition from a label photo"
    )
    analyze_parser.add_argument("image", type=str, help="photo of the nutrition label")
    analyze_parser.add_argument("--code", type=str, default=None, help="barcode, if known")
    analyze_parser.add_argument("--json", action="store_true", help="print JSON")

    # scan
    sub.add_parser("scan", help="interactive camera scan session")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    match args.command:
        case "cameras":
            _cmd_cameras()
        case "lookup":
            asyncio.run(_cmd_lookup(config, args))
        case "analyze":
            asyncio.run(_cmd_analyze(config, args))
        case "scan":
            asyncio.run(_cmd_scan(config))


def _cmd_cameras() -> None:
    cameras = OpenCVFrameSource.list_cameras()
    if not cameras:
        print("No cameras found.")
        return
    print(f"Available cameras: {len(cameras)}")
    for idx in cameras:
        print(f"  camera {idx}")


def _print_product(product: ResolvedProduct) -> None:
    print(f"  {product.name}" + (f" ({product.brand})" if product.brand else ""))
    if product.serving_size:
        print(f"  serving: {product.serving_size:g} {product.serving_unit or ''}")
    print(
        f"  {product.calories:g} kcal  P {product.protein:g} g  "
        f"C {product.carbs:g} g  F {product.fat:g} g"
    )
    extras = [
        f"{label} {value:g}{unit}"
        for label, value, unit in (
            ("sodium", product.sodium, " mg"),
            ("sugar", product.sugar, " g"),
            ("fiber", product.fiber, " g"),
        )
        if value is not None
    ]
    if extras:
        print("  " + "  ".join(extras))
    print(f"  source: {product.provenance.value}")
    if product.confidence is not None:
        print(f"  confidence: {product.confidence:g}%")


async def _cmd_lookup(config: ScannerConfig, args) -> None:
    code = normalize_code(args.code)
    if code is None:
        print(f"Code too short: {args.code!r}", file=sys.stderr)
        sys.exit(2)

    service = create_product_service(config)
    try:
        outcome = await CodeResolutionClient(service).resolve(
            code, config.workflow.user_id or None
        )
    finally:
        await service.aclose()

    match outcome:
        case LookupHit(product=product):
            if args.json:
                print(json.dumps(product.to_dict(), ensure_ascii=False, indent=2))
            else:
                print(f"Found {code}:")
                _print_product(product)
        case LimitReached(limit=limit, used=used):
            print(f"Daily lookup limit reached ({used}/{limit}).", file=sys.stderr)
            sys.exit(3)
        case LookupMiss(reason=reason, message=message):
            if reason == "error":
                print(f"Lookup failed: {message}", file=sys.stderr)
            else:
                print(f"No product found for {code}.")
            sys.exit(1)


async def _cmd_analyze(config: ScannerConfig, args) -> None:
    path = Path(args.image)
    if not path.is_file():
        print(f"Image not found: {path}", file=sys.stderr)
        sys.exit(2)
    mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    image = CapturedImage(data=path.read_bytes(), mime_type=mime_type)

    analyzer = create_analyzer(config)
    outcome = await LabelAnalysisClient(analyzer).analyze(
        image, args.code, config.workflow.user_id or None
    )

    match outcome:
        case AnalysisSuccess(product=product):
            if args.json:
                print(json.dumps(product.to_dict(), ensure_ascii=False, indent=2))
            else:
                print("Estimated from label:")
                _print_product(product)
        case LimitReached(limit=limit, used=used):
            print(f"Daily analysis limit reached ({used}/{limit}).", file=sys.stderr)
            sys.exit(3)
        case AnalysisFailed(message=message):
            print(f"Analysis failed: {message}", file=sys.stderr)
            sys.exit(1)


class ConsoleObserver(WorkflowObserver):
    def on_state_change(self, old, new) -> None:
        print(f"[{new.value}]")

    def on_limit_reached(self, event: LimitReached) -> None:
        print(f"Daily {event.kind} limit reached ({event.used}/{event.limit}).")

    def on_error(self, message: str) -> None:
        print(f"! {message}")

    def on_low_confidence(self, confidence: float) -> None:
        print(f"Low confidence ({confidence:g}%): check the values before saving.")

    def on_emit(self, entry: MealEntry) -> None:
        print(f"Logged {entry.name}: {entry.calories} kcal x{entry.multiplier:g}")


_HELP = {
    "scanning": "hold a barcode to the camera, type a code, 'p' photo of label, 'q' quit",
    "resolved": "'y' save, '+'/'-' quantity, 'x N' set quantity, 'e field=value', 'r' rescan, 'q' quit",
    "confirming": "'y' save, '+'/'-' quantity, 'x N' set quantity, 'e field=value', 'r' rescan, 'q' quit",
    "unresolved": "'p' photograph the label, 'r' rescan, 'q' quit",
    "photo_capture": "'a' analyze, 't' retake, 'm' enter manually, 'r' rescan, 'q' quit",
}


def _parse_edit(text: str) -> dict:
    field_name, _, value = text.partition("=")
    field_name = field_name.strip()
    value = value.strip()
    if field_name in ("name", "brand", "serving_unit"):
        return {field_name: value or None}
    return {field_name: float(value) if value else None}


async def _cmd_scan(config: ScannerConfig) -> None:
    from .decoder import BarcodeDecoder
    from .workflow import ScanWorkflow, WorkflowState

    camera = CameraManager(
        OpenCVFrameSource(
            camera_index=config.camera.index,
            width=config.camera.width,
            height=config.camera.height,
        ),
        jpeg_quality=config.camera.jpeg_quality,
    )
    service = create_product_service(config)
    workflow = ScanWorkflow(
        camera,
        CodeResolutionClient(service),
        LabelAnalysisClient(create_analyzer(config)),
        JsonlMealLog(config.meal_log.path),
        decoder=BarcodeDecoder(config.decoder.formats, config.decoder.try_harder),
        observer=ConsoleObserver(),
        user_id=config.workflow.user_id or None,
        interval=config.decoder.interval_ms / 1000,
        low_confidence_threshold=config.workflow.low_confidence_threshold,
    )

    await workflow.open()
    try:
        while workflow.state is not WorkflowState.CLOSED:
            state = workflow.state
            if state in (WorkflowState.RESOLVED, WorkflowState.CONFIRMING):
                _print_product(workflow.editor.product)
                totals = workflow.editor.totals()
                print(
                    f"  x{workflow.editor.multiplier:g} = {totals['calories']} kcal  "
                    f"P {totals['protein']} C {totals['carbs']} F {totals['fat']}"
                )
            print(_HELP.get(state.value, ""))
            line = (await asyncio.to_thread(input, "> ")).strip()

            if workflow.state is not state:
                # the decoder moved on while waiting for input
                continue
            try:
                await _dispatch(workflow, state, line)
            except (ScannerError, ValueError) as e:
                print(f"! {e}")
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await workflow.cancel()
        await service.aclose()


async def _dispatch(workflow, state, line: str) -> None:
    from .workflow import WorkflowState

    if line == "q":
        await workflow.cancel()
        return
    if line == "r" and state is not WorkflowState.SCANNING:
        await workflow.rescan()
        return

    match state:
        case WorkflowState.SCANNING:
            if line == "p":
                await workflow.capture_photo()
            elif line and not await workflow.submit_code(line):
                print("! codes need at least 8 characters")
        case WorkflowState.UNRESOLVED:
            if line == "p":
                await workflow.request_photo()
        case WorkflowState.PHOTO_CAPTURE:
            if line == "a":
                await workflow.analyze()
            elif line == "t":
                await workflow.retake()
            elif line == "m":
                await workflow.enter_manually()
        case WorkflowState.RESOLVED | WorkflowState.CONFIRMING:
            if line == "y":
                await workflow.confirm()
            elif line == "+":
                workflow.increment()
            elif line == "-":
                workflow.decrement()
            elif line.startswith("x "):
                workflow.set_multiplier(float(line[2:]))
            elif line.startswith("e "):
                workflow.edit(**_parse_edit(line[2:]))


if __name__ == "__main__":
    main()
