"""Command-line entry point: ingest one slot or a batch file.

Side effects run inline (no background pool), so every cache and audit row is
written before the process exits. Per-item failures in a batch are isolated;
partial ingestion is success.

Run:
  python ingestion/jobs/run_ingestion.py --name "Mental" --provider "Nolimit City"
  python ingestion/jobs/run_ingestion.py --file slots.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

# Ensure `backend/` is on sys.path so `import app...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

import httpx  # noqa: E402

import app.models as _models  # noqa: E402,F401
from app.core.db import create_db_engine, create_session_factory  # noqa: E402
from app.repositories.ingestion_repo import IngestionRepository  # noqa: E402
from app.services.dispatcher import InlineDispatcher  # noqa: E402
from ingestion.core.config import IngestionSettings, load_settings  # noqa: E402
from ingestion.core.errors import IngestionError  # noqa: E402
from ingestion.core.extractor import GeminiClient, ImageSafetyFinder, SlotExtractor  # noqa: E402
from ingestion.core.pipeline import IngestionPipeline, RequestContext  # noqa: E402

# Ensure logs are visible when run from a scheduler or console.
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")

CLI_REQUESTER = "cli"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest slot metadata via the AI pipeline.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--name", help="Slot name to ingest")
    target.add_argument("--file", type=Path, help="JSON array of {name, provider?} objects, or {\"batch\": [...]}")
    parser.add_argument("--provider", help="Provider hint for --name")
    parser.add_argument("--skip-cache", action="store_true")
    parser.add_argument("--skip-image", action="store_true")
    parser.add_argument("--force-refresh", action="store_true")
    parser.add_argument("--config", type=Path, help="YAML settings override file")
    return parser


def load_batch(path: Path) -> list[Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict) and isinstance(data.get("batch"), list):
        data = data["batch"]
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array or an object with a 'batch' array")
    return data


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


async def run(args: argparse.Namespace, settings: IngestionSettings, pipeline_factory) -> int:
    async with httpx.AsyncClient() as http:
        pipeline: IngestionPipeline = pipeline_factory(http)
        context = RequestContext(requested_by=CLI_REQUESTER)

        if args.file is not None:
            items = load_batch(args.file)
            batch = await pipeline.ingest_batch(items, context)
            _print(
                {
                    "ok": True,
                    "mode": "batch",
                    **batch.summary,
                    "results": [r.to_response() for r in batch.results],
                    "errors": batch.errors,
                }
            )
            return 0

        payload = {
            "name": args.name,
            "provider": args.provider,
            "skip_cache": args.skip_cache,
            "skip_image": args.skip_image,
            "force_refresh": args.force_refresh,
        }
        try:
            result = await pipeline.ingest(payload, context)
        except IngestionError as e:
            _print(e.to_json())
            return 1
        _print({"ok": True, "mode": "single", **result.to_response()})
        return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)

    engine = create_db_engine()
    session_factory = create_session_factory(engine)
    repository = IngestionRepository(session_factory, settings)
    dispatcher = InlineDispatcher()

    def pipeline_factory(http: httpx.AsyncClient) -> IngestionPipeline:
        client = GeminiClient(http, settings)
        return IngestionPipeline(
            repository,
            SlotExtractor(client),
            ImageSafetyFinder(http, client, settings),
            dispatcher,
            settings,
        )

    try:
        return asyncio.run(run(args, settings, pipeline_factory))
    except (OSError, ValueError) as e:
        print(f"Input error: {e}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
