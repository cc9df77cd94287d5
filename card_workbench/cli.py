"""
Command line interface.

    card-workbench inspect card.png
    card-workbench tasks card.png --json
    card-workbench prompt card.png task-3 --target default
    card-workbench backfill card.png task-3 edited.txt -o out.png
    card-workbench serve
"""

import argparse
import io
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

from card_workbench.config import ConfigLoader, ConfigLoadError, SystemConfig
from card_workbench.services.character_cards import (
    FormatError,
    PNGMetadataHandler,
    SourceFormat,
    parse_card_file,
)
from card_workbench.services.workbench_service import TaskNotFoundError, WorkbenchSession

logger = logging.getLogger(__name__)


def _load_config(path: Optional[str]) -> SystemConfig:
    loader = ConfigLoader()
    return loader.load_system_config(Path(path) if path else None)


def _open_session(args) -> WorkbenchSession:
    parsed = parse_card_file(args.file)
    return WorkbenchSession(parsed, _load_config(args.config))


def _image_size(png_data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(png_data)) as image:
            width, height = image.size
            return f"{width}x{height} ({image.mode})"
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Pillow could not open image: {e}")
        return "unreadable"


def cmd_inspect(args) -> int:
    session = _open_session(args)
    source = session.source
    data = session.card.data

    print(f"File:     {source.source_name}")
    print(f"Format:   {source.source_format.value} ({source.shape})")

    if source.source_format is SourceFormat.PNG and source.source_bytes:
        print(f"Image:    {_image_size(source.source_bytes)}")
        print("\nChunks:")
        for chunk in PNGMetadataHandler.list_chunks(source.source_bytes):
            keyword = f"  {chunk.keyword}" if chunk.is_text and chunk.keyword else ""
            crc = "ok" if chunk.crc_valid else "BAD CRC"
            print(f"  {chunk.offset:>8}  {chunk.type_name}  {chunk.length:>8}  {crc}{keyword}")

    print(f"\nName:     {data.name or '(unnamed)'}")
    print(f"Volume:   {session.word_count} characters")
    print(f"Greetings: {len(data.alternate_greetings)} alternate")
    print(f"Lorebook: {len(data.book_entries)} entries")
    print(f"Segmented: {'yes' if session.is_segmented else 'no'} "
          f"({len(session.groups)} group(s), {len(session.tasks)} task(s))")

    for warning in source.warnings:
        print(f"Warning:  {warning}")
    return 0


def cmd_tasks(args) -> int:
    session = _open_session(args)

    if args.json:
        payload = [group.model_dump(mode='json') for group in session.groups]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    for group in session.groups:
        print(f"{group.id}  {group.name}")
        for task in group.tasks:
            span = f"  [{task.range.start}-{task.range.end}]" if task.range else ""
            fields = ", ".join(f.value for f in task.fields)
            print(f"  {task.id}  {len(task.content):>6} chars  {fields}{span}")
    return 0


def cmd_prompt(args) -> int:
    session = _open_session(args)
    print(session.prompt_for(args.task_id, args.target))
    return 0


def cmd_backfill(args) -> int:
    session = _open_session(args)
    result = Path(args.result_file).read_text(encoding='utf-8')
    session.complete_task(args.task_id, result)
    exported = session.export(preserve_text_chunks=args.preserve_text_chunks or None)

    if args.output:
        output = Path(args.output)
    else:
        # Never overwrite the input by default
        exported_name = Path(exported.filename)
        output = Path(args.file).parent / f"{exported_name.stem}_edited{exported_name.suffix}"

    output.write_bytes(exported.content)
    print(f"Wrote {output} ({len(exported.content)} bytes)")
    return 0


def cmd_serve(args) -> int:
    from card_workbench.main import main as serve_main
    serve_main()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="card-workbench",
        description="Split character cards into editing tasks and merge edited text back"
    )
    parser.add_argument("--config", type=str, help="Path to system.yaml (default: config/system.yaml)")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("inspect", help="Show chunks and card summary")
    p.add_argument("file")
    p.set_defaults(func=cmd_inspect)

    p = sub.add_parser("tasks", help="List work groups and tasks")
    p.add_argument("file")
    p.add_argument("--json", action="store_true", help="Print groups as JSON")
    p.set_defaults(func=cmd_tasks)

    p = sub.add_parser("prompt", help="Print the prompt for one task")
    p.add_argument("file")
    p.add_argument("task_id")
    p.add_argument("--target", type=str, help="Instruction target name")
    p.set_defaults(func=cmd_prompt)

    p = sub.add_parser("backfill", help="Merge an edited result and write the card")
    p.add_argument("file")
    p.add_argument("task_id")
    p.add_argument("result_file")
    p.add_argument("-o", "--output", type=str, help="Output path")
    p.add_argument(
        "--preserve-text-chunks",
        action="store_true",
        help="Keep unrelated PNG text chunks"
    )
    p.set_defaults(func=cmd_backfill)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        return args.func(args)
    except FormatError as e:
        print(f"Error: {e} ({e.kind.value})", file=sys.stderr)
        return 1
    except TaskNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ConfigLoadError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
