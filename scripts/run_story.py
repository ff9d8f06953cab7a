#!/usr/bin/env python3
"""
Story client command line

Drives the story client against a live story server using the local
file-backed store (credentials and the story cache live under
STORAGE_DIR, default .storyclient/).

Usage:
    python scripts/run_story.py sign-in --token <credential> [--refresh-token <r>]
    python scripts/run_story.py generate "A robot visits the moon"
    python scripts/run_story.py list
    python scripts/run_story.py list --refresh
    python scripts/run_story.py show <story_id>
    python scripts/run_story.py delete <story_id>
    python scripts/run_story.py resume
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from storyclient.common import get_settings, setup_logging
from storyclient.common.errors import StoryClientError
from storyclient.common.models import JobStatus, LocalCacheEntry
from storyclient.runtime import StoryClientRuntime, create_runtime


def format_duration(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


def print_entries(entries: list[LocalCacheEntry]) -> None:
    if not entries:
        print("No stories yet.")
        return
    for entry in entries:
        when = entry.generated_at.strftime("%Y-%m-%d %H:%M") if entry.generated_at else "-"
        print(
            f"{entry.id:<28} {entry.status.value:<10} {when:<16} "
            f"{format_duration(entry.duration):>6}  {entry.title}"
        )


async def cmd_sign_in(runtime: StoryClientRuntime, args) -> None:
    await runtime.session.sign_in(args.token, args.refresh_token)
    valid = await runtime.session.is_valid()
    print("Signed in." if valid else "Stored credential, but the server did not accept it.")


async def cmd_generate(runtime: StoryClientRuntime, args) -> None:
    def on_progress(status: JobStatus) -> None:
        print(f"  ... {status.value}")

    job_id = await runtime.engine.start_generation(args.prompt, on_progress=on_progress)
    print(f"Started story {job_id}")
    try:
        story = await runtime.engine.wait(job_id)
    except KeyboardInterrupt:
        runtime.engine.cancel(job_id)
        raise
    print(f"\n{story.title} ({story.total_scenes} scenes, {format_duration(story.total_duration)})")
    for scene in story.scenes:
        print(f"\n[{scene.index}] {scene.text}")


async def cmd_list(runtime: StoryClientRuntime, args) -> None:
    if args.refresh:
        entries = await runtime.engine.refresh()
    else:
        entries = await runtime.engine.load_user_stories()
        if runtime.engine.view.error is not None:
            print(f"Showing cached stories ({runtime.engine.view.error.message})")
    print_entries(entries)


async def cmd_show(runtime: StoryClientRuntime, args) -> None:
    story = await runtime.engine.get_story(args.story_id)
    print(f"{story.title}\n{story.prompt}\n")
    for scene in story.scenes:
        print(f"[{scene.index}] {format_duration(scene.start_offset)} {scene.text}")
        if scene.audio_ref:
            print(f"    audio: {scene.audio_ref}")


async def cmd_delete(runtime: StoryClientRuntime, args) -> None:
    deleted = await runtime.engine.delete_story(args.story_id)
    print("Deleted." if deleted else "The server did not delete the story.")


async def cmd_resume(runtime: StoryClientRuntime, args) -> None:
    job_ids = await runtime.engine.resume_pending()
    if not job_ids:
        print("Nothing to resume.")
        return
    for job_id in job_ids:
        print(f"Waiting for {job_id}")
    for job_id in job_ids:
        try:
            story = await runtime.engine.wait(job_id)
            print(f"{job_id}: {story.title}")
        except StoryClientError as e:
            print(f"{job_id}: {e.message}")


COMMANDS = {
    "sign-in": cmd_sign_in,
    "generate": cmd_generate,
    "list": cmd_list,
    "show": cmd_show,
    "delete": cmd_delete,
    "resume": cmd_resume,
}


async def run(args) -> bool:
    settings = get_settings()
    runtime = create_runtime(settings)
    async with runtime:
        try:
            await COMMANDS[args.command](runtime, args)
            return True
        except StoryClientError as e:
            print(f"\n❌ {type(e).__name__}: {e.message}")
            return False


def main():
    """Main entry point."""
    import argparse
    parser = argparse.ArgumentParser(
        description="Story client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_story.py sign-in --token $ID_TOKEN --refresh-token $REFRESH
  python scripts/run_story.py generate "A robot visits the moon"
  python scripts/run_story.py list --refresh
""",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level override (default: LOG_LEVEL setting)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sign_in = sub.add_parser("sign-in", help="Store a credential pair")
    sign_in.add_argument("--token", required=True, help="Bearer credential")
    sign_in.add_argument("--refresh-token", default=None, help="Refresh credential")

    generate = sub.add_parser("generate", help="Generate a story and wait for it")
    generate.add_argument("prompt", help="Story prompt")

    list_cmd = sub.add_parser("list", help="List stories")
    list_cmd.add_argument(
        "--refresh",
        action="store_true",
        help="Silent refresh (no error report on failure)",
    )

    show = sub.add_parser("show", help="Show a completed story")
    show.add_argument("story_id")

    delete = sub.add_parser("delete", help="Delete a story")
    delete.add_argument("story_id")

    sub.add_parser("resume", help="Resume polling of unfinished stories")

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(args.log_level or settings.log_level, json_logs=settings.json_logs)

    success = asyncio.run(run(args))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
