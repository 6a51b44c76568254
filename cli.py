"""
Command-line interface for the content pipeline.
Creates a draft artifact and drives it through every stage from the terminal.

Run with: python cli.py "Why small teams ship faster" --type blog
"""
import argparse
import asyncio

from config.settings import load_settings
from content_pipeline.artifacts.models import Artifact, ArtifactType
from content_pipeline.bootstrap import build_pipeline
from content_pipeline.pipeline.state_machine import PipelineProgress, PipelineRun
from content_pipeline.utils.logging import setup_logging


def print_progress(progress: PipelineProgress):
    print(f"⏳ [{progress.stage_index + 1}/{progress.total_stages}] "
          f"{progress.current_stage} (from {progress.current_status.value})")


def print_run(run: PipelineRun):
    for stage in run.stages_completed:
        result = run.stage_results[stage]
        marker = " (mock)" if result.mocked else ""
        print(f"  ✓ {stage}{marker} in {result.duration_ms}ms")
        for error in result.errors:
            print(f"    ⚠️ {error}")
    for stage in run.optional_failures:
        print(f"  ⚠️ {stage} failed, skipped")
    if run.error:
        where = f" in {run.failed_stage}" if run.failed_stage else ""
        print(f"  ✗ {run.error.category.value}{where}: {run.error.message}")
        if run.rolled_back_to:
            print(f"    Rolled back to: {run.rolled_back_to.value}")
    status = run.final_status.value if run.final_status else "unknown"
    print(f"Status: {status}")


async def main(args: argparse.Namespace):
    overrides = {}
    if not args.live:
        overrides["mock_all_stages"] = "MOCK"
    settings = load_settings(**overrides)
    setup_logging(settings.log_level, json_output=settings.log_json)

    print("\n📝 Content Pipeline")
    print("=" * 50)
    print(f"Mode: {settings.mock_all_stages}")

    pipeline = build_pipeline(settings)
    machine = pipeline.state_machine

    try:
        artifact = await pipeline.store.create(Artifact(
            type=ArtifactType(args.type),
            title=args.title,
            tone=args.tone,
            metadata={"author_brief": args.brief} if args.brief else {},
        ))
        print(f"✓ Created artifact {artifact.id}")

        run = await machine.advance(artifact.id, on_progress=print_progress)
        print_run(run)

        while run.waiting_for_approval:
            skeleton = (await pipeline.store.get(artifact.id)).content
            print("\n--- Skeleton ---")
            print(skeleton)
            print("----------------")
            answer = input("\nApprove foundations? [y/N]: ").strip().lower()
            if answer not in ("y", "yes"):
                print("Left waiting for approval.")
                return
            run = await machine.approve(artifact.id, on_progress=print_progress)
            print_run(run)

        if run.success:
            final = await pipeline.store.get(artifact.id)
            print("\n--- Content ---")
            print(final.content)
    finally:
        await pipeline.aclose()
        print("\n🩺 Circuits:", pipeline.health()["status"])


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one artifact through the content pipeline")
    parser.add_argument("title", help="Artifact title / topic")
    parser.add_argument("--type", choices=[t.value for t in ArtifactType], default="blog")
    parser.add_argument("--tone", default="professional")
    parser.add_argument("--brief", default="", help="Author brief stored with the artifact")
    parser.add_argument("--live", action="store_true",
                        help="Use the configured provider instead of canned responses")
    return parser.parse_args()


if __name__ == "__main__":
    try:
        asyncio.run(main(parse_args()))
    except KeyboardInterrupt:
        pass
