import argparse
import asyncio
import logging
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from admission_scheduler import AdmissionScheduler, load_scheduler_config

from generation_worker.error_handler import GenerationError
from generation_worker.failure_logger import setup_failure_logger
from generation_worker.settings import get_log_level, get_worker_settings
from generation_worker.usage_ledger import UsageLedger
from generation_worker.worker import GenerationWorker, PageJob, PageResult

IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}

console = Console()


def find_page_images(pages_dir: Path) -> list[Path]:
    return sorted(
        path
        for path in pages_dir.iterdir()
        if path.is_file() and path.suffix.lower() in IMAGE_MIME_TYPES
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="generation_worker",
        description="Generate questions for rasterized textbook pages under per-model quotas.",
    )
    parser.add_argument("pages_dir", type=Path, help="Directory of page images")
    parser.add_argument(
        "--prompt-file",
        type=Path,
        required=True,
        help="Text file with the generation prompt sent with every page",
    )
    parser.add_argument(
        "--concurrency", type=int, default=None, help="Override WORKER_CONCURRENCY"
    )
    return parser


async def run(pages_dir: Path, prompt: str, concurrency: int | None = None) -> int:
    """Process every page image in pages_dir. Returns the number of failed pages."""
    settings = get_worker_settings()
    if concurrency:
        settings = replace(settings, concurrency=concurrency)

    pages = find_page_images(pages_dir)
    if not pages:
        console.print(f"[yellow]No page images found in {pages_dir}[/yellow]")
        return 0

    results: list[PageResult] = []
    failures: list[GenerationError] = []

    async def on_result(result: PageResult) -> None:
        results.append(result)

    async def on_failure(error: GenerationError) -> None:
        failures.append(error)

    ledger = UsageLedger(settings.usage_ledger_path)
    async with AdmissionScheduler(load_scheduler_config()) as scheduler:
        worker = GenerationWorker(
            scheduler,
            ledger,
            prompt,
            settings=settings,
            on_result=on_result,
            on_failure=on_failure,
        )
        await worker.start()
        for path in pages:
            await worker.submit(
                PageJob(
                    page_id=path.stem,
                    image=path.read_bytes(),
                    mime_type=IMAGE_MIME_TYPES[path.suffix.lower()],
                )
            )
        await worker.stop()

    summary = Text()
    summary.append(f"Pages: {len(pages)}\n")
    summary.append(f"Generated: {len(results)}\n", style="green")
    summary.append(f"Failed: {len(failures)}\n", style="red" if failures else "")
    summary.append(f"Retries: {worker.retried}\n")
    summary.append(f"Approx. cost: ${sum(r.approx_cost for r in results):.4f}")
    console.print(Panel(summary, title="Generation run", expand=False))
    for error in failures:
        console.print(f"[red]- {error}[/red]")
    return len(failures)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    setup_failure_logger()

    args = build_parser().parse_args(argv)
    if not args.pages_dir.is_dir():
        console.print(f"[red]Not a directory: {args.pages_dir}[/red]")
        return 2
    prompt = args.prompt_file.read_text(encoding="utf-8").strip()
    if not prompt:
        console.print(f"[red]Prompt file is empty: {args.prompt_file}[/red]")
        return 2

    failed = asyncio.run(run(args.pages_dir, prompt, args.concurrency))
    return 1 if failed else 0
