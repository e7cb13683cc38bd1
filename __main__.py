"""CLI entry point for label-pipeline.

This module acts as the central entry point for the project's CLI tools.
It delegates commands to the pipeline, DSL and edit packages.
"""

import argparse
import asyncio
import json
import logging
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

from src.config import get_available_llm_providers
from src.core import get_logger, setup_logging

# Load environment variables from .env file
load_dotenv()

logger = get_logger("cli")


def _add_verbose(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )


def _configure_logging(args: argparse.Namespace) -> None:
    setup_logging(logging.DEBUG if getattr(args, "verbose", False) else logging.INFO)


def _read_json(path: Path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# Generate Command
# =============================================================================


def _load_submission(args: argparse.Namespace):
    from src.pipeline import WineSubmission

    data = _read_json(args.input) if args.input else {}
    fields = {
        "producer_name": args.producer,
        "wine_name": args.wine,
        "vintage": args.vintage,
        "variety": args.variety,
        "region": args.region,
        "appellation": args.appellation,
    }
    data.update({key: value for key, value in fields.items() if value is not None})
    return WineSubmission.model_validate(data)


async def _generate(args: argparse.Namespace) -> int:
    from pydantic import ValidationError

    from src.dsl import serialize_label_dsl
    from src.errors import PipelineError
    from src.llm import LLMError
    from src.pipeline import AssetFetcher, LabelPipeline, create_pipeline_config

    try:
        submission = _load_submission(args)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Invalid wine submission: {e}")
        return 1

    try:
        config = create_pipeline_config(
            use_mocks=args.mock,
            provider=args.provider,
            model=args.model,
            persistent=args.persistent,
            renderer_url=args.renderer_url,
            vision=not args.no_vision,
            max_iterations=args.iterations,
        )
    except (LLMError, ValueError) as e:
        logger.error(f"Could not configure pipeline: {e}")
        return 1

    try:
        result = await LabelPipeline(config).run(
            submission,
            args.style,
            args.generation_id,
            feedback=args.feedback,
            refine=not args.no_refine,
        )
    except PipelineError as e:
        logger.error(f"Generation failed [{e.kind.value}]: {e.message}")
        return 1

    dsl_json = serialize_label_dsl(result.dsl, indent=2)
    if args.output:
        args.output.write_text(dsl_json, encoding="utf-8")
        logger.info(f"Label DSL saved to {args.output}")
    else:
        print(dsl_json)

    if args.preview:
        data = await AssetFetcher(config.blobs).fetch(result.preview.preview_url)
        if data is None:
            logger.warning(f"Preview {result.preview.preview_url} could not be fetched")
        else:
            args.preview.write_bytes(data)
            logger.info(f"Preview saved to {args.preview}")

    logger.info(f"Generation {result.generation_id}: preview {result.preview.preview_url}")
    for error in result.image_errors:
        logger.warning(f"Image {error.prompt_id} failed: {error.error['message']}")
    if result.refinement is not None:
        logger.info(
            f"Refinement: {result.refinement.iterations} iteration(s), "
            f"{result.refinement.applied_edit_count} edit(s) applied, "
            f"stopped: {result.refinement.stop_reason.value}"
        )
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    """Handle the generate command."""
    return asyncio.run(_generate(args))


def handle_generate_command(argv: list[str]) -> int:
    """Handle generate-specific commands."""
    parser = argparse.ArgumentParser(
        prog="python . generate",
        description="Generate a wine label (DSL and preview)",
    )
    parser.add_argument(
        "--input",
        "-i",
        type=Path,
        default=None,
        help="Wine submission JSON file (fields may be overridden below)",
    )
    parser.add_argument("--producer", type=str, default=None, help="Producer name")
    parser.add_argument("--wine", type=str, default=None, help="Wine name")
    parser.add_argument("--vintage", type=str, default=None, help="Four-digit vintage")
    parser.add_argument("--variety", type=str, default=None, help="Grape variety")
    parser.add_argument("--region", type=str, default=None, help="Region")
    parser.add_argument("--appellation", type=str, default=None, help="Appellation")
    parser.add_argument(
        "--style",
        "-s",
        type=str,
        default="classic",
        choices=["classic", "modern", "elegant", "funky"],
        help="Label style (default: classic)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output file for the label DSL (prints to stdout if not specified)",
    )
    parser.add_argument(
        "--preview",
        "-p",
        type=Path,
        default=None,
        help="Write the rendered preview image to this path",
    )
    mock_group = parser.add_mutually_exclusive_group()
    mock_group.add_argument(
        "--mock",
        dest="mock",
        action="store_true",
        default=None,
        help="Use offline mock adapters",
    )
    mock_group.add_argument(
        "--no-mock",
        dest="mock",
        action="store_false",
        help="Use real providers even if LABEL_USE_MOCKS is set",
    )
    parser.add_argument(
        "--provider",
        type=str,
        default=None,
        choices=["anthropic", "openai", "mock"],
        help="LLM provider for the structured steps",
    )
    parser.add_argument(
        "--model",
        "-m",
        type=str,
        default=None,
        help="LLM model name (e.g. gpt-4.1-mini, claude-sonnet-4-5)",
    )
    parser.add_argument(
        "--persistent",
        action="store_true",
        default=None,
        help="Store images and step status in SQLite and on disk",
    )
    parser.add_argument(
        "--renderer-url",
        type=str,
        default=None,
        help="Render service URL (local Pillow renderer if not set)",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Refinement iterations (default: REFINE_MAX_ITERATIONS)",
    )
    parser.add_argument("--feedback", type=str, default=None, help="Reviewer feedback for refinement")
    parser.add_argument("--no-refine", action="store_true", help="Skip refinement")
    parser.add_argument("--no-vision", action="store_true", help="Refine with the text LLM only")
    parser.add_argument("--generation-id", type=str, default=None, help="Generation id")
    _add_verbose(parser)

    args = parser.parse_args(argv)
    _configure_logging(args)
    return cmd_generate(args)


# =============================================================================
# Validate Command
# =============================================================================


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle the validate command."""
    from src.dsl import DSLValidationError, load_label_dsl

    try:
        dsl = load_label_dsl(args.file)
    except DSLValidationError as e:
        logger.error(f"{args.file}: {len(e.issues)} issue(s)")
        for issue in e.issues:
            print(f"  {issue}")
        return 1
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read {args.file}: {e}")
        return 1

    logger.info(
        f"{args.file}: valid ({len(dsl.elements)} elements, {len(dsl.assets)} assets, "
        f"{dsl.canvas.width}x{dsl.canvas.height})"
    )
    return 0


def handle_validate_command(argv: list[str]) -> int:
    """Handle validate-specific commands."""
    parser = argparse.ArgumentParser(
        prog="python . validate",
        description="Validate a label DSL JSON file",
    )
    parser.add_argument("file", type=Path, help="Label DSL JSON file")
    _add_verbose(parser)

    args = parser.parse_args(argv)
    _configure_logging(args)
    return cmd_validate(args)


# =============================================================================
# Edit Command
# =============================================================================


def cmd_edit(args: argparse.Namespace) -> int:
    """Handle the edit command."""
    from src.dsl import DSLValidationError, load_label_dsl, serialize_label_dsl
    from src.edits import EditLimits, convert_operations, refine_label

    try:
        dsl = load_label_dsl(args.dsl)
        raw = _read_json(args.edits)
    except DSLValidationError as e:
        logger.error(f"Invalid label DSL: {e}")
        return 1
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read input: {e}")
        return 1

    if isinstance(raw, dict):
        raw = raw.get("edits", raw.get("operations", []))
    if not isinstance(raw, list):
        logger.error("Edits file must contain a JSON array of edits")
        return 1

    if args.operations:
        raw = convert_operations(raw, dsl)

    batch = refine_label(dsl, raw, EditLimits(max_edits=args.max_edits, max_delta=args.max_delta))

    for rejected in batch.validation.rejected_edits:
        logger.warning(f"Rejected: {rejected.reason}")
    for clamped in batch.validation.clamped_edits:
        logger.info(f"Clamped: {clamped.reason}")
    for failed in batch.application.failed_edits:
        logger.warning(f"Failed: {failed.reason}")
    logger.info(
        f"{len(batch.application.applied_edits)} applied, "
        f"{len(batch.validation.rejected_edits)} rejected, "
        f"{len(batch.application.failed_edits)} failed"
    )

    dsl_json = serialize_label_dsl(batch.updated_dsl, indent=2)
    if args.output:
        args.output.write_text(dsl_json, encoding="utf-8")
        logger.info(f"Updated DSL saved to {args.output}")
    else:
        print(dsl_json)
    return 0


def handle_edit_command(argv: list[str]) -> int:
    """Handle edit-specific commands."""
    parser = argparse.ArgumentParser(
        prog="python . edit",
        description="Validate, clamp and apply edits to a label DSL",
    )
    parser.add_argument("dsl", type=Path, help="Label DSL JSON file")
    parser.add_argument("edits", type=Path, help="JSON array of edits (or refiner operations)")
    parser.add_argument(
        "--operations",
        action="store_true",
        help="Treat the input as refiner operations and convert them first",
    )
    parser.add_argument("--max-edits", type=int, default=10, help="Maximum edits (default: 10)")
    parser.add_argument(
        "--max-delta",
        type=float,
        default=0.2,
        help="Maximum move/resize delta per axis (default: 0.2)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output file (prints to stdout if not specified)",
    )
    _add_verbose(parser)

    args = parser.parse_args(argv)
    _configure_logging(args)
    return cmd_edit(args)


# =============================================================================
# Models Command
# =============================================================================


def cmd_list_models(_args: argparse.Namespace) -> int:
    """Handle the list models command."""
    from src.llm import LLMModel, LLMProviderType

    configured = set(get_available_llm_providers())
    logger.info("Available LLM Models:")
    for provider in LLMProviderType:
        models = LLMModel.list_by_provider(provider)
        if models:
            ready = provider.value in configured or provider == LLMProviderType.MOCK
            logger.info(f"\n  {provider.value}{'' if ready else ' (no API key)'}:")
            for model in models:
                spec = model.spec
                logger.info(f"    {spec.name:<32} {spec.description}")
    return 0


def handle_models_command(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="python . models", description="List LLM models")
    _add_verbose(parser)
    args = parser.parse_args(argv)
    _configure_logging(args)
    return cmd_list_models(args)


# =============================================================================
# Test Command
# =============================================================================


def cmd_test(extra_args: list[str]) -> int:
    """Run pytest with provided arguments and test tier options.

    Usage:
        python . test                # Run all tests
        python . test --unit         # Run only unit tests
        python . test --llm          # Run tests against real LLM providers
        python . test -k "refine"    # Run tests matching pattern
    """
    tier_markers = {
        "--unit": ["-m", "unit"],
        "--llm": ["-m", "llm"],
        "--all": [],
    }

    pytest_args: list[str] = []
    remaining_args: list[str] = []

    for arg in extra_args:
        if arg in tier_markers:
            pytest_args.extend(tier_markers[arg])
        else:
            remaining_args.append(arg)

    cmd = [sys.executable, "-m", "pytest", *pytest_args, *remaining_args]
    logger.info(f"Running: {' '.join(cmd)}")

    try:
        return subprocess.call(cmd)
    except KeyboardInterrupt:
        return 130


# =============================================================================
# Main
# =============================================================================


def show_help() -> None:
    """Display CLI help message."""
    print("Usage: python . {command} [args]")
    print("\n=== Labels ===")
    print("  generate   Generate a wine label (DSL + preview)")
    print("  validate   Validate a label DSL file")
    print("  edit       Apply an edits file to a label DSL")
    print("\n=== Info ===")
    print("  models     List available LLM models")
    print("\n=== Development ===")
    print("  test       Run the test suite (--unit, --llm, --all)")
    print("\nExamples:")
    print("  python . generate --producer 'Chateau Example' --wine 'Reserve' --vintage 2021 \\")
    print("      --variety Merlot --region Bordeaux --appellation Pomerol --mock -p label.png")
    print("  python . generate -i wine.json --style modern -o label.json")
    print("  python . validate label.json")
    print("  python . edit label.json edits.json -o label.edited.json")
    print("  python . models")


def main() -> int:
    """Main entry point for the CLI."""
    if len(sys.argv) < 2:
        show_help()
        return 1

    command = sys.argv[1]
    rest_args = sys.argv[2:]

    if command in ("-h", "--help"):
        show_help()
        return 0

    commands = {
        "generate": lambda: handle_generate_command(rest_args),
        "validate": lambda: handle_validate_command(rest_args),
        "edit": lambda: handle_edit_command(rest_args),
        "models": lambda: handle_models_command(rest_args),
    }

    if command == "test":
        setup_logging()
        return cmd_test(rest_args)

    if command in commands:
        return commands[command]()

    setup_logging()
    logger.error(f"Unknown command: {command}")
    show_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
