"""
Command-line entry point.

USAGE:
    python -m quiz_engine probe
    python -m quiz_engine generate --count 45 [--output questions.json]
    python -m quiz_engine extract PAGE.png [PAGE2.png ...]
    python -m quiz_engine answers SHEET.png [--start-number 101]
    python -m quiz_engine build SHEET.png PAGE.png [PAGE2.png ...] [--title T] [--save]
    python -m quiz_engine ocr-build SHEET.txt PAGE.txt [PAGE2.txt ...] [--title T] [--save]

OPTIONS:
    --provider NAME     gemini | azure-openai (defaults to LLM_PROVIDER)
    --verbose           Debug logging

Credentials come from the environment / .env (see quiz_engine/config.py).
Results are printed as JSON; exit status 1 on any engine error.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

import redis

from quiz_engine.config import GenerationSettings, load_provider_config
from quiz_engine.errors import QuizEngineError
from quiz_engine.extraction import QuizExtractionService
from quiz_engine.images import load_image
from quiz_engine.merger import build_answer_key
from quiz_engine.store import RedisRecordStore

log = logging.getLogger("quiz_engine.cli")


def _emit(payload, output: Optional[str] = None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"✅ Wrote {output}")
    else:
        print(text)


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


async def _run(args: argparse.Namespace) -> int:
    config = load_provider_config(args.provider)
    service = QuizExtractionService(settings=GenerationSettings())

    if args.command == "probe":
        status = await service.test_connection(config)
        _emit(status.model_dump())
        return 0 if status.success else 1

    if args.command == "generate":
        result = await service.generate_reading_questions(args.count, config)
        _emit(
            {
                "requested": result.target_count,
                "generated": len(result.records),
                "shortfall": result.shortfall,
                "questions": [r.model_dump() for r in result.records],
            },
            args.output,
        )
        return 0

    if args.command == "extract":
        images = [load_image(p) for p in args.images]
        questions = []
        for path, image in zip(args.images, images):
            extracted = await service.extract_questions(image, config, image_ref=path)
            questions.extend(r.model_dump() for r in extracted.records)
        _emit({"questions": questions}, args.output)
        return 0

    if args.command == "answers":
        image = load_image(args.image)
        key = await service.extract_answer_key(image, config, start_number=args.start_number)
        answers = build_answer_key(key.entries)
        _emit({"answers": {str(k): v for k, v in sorted(answers.items())}}, args.output)
        return 0

    if args.command == "ocr-build":
        result = service.build_test_from_text(
            [_read_text(p) for p in args.texts],
            _read_text(args.answer_sheet),
            args.title,
            image_refs=args.texts,
        )
        if args.save:
            RedisRecordStore().save(result.simulation)
        _emit(
            {
                "simulation": result.simulation.model_dump(mode="json"),
                "defaulted_answers": result.merge.default_count,
                "default_ratio": round(result.merge.default_ratio, 3),
            },
            args.output,
        )
        return 0

    if args.command == "build":
        result = await service.build_test(
            [load_image(p) for p in args.images],
            load_image(args.answer_sheet),
            args.title,
            config,
            image_refs=args.images,
        )
        if args.save:
            RedisRecordStore().save(result.simulation)
        _emit(
            {
                "simulation": result.simulation.model_dump(mode="json"),
                "defaulted_answers": result.merge.default_count,
                "default_ratio": round(result.merge.default_ratio, 3),
                "failures": [f.model_dump() for f in result.failures],
            },
            args.output,
        )
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quiz_engine",
        description="Extract TOEIC questions from images or generate them in bulk",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--provider", help="gemini | azure-openai")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("probe", help="Check provider connectivity")

    gen = sub.add_parser("generate", help="Generate reading-comprehension questions")
    gen.add_argument("--count", type=int, required=True, help="Number of questions (1-100)")
    gen.add_argument("--output", help="Write JSON here instead of stdout")

    ext = sub.add_parser("extract", help="Extract questions from problem images")
    ext.add_argument("images", nargs="+")
    ext.add_argument("--output")

    ans = sub.add_parser("answers", help="Extract the answer key from an answer sheet")
    ans.add_argument("image")
    ans.add_argument("--start-number", type=int, default=101)
    ans.add_argument("--output")

    build = sub.add_parser("build", help="Build a test from an answer sheet and problem images")
    build.add_argument("answer_sheet")
    build.add_argument("images", nargs="+")
    build.add_argument("--title")
    build.add_argument("--save", action="store_true", help="Store the simulation in Redis")
    build.add_argument("--output")
    ocr = sub.add_parser("ocr-build", help="Build a test from OCR text files, without a provider call")
    ocr.add_argument("answer_sheet", help="Recognized text of the answer sheet")
    ocr.add_argument("texts", nargs="+", help="Recognized text of each problem image")
    ocr.add_argument("--title")
    ocr.add_argument("--save", action="store_true", help="Store the simulation in Redis")
    ocr.add_argument("--output")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except (QuizEngineError, ValueError, OSError, redis.RedisError) as e:
        log.error(f"❌ {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
