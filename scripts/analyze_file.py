from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from apps.worker.ocr.client import build_ocr_port_from_env
from apps.worker.pipeline import analyze_document, ingest_document
from apps.worker.steps.step01_text_extract import extract_text_from_attachment
from packages.shared.errors import OcrError, TextExtractionFailed
from packages.shared.models import AnalysisConfig, LexicalLine
from packages.shared.schema_validator import validate_output

logger = logging.getLogger("analyze_file")


def _load_claims(path: Path | None) -> list:
    if path is None:
        return []
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("claims") or []
    return payload if isinstance(payload, list) else []


def run_file(input_path: Path, claims_path: Path | None, force_enhanced: bool) -> dict:
    data = input_path.read_bytes()
    config = AnalysisConfig.from_env()
    record: dict = {"id": input_path.stem, "claims": _load_claims(claims_path)}

    if input_path.suffix.lower() == ".pdf":
        ingestion = ingest_document(data, build_ocr_port_from_env(), force_enhanced=force_enhanced, config=config)
        record["score"] = ingestion.score.to_json_dict()
        record["ocrMode"] = ingestion.ocr_mode.value
        record["ocrLexicalMap"] = [line.to_json_dict() for line in ingestion.ocr_lexical_map]
        logger.info(f"Extracted {len(ingestion.extraction.text)} chars ({ingestion.extraction.mode.value})")
    else:
        text = extract_text_from_attachment(data, input_path.name)
        if not text:
            raise TextExtractionFailed()
        record["ocrLexicalMap"] = [LexicalLine(line_number=1, text=text).to_json_dict()]

    annotations, _ = analyze_document(record, config)
    return annotations.to_json_dict()


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = argparse.ArgumentParser(description="Extract a PDF/DOCX, analyze its claims and print the annotation set.")
    parser.add_argument("--input", required=True, help="Path to the source PDF or DOCX.")
    parser.add_argument("--claims", help="JSON file with a claims array (or an object with a 'claims' key).")
    parser.add_argument("--force-enhanced", action="store_true", help="Always run the enhanced OCR pass.")
    parser.add_argument("--validate", action="store_true", help="Validate the output against the JSON schema.")
    args = parser.parse_args()

    try:
        payload = run_file(Path(args.input), Path(args.claims) if args.claims else None, args.force_enhanced)
    except (OcrError, TextExtractionFailed) as exc:
        logger.error(f"Extraction failed: {exc}")
        return 2

    print(json.dumps(payload, indent=2, ensure_ascii=False))
    if args.validate:
        ok, errors = validate_output(payload)
        for message in errors:
            logger.error(f"Schema: {message}")
        return 0 if ok else 3
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
