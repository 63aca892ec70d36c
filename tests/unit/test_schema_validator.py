"""
Unit tests for schema validator.
"""
from __future__ import annotations

from pathlib import Path

from packages.shared import schema_validator
from packages.shared.schema_validator import SCHEMA_FILE, validate_output


def _valid() -> dict:
    return {
        "id": "doc-1",
        "claims": [
            {
                "id": "c1",
                "type": "Diagnosis",
                "value": "lumbar strain",
                "evidenceQuality": "medium",
                "assertionType": "INTERPRETATION",
                "reliability": {"level": "medium", "rationale": "no verified date"},
            }
        ],
        "flags": [{"code": "EVENT_WITHOUT_DATE", "message": "Event without a date", "severity": "info"}],
        "timeline": [
            {
                "id": "e1",
                "datePrecision": "unknown",
                "type": "EVENT",
                "description": "lumbar strain",
                "references": [{"id": "c1"}],
                "aggregatedCount": 1,
                "hidden": True,
            }
        ],
        "qualityFindings": [],
        "medicalQualityScore": 62,
        "reasoningFindings": [],
        "ocrModeUsed": "base",
    }


def test_validate_output_valid():
    valid, errors = validate_output(_valid())
    assert valid
    assert errors == []


def test_validate_output_missing_required():
    data = _valid()
    del data["timeline"]
    valid, errors = validate_output(data)
    assert not valid
    assert any("timeline" in e for e in errors)


def test_critical_flag_requires_caution():
    data = _valid()
    data["flags"].append({"code": "MISSING_KEY_TEST_CARDIO", "message": "m", "severity": "critical"})
    valid, errors = validate_output(data)
    assert not valid
    assert any("caution" in e for e in errors)


def test_score_bounds():
    data = _valid()
    data["medicalQualityScore"] = 101
    valid, errors = validate_output(data)
    assert not valid
    assert errors[0].startswith("/medicalQualityScore: ")


def test_schema_ships_inside_package():
    assert SCHEMA_FILE.is_file()
    assert SCHEMA_FILE.parent.parent == Path(schema_validator.__file__).resolve().parent
