"""Tests for run.py — offline parsing, live scrape wiring, error envelope."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from extract import DemandSnapshot, ShiftDemand
from fetch import FetchError
from run import main

PREVISION = """
<table>
<tr><td class=TDazul>08-14</td></tr><tr><td>GRUAS</td><td>13</td><td>COCHES</td><td></td></tr>
<tr><td class=TDverde>14-20</td></tr><tr><td>GRUAS</td><td>18</td><td>COCHES</td><td>3</td></tr>
<tr><td class=TDrojo>20-02</td></tr><tr><td>GRUAS</td><td>8</td><td>COCHES</td><td>8</td></tr>
</table>
"""

CHAPERO = "<td background='imagenes/chapab.jpg'></td>" * 5 + "<td> No contratado (121)&nbsp;</td>"


@pytest.fixture
def pages(tmp_path):
    prevision = tmp_path / "prevision.html"
    chapero = tmp_path / "chapero.html"
    prevision.write_text(PREVISION, encoding="utf-8")
    chapero.write_text(CHAPERO, encoding="utf-8")
    return prevision, chapero


class TestOfflineRun:
    def test_prints_envelope(self, pages, capsys):
        prevision, chapero = pages
        rc = main(["--prevision-file", str(prevision), "--chapero-file", str(chapero)])

        assert rc == 0
        out = json.loads(capsys.readouterr().out)
        assert out["success"] is True
        assert out["stale"] is False
        assert out["fijos"] == 121
        assert out["demandas"] == {
            "08-14": {"cranes": 13, "vehicles": 0},
            "14-20": {"cranes": 18, "vehicles": 3},
            "20-02": {"cranes": 8, "vehicles": 8},
        }

    def test_diagnose_reports_strategies(self, pages, capsys):
        prevision, chapero = pages
        rc = main(["--prevision-file", str(prevision), "--chapero-file", str(chapero), "--diagnose"])

        assert rc == 0
        matched = json.loads(capsys.readouterr().out)["strategies"]
        assert matched["14-20.vehicles"] == "coches_label"
        assert matched["unstaffed"] == "label_phrase"

    def test_status_reports_cache_state(self, pages, capsys):
        prevision, chapero = pages
        rc = main(["--prevision-file", str(prevision), "--chapero-file", str(chapero), "--status"])

        assert rc == 0
        status = json.loads(capsys.readouterr().out)["cache"]
        assert status["state"] == "fresh"
        assert status["refreshing"] is False
        assert status["last_error"] is None

    def test_status_absent_by_default(self, pages, capsys):
        prevision, chapero = pages
        main(["--prevision-file", str(prevision), "--chapero-file", str(chapero)])
        assert "cache" not in json.loads(capsys.readouterr().out)

    def test_missing_file_gives_error_envelope(self, tmp_path, capsys):
        rc = main([
            "--prevision-file", str(tmp_path / "nope.html"),
            "--chapero-file", str(tmp_path / "nope2.html"),
        ])
        assert rc == 1
        out = json.loads(capsys.readouterr().out)
        assert out["success"] is False
        assert "nope.html" in out["error"]

    def test_files_must_come_in_pairs(self, pages):
        prevision, _ = pages
        with pytest.raises(SystemExit):
            main(["--prevision-file", str(prevision)])

    def test_diagnose_requires_files(self):
        with pytest.raises(SystemExit):
            main(["--diagnose"])


class TestLiveRun:
    def test_uses_scraper(self, capsys):
        snap = DemandSnapshot(shifts={"20-02": ShiftDemand(2, 1)}, unstaffed=4)
        with patch("run.scrape_snapshot", return_value=snap) as scrape:
            rc = main([])
        assert rc == 0
        scrape.assert_called_once()
        out = json.loads(capsys.readouterr().out)
        assert out["demandas"]["20-02"] == {"cranes": 2, "vehicles": 1}
        assert out["fijos"] == 4

    def test_fetch_failure(self, capsys):
        with patch("run.scrape_snapshot", side_effect=FetchError("Cloudflare challenge served")):
            rc = main([])
        assert rc == 1
        out = json.loads(capsys.readouterr().out)
        assert out == {
            "success": False,
            "error": "Cloudflare challenge served",
            "timestamp": out["timestamp"],
        }
