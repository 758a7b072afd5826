import json

import pytest

import rally_stats


def test_main_writes_report(tmp_path, event_document):
    json_file = tmp_path / "event.json"
    json_file.write_text(json.dumps(event_document), encoding="utf-8")
    report_file = tmp_path / "event.csv"

    path = rally_stats.main(str(json_file), str(report_file))

    assert path == report_file
    text = report_file.read_text(encoding="utf-8")
    assert text.startswith("Gravel Club\n")
    assert "1,1,B,Skoda Fabia R5,00:02:07.000,00:00:00.000,00:00:00.000" in text
    assert "Drivers DNFd,1" in text


def test_main_with_pdf(tmp_path, event_document):
    json_file = tmp_path / "event.json"
    json_file.write_text(json.dumps(event_document), encoding="utf-8")
    pdf_file = tmp_path / "event.pdf"

    rally_stats.main(str(json_file), str(tmp_path / "event.csv"), pdf_file=str(pdf_file))

    assert pdf_file.read_bytes().startswith(b"%PDF")


def test_missing_event_file_exits(tmp_path):
    with pytest.raises(SystemExit) as exc:
        rally_stats.load_event_data(str(tmp_path / "nope.json"))
    assert exc.value.code == 1


def test_invalid_event_file_exits(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        rally_stats.load_event_data(str(bad))
    assert exc.value.code == 1
