from rally_stats import Rally, Stage
import rally_report

from conftest import entry, make_stage


def block(text, title):
    """Lines of the report block starting at `title` up to the next blank line."""
    lines = text.splitlines()
    start = lines.index(title)
    out = []
    for line in lines[start:]:
        if not line:
            break
        out.append(line)
    return out


def test_stage_times_table(two_stage_rally):
    text = rally_report.get_csv_stage_times(two_stage_rally.process_results())
    assert block(text, "SS1 - Vinnbergs") == [
        "SS1 - Vinnbergs",
        "Stage Times",
        "Pos, Name, Vehicle, Time, Diff 1st, Diff Prev",
        "1,A,Ford Fiesta R5,00:01:00.000,00:00:00.000,00:00:00.000",
        "2,B,Skoda Fabia R5,00:01:05.000,00:00:05.000,00:00:05.000",
        ",C,Citroen C3 R5,DNF",
    ]
    assert block(text, "SS2 - Hamra")[3:] == [
        "1,C,Citroen C3 R5,00:00:59.000,00:00:00.000,00:00:00.000",
        "2,B,Skoda Fabia R5,00:01:02.000,00:00:03.000,00:00:03.000",
        "3,A,Ford Fiesta R5,00:01:10.000,00:00:11.000,00:00:08.000",
    ]


def test_overall_times_table(two_stage_rally):
    text = rally_report.get_csv_overall_times(two_stage_rally.process_results())
    assert block(text, "SS2 - Hamra") == [
        "SS2 - Hamra",
        "Overall Times",
        "Pos, Pos Chng, Name, Vehicle, Time, Diff 1st, Diff Prev",
        "1,1,B,Skoda Fabia R5,00:02:07.000,00:00:00.000,00:00:00.000",
        "2,-1,A,Ford Fiesta R5,00:02:10.000,00:00:03.000,00:00:03.000",
        ",,C,Citroen C3 R5,DNF",
    ]


def test_cancelled_stage_repeats_previous_overall_table():
    rally = Rally([
        make_stage("SS1", entry("A", "01:00.000"), entry("B", "01:01.000")),
        Stage("Cancelled"),
    ])
    results = rally.process_results()
    assert block(rally_report.get_csv_overall_times(results), "SS2 - Cancelled")[3:] == [
        "1,0,A,Ford Fiesta R5,00:01:00.000,00:00:00.000,00:00:00.000",
        "2,0,B,Ford Fiesta R5,00:01:01.000,00:00:01.000,00:00:01.000",
    ]
    assert block(rally_report.get_csv_stage_times(results), "SS2 - Cancelled")[3:] == [
        ",A,Ford Fiesta R5,DNF",
        ",B,Ford Fiesta R5,DNF",
    ]


def test_dnfs_listed_after_ranked_in_encounter_order():
    rally = Rally([
        make_stage(
            "SS1",
            entry("X", dnf=True),
            entry("A", "01:00.000"),
            entry("Y", dnf=True),
            entry("B", "00:58.000"),
        ),
        make_stage("SS2", entry("B", "00:58.000"), entry("Y", "00:40.000")),
    ])
    results = rally.process_results()
    stage_lines = block(rally_report.get_csv_stage_times(results), "SS1 - SS1")[3:]
    assert [line.split(",")[1] for line in stage_lines] == ["B", "A", "X", "Y"]

    # A is missing from SS2 and shows up as DNF without a vehicle
    overall_lines = block(rally_report.get_csv_overall_times(results), "SS2 - SS2")[3:]
    assert overall_lines == [
        "1,0,B,Ford Fiesta R5,00:01:56.000,00:00:00.000,00:00:00.000",
        ",,Y,Ford Fiesta R5,DNF",
        ",,X,,DNF",
        ",,A,,DNF",
    ]


def test_names_with_commas_are_quoted():
    rally = Rally([make_stage("SS1", entry("Doe, John", "01:00.000"))])
    text = rally_report.get_csv_stage_times(rally.process_results())
    assert '1,"Doe, John",Ford Fiesta R5,00:01:00.000,00:00:00.000,00:00:00.000' in text


def test_stats_block(two_stage_rally):
    text = rally_report.get_stats(two_stage_rally.process_results())
    lines = text.splitlines()
    assert lines[0] == "Stats"
    assert block(text, "Participation Stats") == [
        "Participation Stats",
        "Drivers Entered,3",
        "Drivers Finished,2",
        "Drivers DNFd,1",
        "Completion Rate,66.67%",
    ]
    assert block(text, "Stage Wins") == ["Stage Wins", "A,1", "C,1"]
    assert block(text, "Manufacturer Count") == [
        "Manufacturer Count",
        "Ford Fiesta R5,1",
        "Skoda Fabia R5,1",
        "Citroen C3 R5,1",
    ]


def test_stats_for_empty_rally():
    text = rally_report.get_stats(Rally().process_results())
    assert "Drivers Entered,0" in text
    assert "Completion Rate,0.00%" in text


def test_chart_output(two_stage_rally):
    text = rally_report.get_csv_chart_output(two_stage_rally.process_results())
    assert text == (
        "Chart Data\n"
        "B,2,1\n"
        "A,1,2\n"
        "C\n"
        "\n"
        "Negated Chart Data\n"
        "B,-2,-1\n"
        "A,-1,-2\n"
        "C\n"
    )


def test_chart_dnf_rows_ordered_by_ranked_stages():
    rally = Rally([
        make_stage("SS1", entry("A", "01:00.000"), entry("B", "01:01.000"), entry("C", "01:02.000")),
        make_stage("SS2", entry("A", "01:00.000"), entry("B", dnf=True), entry("C", "01:02.000")),
        make_stage("SS3", entry("A", dnf=True), entry("C", "01:02.000")),
    ])
    rows = rally_report.chart_rows(rally.process_results())
    assert rows == [("C", [3, 2, 1]), ("A", [1, 1]), ("B", [2])]


def test_build_and_write_report(tmp_path, event_document):
    results = Rally.from_event_data(event_document).process_results()
    report = rally_report.build_report(results, event_document["header"])
    lines = report.splitlines()
    assert lines[:4] == [
        "Gravel Club",
        "Sweden,Värmland",
        "Championship ID,421130,Event ID,448563",
        "Event Status,Finished",
    ]
    for title in ("Stage Times", "Overall Times", "Stats", "Chart Data", "Negated Chart Data"):
        assert title in lines

    path = rally_report.write_report(tmp_path / "report.csv", report)
    assert path.read_text(encoding="utf-8") == report


def test_pdf_position_chart(tmp_path, two_stage_rally):
    pdf = rally_report.print_pdf_position_chart(two_stage_rally.process_results(), tmp_path / "chart.pdf")
    assert pdf.read_bytes().startswith(b"%PDF")


def test_pdf_position_chart_without_stages(tmp_path):
    pdf = rally_report.print_pdf_position_chart(Rally().process_results(), tmp_path / "empty.pdf")
    assert pdf.exists()
