import csv
import io
import json
from unittest.mock import MagicMock

import pytest

from dmarc_report_reader.app import App, main
from dmarc_report_reader.filtering import FilterState, StatusFilter
from dmarc_report_reader.ip_lookup import GeoData, IpLookupConfig
from dmarc_report_reader.logging import configure_logging
from dmarc_report_reader.tests.sample_files import (
    REPORT_FILENAME,
    create_gzip_bytes,
    create_xml_bytes,
    create_encrypted_zip_bytes,
    create_zip_bytes,
)

SOURCE_IP = "dead:beef:1:abc::"


@pytest.fixture(autouse=True)
def reset_logging_config_after_test():
    yield None
    configure_logging({}, debug=True)


@pytest.fixture(name="report_file")
def fixture_report_file(tmp_path):
    path = tmp_path / f"{REPORT_FILENAME}.xml"
    path.write_bytes(create_xml_bytes())
    return path


def test_writes_text_summary(report_file, capsys):
    assert main([str(report_file)]) == 0

    out = capsys.readouterr().out
    assert "Report 12598866915817748661 from google.com" in out
    assert "Period: 2020-12-07 00:00 to 2020-12-07 23:59 UTC" in out
    assert "Policy: mydomain.de p=none sp=none pct=100 adkim=r aspf=r" in out
    assert "Enforcement readiness: Ready for Quarantine" in out
    assert SOURCE_IP in out


def test_writes_json(report_file, capsys):
    assert main(["--format", "json", str(report_file)]) == 0

    documents = json.loads(capsys.readouterr().out)
    assert len(documents) == 1
    assert documents[0]["report_metadata"]["report_id"] == "12598866915817748661"
    assert documents[0]["records"][0]["record"]["source_ip"] == SOURCE_IP
    assert documents[0]["analysis"]["top_sending_ips"][0]["ip"] == SOURCE_IP


def test_writes_csv_of_all_reports(tmp_path, capsys):
    gz_file = tmp_path / "report.xml.gz"
    gz_file.write_bytes(create_gzip_bytes(report_id="1", source_ip="192.0.2.1"))
    zip_file = tmp_path / "reports.zip"
    zip_file.write_bytes(create_zip_bytes(report_ids=("2", "3")))

    assert main(["--format", "csv", str(gz_file), str(zip_file)]) == 0

    rows = list(csv.DictReader(io.StringIO(capsys.readouterr().out)))
    assert [row["Source IP"] for row in rows] == ["192.0.2.1", SOURCE_IP, SOURCE_IP]
    assert all(row["Pass/Fail"] == "PARTIAL" for row in rows)


def test_writes_to_output_file(report_file, tmp_path, capsys):
    output = tmp_path / "out.json"

    assert main(["--format", "json", "--output", str(output), str(report_file)]) == 0

    assert capsys.readouterr().out == ""
    assert len(json.loads(output.read_text())) == 1


def test_applies_filters(report_file, capsys):
    assert main(["--status", "quarantine", str(report_file)]) == 0

    out = capsys.readouterr().out
    assert "Report 12598866915817748661" in out
    assert SOURCE_IP not in out


def test_skips_unreadable_files(report_file, tmp_path, capsys):
    broken = tmp_path / "broken.xml"
    broken.write_text("<feedback><report_metadata>")
    missing = tmp_path / "missing.xml"

    assert main([str(broken), str(missing), str(report_file)]) == 0

    captured = capsys.readouterr()
    assert "Report 12598866915817748661" in captured.out
    assert captured.err.count("failed_to_read_report") == 2


def test_skips_encrypted_zip(report_file, tmp_path, capsys):
    encrypted = tmp_path / "encrypted.zip"
    encrypted.write_bytes(create_encrypted_zip_bytes())

    assert main([str(encrypted), str(report_file)]) == 0

    captured = capsys.readouterr()
    assert "Report 12598866915817748661" in captured.out
    assert captured.err.count("failed_to_read_report") == 1


def test_fails_without_any_report(tmp_path, capsys):
    empty = tmp_path / "empty.xml"
    empty.write_bytes(b"")

    assert main([str(empty)]) == 1

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "no_report_read" in captured.err


def test_skips_duplicate_reports(report_file, tmp_path, capsys):
    copy = tmp_path / "copy.xml.gz"
    copy.write_bytes(create_gzip_bytes())

    assert main(["--format", "json", str(report_file), str(copy)]) == 0

    assert len(json.loads(capsys.readouterr().out)) == 1


def test_configures_ip_lookup(report_file, tmp_path, monkeypatch):
    configuration = tmp_path / "config.json"
    configuration.write_text(
        json.dumps(
            {
                "ip_lookup": {"batch_size": 5, "rate_limit_seconds": 0},
                "logging": {"root": {"level": "error"}},
            }
        )
    )
    ip_lookup_cls = MagicMock()
    ip_lookup_cls.from_config.return_value.lookup_many.return_value = {}
    monkeypatch.setattr("dmarc_report_reader.app.IpLookup", ip_lookup_cls)

    assert main(["--configuration", str(configuration), str(report_file)]) == 0
    ip_lookup_cls.from_config.assert_not_called()

    assert (
        main(
            [
                "--configuration",
                str(configuration),
                "--lookup-ips",
                str(report_file),
            ]
        )
        == 0
    )
    config, _ = ip_lookup_cls.from_config.call_args.args
    assert config == IpLookupConfig(enabled=True, batch_size=5, rate_limit_seconds=0)
    lookup_many = ip_lookup_cls.from_config.return_value.lookup_many
    assert list(lookup_many.call_args.args[0]) == [SOURCE_IP]


def test_app_uses_geo_data(report_file):
    ip_lookup = MagicMock()
    ip_lookup.lookup_many.return_value = {
        SOURCE_IP: GeoData(
            ip=SOURCE_IP,
            country="Germany",
            country_code="DE",
            city="Berlin",
            asn="AS15169 Google LLC",
        )
    }
    app = App(
        ip_lookup=ip_lookup,
        filter_state=FilterState(status=StatusFilter.ALL, country="DE"),
    )
    output = io.StringIO()

    assert app.run([report_file], output) == 0

    assert "Berlin Germany, AS15169 Google LLC" in output.getvalue()


def test_app_rejects_unknown_output_format():
    with pytest.raises(ValueError):
        App(output_format="xml")
