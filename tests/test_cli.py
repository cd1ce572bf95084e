import json

from physio_foundation import cli
from physio_foundation.errors import RecordDecodeError


def test_cli_writes_exports(monkeypatch, tmp_path, raw_records, capsys):
    fit = tmp_path / "rides" / "morning.fit"
    fit.parent.mkdir()
    fit.write_bytes(b"")
    monkeypatch.setattr(cli, "load_fit_records", lambda path: raw_records)

    out = tmp_path / "out"
    assert cli.main(["--input", str(fit.parent), "--output", str(out)]) == 0
    for name in ("windows", "regimes", "transitions", "rolling"):
        assert (out / f"morning_{name}.csv").exists()
    with open(out / "morning_summary.json") as f:
        assert json.load(f)["duration_s"] == 119.0
    assert "Processed morning" in capsys.readouterr().out


def test_cli_reports_decode_failures(monkeypatch, tmp_path):
    fit = tmp_path / "broken.fit"
    fit.write_bytes(b"")

    def broken(path):
        raise RecordDecodeError("bad header")

    monkeypatch.setattr(cli, "load_fit_records", broken)
    assert cli.main(["--input", str(fit), "--output", str(tmp_path / "out")]) == 1


def test_cli_without_fit_files(tmp_path):
    assert cli.main(["--input", str(tmp_path), "--output", str(tmp_path / "out")]) == 1


def test_cli_rejects_invalid_config(tmp_path):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"segmentation": {"min_window_size": 1}}))
    assert cli.main(["--input", str(tmp_path), "--output", str(tmp_path / "out"), "--config", str(config)]) == 2
