"""
Command line interface.
"""
import json
from unittest.mock import patch

import pytest

from rnaseq_de.cli import build_parser, main

pytestmark = pytest.mark.filterwarnings("ignore::DeprecationWarning")


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_run_agent_options_exclusive():
    with pytest.raises(SystemExit):
        build_parser().parse_args([
            "run", "-i", "in", "-o", "out", "--agent", "agent1_data", "--from-agent", "agent4_deg"
        ])


def test_sample_data(tmp_path):
    assert main(["sample-data", "--output", str(tmp_path), "--genes", "50", "--patients", "2"]) == 0

    assert (tmp_path / "count_matrix.csv").exists()
    config = json.loads((tmp_path / "config.json").read_text())
    assert config["contrast"] == ["DPN", "Control"]
    assert config["random_seed"] == 42


def test_sample_data_seed(tmp_path):
    args = ["sample-data", "--genes", "50", "--patients", "2"]
    main(args + ["--output", str(tmp_path / "a"), "--seed", "3"])
    main(args + ["--output", str(tmp_path / "b"), "--seed", "3"])
    main(args + ["--output", str(tmp_path / "c")])

    a = (tmp_path / "a" / "count_matrix.csv").read_text()
    assert a == (tmp_path / "b" / "count_matrix.csv").read_text()
    assert a != (tmp_path / "c" / "count_matrix.csv").read_text()
    assert json.loads((tmp_path / "a" / "config.json").read_text())["random_seed"] == 3


def test_download_without_url(tmp_path, capsys):
    assert main(["download", "--url", "", "--cache-dir", str(tmp_path)]) == 1
    assert "no dataset URL" in capsys.readouterr().out


def test_download(tmp_path, capsys):
    with patch("rnaseq_de.cli.fetch_dataset", return_value=tmp_path / "data.h5ad") as fetch:
        assert main(["download", "--url", "https://example.org/data.h5ad", "--cache-dir", str(tmp_path)]) == 0

    fetch.assert_called_once_with(
        "https://example.org/data.h5ad", tmp_path, filename=None, force=False
    )
    assert "data.h5ad" in capsys.readouterr().out


def test_download_error_returns_1(tmp_path, capsys):
    with patch("rnaseq_de.cli.fetch_dataset", side_effect=OSError("disk full")):
        assert main(["download", "--url", "https://example.org/data.h5ad", "--cache-dir", str(tmp_path)]) == 1
    assert "disk full" in capsys.readouterr().out


def test_run_stop_after(sample_input_dir, tmp_path, capsys):
    code = main([
        "run", "-i", str(sample_input_dir), "-o", str(tmp_path / "out"),
        "--transform", "log2", "--stop-after", "agent2_normalization"
    ])

    assert code == 0
    run_dirs = list((tmp_path / "out").glob("run_*"))
    assert len(run_dirs) == 1
    meta = json.loads((run_dirs[0] / "agent2_normalization" / "meta_agent2_normalization.json").read_text())
    assert meta["transform_used"] == "log2"
    # config.json from the input directory is picked up
    assert meta["config_used"]["contrast"] == ["DPN", "Control"]


def test_run_failure_returns_1(sample_input_dir, tmp_path):
    config_path = tmp_path / "bad.json"
    config_path.write_text(json.dumps({"contrast": ["E2", "Control"]}))

    code = main([
        "run", "-i", str(sample_input_dir), "-o", str(tmp_path / "out"),
        "--config", str(config_path), "--stop-after", "agent1_data"
    ])
    assert code == 1
