"""
Tests for the command-line interface.
"""

import pytest

from yolo_curator.app.launcher import main, parse_arguments


@pytest.fixture
def dataset(dataset_factory):
    return dataset_factory(
        "train", {"a": [0], "b": [1, 1], "c": []}, colors={"c": (0, 0, 0)}
    )


class TestParseArguments:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])

    def test_filter_defaults(self):
        args = parse_arguments(["filter", "root", "--split", "val"])
        assert args.team == "all"
        assert args.count == "any"
        assert args.log_level == "INFO"

    def test_staging_needs_an_action(self):
        with pytest.raises(SystemExit):
            parse_arguments(["staging", "root"])

    def test_rebalance_needs_full_pair(self):
        with pytest.raises(SystemExit):
            parse_arguments(["rebalance", "root", "--from", "train"])
        args = parse_arguments(["rebalance", "root", "--strategy", "fewest-detections"])
        assert args.category is None
        assert not args.execute


class TestMain:
    def test_info(self, dataset, capsys):
        assert main(["info", str(dataset)]) == 0
        out = capsys.readouterr().out
        assert "train" in out
        assert "0=T, 1=CT" in out

    def test_filter(self, dataset, capsys):
        code = main(["filter", str(dataset), "--split", "train", "--team", "ct-only"])
        assert code == 0
        assert "1 of 3 images match" in capsys.readouterr().out

    def test_balance(self, dataset, capsys):
        assert main(["balance", str(dataset), "--split", "train"]) == 0
        out = capsys.readouterr().out
        assert "Recommendations:" in out

    def test_near_black_stage_and_restore(self, dataset, capsys):
        image = dataset / "train" / "images" / "c.png"

        assert main(["near-black", str(dataset), "--split", "train", "--stage"]) == 0
        assert not image.exists()

        assert main(["staging", str(dataset), "--list"]) == 0
        assert "1 staged entries" in capsys.readouterr().out

        assert main(["staging", str(dataset), "--restore"]) == 0
        assert image.exists()

    def test_near_black_stage_and_purge(self, dataset):
        image = dataset / "train" / "images" / "c.png"
        main(["near-black", str(dataset), "--split", "train", "--stage"])

        assert main(["staging", str(dataset), "--purge"]) == 0
        assert not image.exists()
        assert not list((dataset / ".curator_staging").iterdir())

    def test_integrity_remove(self, dataset):
        (dataset / "train" / "labels" / "orphan.txt").write_text("0 0.5 0.5 0.1 0.1\n")
        assert main(["integrity", str(dataset), "--split", "train", "--remove"]) == 0
        assert not (dataset / "train" / "labels" / "orphan.txt").exists()

    def test_missing_dataset_fails(self, tmp_path):
        assert main(["info", str(tmp_path / "missing")]) == 1

    def test_bad_config_fails(self, dataset, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("colour: {}\n")
        assert main(["--config", str(config), "info", str(dataset)]) == 1

    def test_rebalance_category(self, dataset, capsys):
        code = main(
            [
                "rebalance",
                str(dataset),
                "--from",
                "train",
                "--to",
                "val",
                "--category",
                "background",
                "--strategy",
                "oldest-first",
                "--execute",
            ]
        )

        assert code == 0
        out = capsys.readouterr().out
        assert "Move 1 of 1 excess Background images from train to val" in out
        assert "Moved 1 of 1 images" in out
        assert (dataset / "val" / "images" / "c.png").exists()
        assert not (dataset / "train" / "images" / "c.png").exists()

    def test_rebalance_global_plan_only(self, dataset, capsys):
        assert main(["rebalance", str(dataset), "--seed", "1"]) == 0
        out = capsys.readouterr().out
        assert "Target split sizes: train=2, val=1, test=0" in out
        assert "1 moves planned" in out
        assert not (dataset / "val").exists()
