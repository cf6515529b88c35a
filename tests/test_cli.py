import pytest

from kernel_ep import cli


def test_unknown_routine():
    with pytest.raises(ValueError):
        cli.main(["nonsense"])


def test_parser_leaves_unset_options_alone():
    args = cli.build_parser().parse_args(["dnet", "--n", "30"])
    assert cli._settings(args, "n", "d", "ep_iter") == {"n": 30}


def test_clutter(capsys):
    assert cli.main(["clutter", "--n", "5", "--ep-iter", "2"]) == 0
    assert "posterior over theta" in capsys.readouterr().out


def test_dnet(saved_dir):
    assert cli.main(["dnet", "--seed-from", "1", "--seed-to", "1", "--n", "10", "--d", "2", "--ep-iter", "1"]) == 0
    assert (saved_dir / "rec_dnet_n10_logistic_iter1_sf1_st1.mat").exists()


def test_compound_gamma(capsys):
    assert cli.main(["compound_gamma", "--seed-from", "1", "--seed-to", "1", "--n", "20", "--ep-iter", "1"]) == 0
    assert "Inferred precision posterior" in capsys.readouterr().out
