import pytest

from emitter.version import main, version_string


def test_version_string():
    assert version_string() == "emitter version 0, commit untracked"


def test_main_prints_version(capsys):
    assert main([]) == 0
    assert capsys.readouterr().out.strip() == "emitter version 0, commit untracked"


def test_main_rejects_arguments():
    with pytest.raises(SystemExit):
        main(["--bogus"])