import pytest

from avdeploy.exceptions import ConfigurationError
from avdeploy.prompts import Prompter


def prompter(answer):
    return Prompter(input_func=lambda prompt: answer, output=lambda text: None)


def test_ask_uses_default():
    assert prompter("  ").ask("Admin username", default="avdadmin") == "avdadmin"


def test_ask_required():
    with pytest.raises(ConfigurationError):
        prompter("").ask("Storage account name or FQDN")


@pytest.mark.parametrize("answer", ["", "0", "4", "two"])
def test_choose_rejects_bad_answers(answer):
    with pytest.raises(ConfigurationError):
        prompter(answer).choose("Subscriptions", ["a", "b", "c"])


def test_choose_returns_zero_based_index():
    assert prompter("3").choose("Subscriptions", ["a", "b", "c"]) == 2

