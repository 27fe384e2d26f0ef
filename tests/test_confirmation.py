import unittest

import pytest

from stack_deployer.interaction import (
    CallbackConfirmationSource,
    CLIConfirmationSource,
    ScriptedConfirmationSource,
    is_affirmative,
)


@pytest.mark.parametrize(
    "answer", ["no", "", "abort", "  ", "yess", "ok", None, "n", "YES", "Y", "Yes", " Y "]
)
def test_anything_but_yes_declines(answer) -> None:
    assert is_affirmative(answer) is False


@pytest.mark.parametrize("answer", ["yes", "y", " y ", "yes\n"])
def test_exact_affirmatives_proceed(answer) -> None:
    assert is_affirmative(answer) is True


class ConfirmationSourceTests(unittest.TestCase):
    def test_cli_source_uses_input(self) -> None:
        prompts = []

        def fake_input(prompt: str) -> str:
            prompts.append(prompt)
            return "y"

        source = CLIConfirmationSource(input_func=fake_input)
        self.assertTrue(source.ask("Destroy?"))
        self.assertEqual(prompts, ["Destroy? (yes/no): "])

    def test_cli_source_declines_on_eof(self) -> None:
        def closed_stdin(prompt: str) -> str:
            raise EOFError

        self.assertFalse(CLIConfirmationSource(input_func=closed_stdin).ask("Destroy?"))

    def test_callback_source(self) -> None:
        source = CallbackConfirmationSource(lambda prompt: "abort")
        self.assertFalse(source.ask("Destroy?"))

    def test_scripted_source_declines_once_exhausted(self) -> None:
        source = ScriptedConfirmationSource(["yes"])
        self.assertTrue(source.ask("first"))
        self.assertFalse(source.ask("second"))
        self.assertEqual(source.prompts, ["first", "second"])


if __name__ == "__main__":
    unittest.main()
